from __future__ import annotations

from unittest.mock import Mock

from needle.model import Category, CiCheck, CiCheckState, CiState, Pr, ReviewState, UiPr
from needle.state import AppState, ViewMode, diff_alerts, matches_query
from needle.store import StorageError
from needle.worker import RefreshResult

NOW = 1_700_000_000


def _ui(
    number: int,
    category: Category = Category.WAITING,
    score: int = 0,
    repo: str = "api",
    author: str = "alice",
    title: str | None = None,
    ci_state: CiState = CiState.NONE,
    review_state: ReviewState = ReviewState.NONE,
    is_draft: bool = False,
    checks: list[CiCheck] | None = None,
    new_failure: bool = False,
    new_review: bool = False,
) -> UiPr:
    pr = Pr(
        owner="acme",
        repo=repo,
        number=number,
        author=author,
        title=title or f"PR {number}",
        url=f"https://github.com/acme/{repo}/pull/{number}",
        updated_at=NOW,
        ci_state=ci_state,
        ci_checks=checks or [],
        review_state=review_state,
        is_draft=is_draft,
    )
    return UiPr(pr=pr, score=score, category=category, display_status="",
                is_new_ci_failure=new_failure, is_new_review_request=new_review)


class FakeWorker:
    def __init__(self, fn):
        self.fn = fn
        self.result: RefreshResult | None = None

    def poll(self):
        return self.result


class Clock:
    def __init__(self, t: float = 1000.0):
        self.t = t

    def __call__(self) -> float:
        return self.t


def _state(prs, **kwargs) -> tuple[AppState, list[FakeWorker]]:
    workers: list[FakeWorker] = []

    def factory(fn):
        worker = FakeWorker(fn)
        workers.append(worker)
        return worker

    kwargs.setdefault("monotonic", Clock())
    kwargs.setdefault("wall_clock", lambda: NOW + 5)
    kwargs.setdefault("opener", Mock())
    state = AppState(prs, refresher=Mock(), worker_factory=factory, **kwargs)
    return state, workers


def test_matches_query_fields():
    ui = _ui(42, repo="billing", author="Santiago", title="Fix Retries")
    assert matches_query(ui, "BILLING")
    assert matches_query(ui, "santi")
    assert matches_query(ui, "retries")
    assert matches_query(ui, "#42")
    assert matches_query(ui, "  ")
    assert not matches_query(ui, "nothing")


def test_visible_indices_follow_partition_order():
    prs = [
        _ui(1, Category.NEEDS_YOU, 50),
        _ui(2, Category.NEEDS_YOU, 50, is_draft=True),
        _ui(3, Category.WAITING, 0),
        _ui(4, Category.READY_TO_MERGE, -20),
        _ui(5, Category.STALE, -30),
    ]
    state, _ = _state(prs)
    assert [state.prs[i].pr.number for i in state.visible_indices()] == [4, 1, 3, 5, 2]
    assert state.selected_pr.pr.number == 4


def test_start_refresh_is_gated():
    state, workers = _state([])
    assert state.start_refresh() is True
    assert state.refreshing
    assert state.request_refresh() is False
    assert len(workers) == 1


def test_failed_refresh_keeps_list():
    prs = [_ui(1)]
    state, workers = _state(prs)
    state.start_refresh()
    workers[0].result = RefreshResult(error="network down")

    state.tick()

    assert not state.refreshing
    assert state.prs == prs
    assert state.last_error == "network down"


def test_successful_refresh_replaces_list_and_alerts():
    notifier = Mock()
    bell = Mock()
    old = [_ui(1, Category.WAITING)]
    state, workers = _state(old, notifier=notifier, bell=bell, bell_enabled=True)
    state.last_error = "old error"

    new = [
        _ui(1, Category.NEEDS_YOU, 50, review_state=ReviewState.REQUESTED, new_review=True),
        _ui(2, Category.NEEDS_YOU, 40, repo="web", ci_state=CiState.FAILURE, new_failure=True),
        _ui(3, Category.READY_TO_MERGE, -20),
    ]
    state.start_refresh()
    workers[0].result = RefreshResult(prs=new)
    state.tick()

    assert state.prs == new
    assert state.last_error is None
    assert state.seen_repos == {"acme/api", "acme/web"}
    bell.assert_called_once()
    notifier.new_repo.assert_called_once_with("acme/web")
    notifier.ci_failure.assert_called_once_with("PR 2", "acme/web", "https://github.com/acme/web/pull/2")
    notifier.review_requested.assert_called_once()
    notifier.needs_you.assert_called_once_with(2)
    notifier.ready_to_merge.assert_called_once()


def test_alerts_respect_preferences_and_caps():
    notifier = Mock()
    bell = Mock()
    state, workers = _state([], notifier=notifier, bell=bell, bell_enabled=False, notifications_enabled=True)
    new = [_ui(n, Category.NEEDS_YOU, 40, ci_state=CiState.FAILURE, new_failure=True) for n in range(5)]

    state.start_refresh()
    workers[0].result = RefreshResult(prs=new)
    state.tick()

    bell.assert_not_called()
    assert notifier.ci_failure.call_count == 3
    notifier.needs_you.assert_called_once_with(5)


def test_diff_alerts_only_counts_entries():
    old = [_ui(1, Category.NEEDS_YOU, 50), _ui(2, Category.READY_TO_MERGE)]
    new = [_ui(1, Category.NEEDS_YOU, 50), _ui(2, Category.READY_TO_MERGE), _ui(3, Category.WAITING, repo="docs")]
    alerts = diff_alerts(old, new, {"acme/api"})
    assert alerts.entered_needs_you == []
    assert alerts.entered_ready_to_merge == []
    assert alerts.new_repos == ["acme/docs"]
    assert not alerts.ring_bell


def test_list_auto_refresh_schedule():
    clock = Clock(1000.0)
    state, workers = _state([], monotonic=clock, list_interval_secs=180)

    state.tick()  # never refreshed: due immediately
    assert len(workers) == 1
    workers[0].result = RefreshResult(prs=[])
    state.tick()
    assert not state.refreshing

    clock.t += 100
    state.tick()
    assert len(workers) == 1

    clock.t += 81
    state.tick()
    assert len(workers) == 2


def test_details_timer_is_independent():
    clock = Clock(1000.0)
    state, workers = _state([_ui(1)], monotonic=clock, details_interval_secs=30)
    state.last_refresh_started = clock.t

    state.toggle_details()
    assert state.mode is ViewMode.DETAILS
    clock.t += 29
    state.tick()
    assert workers == []
    clock.t += 2
    state.tick()
    assert len(workers) == 1

    workers[0].result = RefreshResult(prs=[_ui(1)])
    state.tick()
    state.toggle_details()
    assert state.mode is ViewMode.LIST
    assert state.details_last_auto_refresh is None


def test_refresh_animation_advances_while_in_flight():
    state, workers = _state([])
    state.start_refresh()
    state.tick()
    state.tick()
    assert state.phase == 2


def test_navigation_wraps_in_list():
    state, _ = _state([_ui(1), _ui(2), _ui(3)])
    state.move_up()
    assert state.selected == 2
    state.move_down()
    assert state.selected == 0
    state.move_down()
    assert state.selected == 1


def test_details_captures_key_and_clamps_ci_cursor():
    checks = [CiCheck("a", CiCheckState.FAILURE, "https://ci/a"), CiCheck("b", CiCheckState.SUCCESS)]
    state, workers = _state([_ui(1), _ui(2, checks=checks)])
    state.move_down()
    state.toggle_details()
    assert state.details_pr_key == "acme/api#2"
    assert state.details_ci_selected == 0

    state.move_down()
    state.move_down()
    assert state.details_ci_selected == 1
    state.move_up()
    state.move_up()
    assert state.details_ci_selected == 0

    # Re-sorted list keeps the same PR in details
    state.start_refresh()
    workers[0].result = RefreshResult(prs=[_ui(2, checks=checks[:1]), _ui(1)])
    state.details_ci_selected = 1
    state.tick()
    assert state.details_pr.pr.number == 2
    assert state.details_ci_selected == 0


def test_filter_editing_flow():
    prs = [_ui(1, title="alpha"), _ui(2, title="beta"), _ui(3, title="alphabet")]
    state, _ = _state(prs)

    state.begin_filter()
    for ch in "alp":
        state.type_char(ch)
    assert [state.prs[i].pr.number for i in state.visible_indices()] == [1, 3]

    state.move_down()
    state.type_char("h")
    state.type_char("a")
    state.type_char("b")
    assert len(state.visible_indices()) == 1
    assert state.selected == 0

    state.backspace()
    state.backspace()
    state.backspace()
    assert state.filters.query == "alp"

    state.cancel_filter()
    assert not state.filters.editing
    assert state.filters.query == ""
    assert len(state.visible_indices()) == 3


def test_filter_submit_opens_and_keeps_query():
    opener = Mock()
    state, _ = _state([_ui(1, title="alpha"), _ui(2, title="beta")], opener=opener)
    state.begin_filter()
    for ch in "beta":
        state.type_char(ch)
    state.submit_filter()

    opener.assert_called_once_with("https://github.com/acme/api/pull/2")
    assert not state.filters.editing
    assert state.filters.query == "beta"


def test_toggle_filters_and_escape():
    prs = [
        _ui(1, Category.NEEDS_YOU, 50, review_state=ReviewState.REQUESTED),
        _ui(2, Category.NEEDS_YOU, 40, ci_state=CiState.FAILURE),
        _ui(3),
    ]
    state, _ = _state(prs)
    state.move_down()
    state.move_down()

    state.toggle_only_needs_you()
    assert state.selected == 0
    assert len(state.visible_indices()) == 2
    state.toggle_only_failing_ci()
    assert [state.prs[i].pr.number for i in state.visible_indices()] == [2]
    state.toggle_only_failing_ci()
    state.toggle_only_review_requested()
    assert [state.prs[i].pr.number for i in state.visible_indices()] == [1]

    state.escape()
    assert not state.filters.is_active()
    assert len(state.visible_indices()) == 3


def test_selection_clamped_when_list_shrinks():
    state, workers = _state([_ui(1), _ui(2), _ui(3)])
    state.selected = 2
    state.start_refresh()
    workers[0].result = RefreshResult(prs=[_ui(1)])
    state.tick()
    assert state.selected == 0

    state.start_refresh()
    workers[1].result = RefreshResult(prs=[])
    state.tick()
    assert state.selected == 0
    assert state.selected_pr is None


def test_open_stamps_and_writes_through():
    store = Mock()
    store.set_opened_at.return_value = True
    opener = Mock()
    state, _ = _state([_ui(1)], store=store, opener=opener)

    state.open_selected()

    opener.assert_called_once_with("https://github.com/acme/api/pull/1")
    assert state.prs[0].last_opened_at == NOW + 5
    store.set_opened_at.assert_called_once_with("acme/api#1", NOW + 5)


def test_open_survives_storage_error():
    store = Mock()
    store.set_opened_at.side_effect = StorageError("locked")
    state, _ = _state([_ui(1)], store=store)
    state.open_selected()
    assert state.prs[0].last_opened_at == NOW + 5


def test_details_open_check_and_failing_check():
    checks = [
        CiCheck("lint", CiCheckState.SUCCESS, "https://ci/lint"),
        CiCheck("test", CiCheckState.FAILURE, "https://ci/test"),
        CiCheck("e2e", CiCheckState.RUNNING, None),
    ]
    opener = Mock()
    state, _ = _state([_ui(1, checks=checks)], opener=opener)
    state.toggle_details()

    state.open_selected()
    state.open_failing_check()
    state.move_down()
    state.move_down()
    state.open_selected()

    assert [c.args[0] for c in opener.call_args_list] == [
        "https://ci/lint",
        "https://ci/test",
        "https://github.com/acme/api/pull/1",
    ]


def test_help_toggle():
    state, _ = _state([])
    state.toggle_help()
    assert state.help_open
    state.escape()
    assert not state.help_open


def test_details_falls_back_to_list_when_pr_pruned():
    state, workers = _state([_ui(1), _ui(2)])
    state.toggle_details()
    assert state.mode is ViewMode.DETAILS

    state.start_refresh()
    workers[0].result = RefreshResult(prs=[_ui(2)])
    state.tick()

    assert state.mode is ViewMode.LIST
    assert state.details_pr_key is None
    assert state.details_last_auto_refresh is None
    assert state.selected_pr.pr.number == 2


def test_tick_reaps_notifier_processes():
    notifier = Mock()
    state, _ = _state([], notifier=notifier)
    state.tick()
    notifier.reap.assert_called_once()
