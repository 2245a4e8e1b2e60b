from __future__ import annotations

from needle.model import (
    Category,
    CiCheck,
    CiCheckState,
    CiState,
    MergeBlockers,
    Pr,
    ReviewState,
    UiPr,
    make_pr_key,
)


def _pr(**overrides) -> Pr:
    fields = dict(
        owner="acme",
        repo="api",
        number=7,
        author="alice",
        title="Add endpoint",
        url="https://github.com/acme/api/pull/7",
        updated_at=1_700_000_000,
    )
    fields.update(overrides)
    return Pr(**fields)


def test_pr_key_format():
    assert make_pr_key("acme", "api", 7) == "acme/api#7"
    assert _pr().pr_key == "acme/api#7"
    assert _pr().repo_slug == "acme/api"


def test_state_parse_falls_back_to_none():
    assert CiState.parse("failure") is CiState.FAILURE
    assert CiState.parse("bogus") is CiState.NONE
    assert CiState.parse(None) is CiState.NONE
    assert ReviewState.parse("requested") is ReviewState.REQUESTED
    assert ReviewState.parse("") is ReviewState.NONE
    assert CiCheckState.parse("neutral") is CiCheckState.NEUTRAL
    assert CiCheckState.parse("weird") is CiCheckState.NONE


def test_ci_check_dict_round_trip():
    check = CiCheck(name="lint", state=CiCheckState.RUNNING, url="https://ci/1", started_at=123)
    assert CiCheck.from_dict(check.to_dict()) == check


def test_merge_blockers_clear_and_reasons():
    assert MergeBlockers().is_clear()
    assert MergeBlockers(required_approvals=1, current_approvals=1).is_clear()

    blocked = MergeBlockers(
        has_conflicts=True,
        required_approvals=2,
        current_approvals=1,
        failing_required_checks=["test"],
        behind_base=True,
    )
    assert not blocked.is_clear()
    assert blocked.reasons() == [
        "merge conflicts",
        "behind base branch",
        "approvals 1/2",
        "required check failing: test",
    ]


def test_ui_pr_partition_puts_drafts_last():
    ui = UiPr(pr=_pr(), score=50, category=Category.NEEDS_YOU, display_status="x")
    assert ui.partition == "needs_you"

    draft = UiPr(pr=_pr(is_draft=True), score=50, category=Category.NEEDS_YOU, display_status="x")
    assert draft.partition == "draft"
    assert draft.category is Category.NEEDS_YOU
