from __future__ import annotations

from needle.model import Category, CiCheck, CiCheckState, CiState, MergeBlockers, Pr, ReviewState
from needle.scoring import (
    SCORE_CI_FAILED_NEW,
    SCORE_CI_FAILED_UNCHANGED,
    categorize,
    category_for_score,
    evaluate_pr,
    human_age,
    human_duration,
    rank,
    running_for_secs,
    score_pr,
    status_text,
)

NOW = 1_700_000_000


def _pr(ci_state=CiState.NONE, review_state=ReviewState.NONE, updated_age_secs=60, **overrides) -> Pr:
    fields = dict(
        owner="acme",
        repo="repo",
        number=1,
        author="alice",
        title="Test",
        url="https://example.com",
        updated_at=NOW - updated_age_secs,
        last_commit_sha="deadbeef",
        ci_state=ci_state,
        review_state=review_state,
    )
    fields.update(overrides)
    return Pr(**fields)


def test_review_requested_needs_you():
    ui = evaluate_pr(_pr(review_state=ReviewState.REQUESTED), NOW, is_new_review_request=True)
    assert ui.score >= 50
    assert ui.category is Category.NEEDS_YOU
    assert ui.display_status == "👀 review requested"


def test_known_review_request_shows_ci_status():
    ui = evaluate_pr(_pr(ci_state=CiState.SUCCESS, review_state=ReviewState.REQUESTED), NOW)
    assert ui.score == 50
    assert ui.display_status.startswith("✅ green")


def test_ci_failure_new_vs_unchanged():
    pr = _pr(ci_state=CiState.FAILURE)
    assert score_pr(pr, True, NOW) == SCORE_CI_FAILED_NEW == 40
    assert score_pr(pr, False, NOW) == SCORE_CI_FAILED_UNCHANGED == -30
    assert evaluate_pr(pr, NOW, is_new_ci_failure=False).category is Category.STALE
    assert evaluate_pr(pr, NOW, is_new_ci_failure=True).category is Category.NEEDS_YOU


def test_ci_running_long_vs_short():
    assert score_pr(_pr(ci_state=CiState.RUNNING, updated_age_secs=11 * 60), False, NOW) == 20
    assert score_pr(_pr(ci_state=CiState.RUNNING, updated_age_secs=4 * 60), False, NOW) == 0


def test_running_duration_prefers_oldest_check_start():
    checks = [
        CiCheck(name="integration", state=CiCheckState.RUNNING, started_at=NOW - 11 * 60),
        CiCheck(name="unit", state=CiCheckState.RUNNING, started_at=NOW - 2 * 60),
        CiCheck(name="done", state=CiCheckState.SUCCESS, started_at=NOW - 3600),
    ]
    pr = _pr(ci_state=CiState.RUNNING, updated_age_secs=60, ci_checks=checks)
    assert running_for_secs(pr, NOW) == 11 * 60
    assert score_pr(pr, False, NOW) == 20
    assert status_text(pr, NOW, False, False) == "🟡 CI running (11m)"


def test_approved_unmerged_after_a_day():
    old = _pr(ci_state=CiState.NONE, review_state=ReviewState.APPROVED, updated_age_secs=25 * 3600)
    fresh = _pr(ci_state=CiState.NONE, review_state=ReviewState.APPROVED, updated_age_secs=3600)
    assert score_pr(old, False, NOW) == 15
    assert score_pr(fresh, False, NOW) == 0


def test_waiting_on_others_only_without_review_state():
    assert score_pr(_pr(ci_state=CiState.SUCCESS), False, NOW) == -20
    assert score_pr(_pr(ci_state=CiState.SUCCESS, review_state=ReviewState.APPROVED), False, NOW) == 0
    assert score_pr(_pr(ci_state=CiState.SUCCESS, review_state=ReviewState.REQUESTED), False, NOW) == 50


def test_score_is_sum_of_terms():
    pr = _pr(ci_state=CiState.FAILURE, review_state=ReviewState.REQUESTED)
    assert score_pr(pr, True, NOW) == 90
    assert score_pr(pr, False, NOW) == 20


def test_category_thresholds():
    assert category_for_score(40) is Category.NEEDS_YOU
    assert category_for_score(39) is Category.WAITING
    assert category_for_score(0) is Category.WAITING
    assert category_for_score(-1) is Category.STALE


def test_ready_to_merge_override():
    mine = _pr(ci_state=CiState.SUCCESS, is_viewer_author=True, merge_blockers=MergeBlockers())
    assert categorize(mine, -20) is Category.READY_TO_MERGE
    assert evaluate_pr(mine, NOW).score == -20

    behind = _pr(ci_state=CiState.SUCCESS, is_viewer_author=True, merge_blockers=MergeBlockers(behind_base=True))
    assert categorize(behind, -20) is Category.STALE

    theirs = _pr(ci_state=CiState.SUCCESS, is_viewer_author=False)
    assert categorize(theirs, -20) is Category.STALE

    draft = _pr(ci_state=CiState.SUCCESS, is_viewer_author=True, is_draft=True)
    assert categorize(draft, -20) is Category.STALE

    red = _pr(ci_state=CiState.FAILURE, is_viewer_author=True)
    assert categorize(red, 40) is Category.NEEDS_YOU


def test_status_text_variants():
    assert status_text(_pr(ci_state=CiState.FAILURE), NOW, True, False) == "❌ CI failed (new)"
    assert status_text(_pr(ci_state=CiState.FAILURE), NOW, False, False) == "❌ CI failed"
    assert status_text(_pr(ci_state=CiState.SUCCESS, updated_age_secs=7200), NOW, False, False) == "✅ green 2h ago"
    assert status_text(_pr(updated_age_secs=3 * 86400), NOW, False, False) == "⏺ none 3d ago"


def test_human_age_and_duration():
    assert human_age(NOW, NOW - 30) == "now"
    assert human_age(NOW, NOW - 5 * 60) == "5m ago"
    assert human_age(NOW, NOW + 100) == "now"
    assert human_duration(45) == "45s"
    assert human_duration(125) == "2m"
    assert human_duration(3 * 3600 + 5 * 60) == "3h5m"


def test_rank_orders_by_score_then_recency():
    a = evaluate_pr(_pr(number=1, review_state=ReviewState.REQUESTED, updated_age_secs=500), NOW)
    b = evaluate_pr(_pr(number=2, review_state=ReviewState.REQUESTED, updated_age_secs=100), NOW)
    c = evaluate_pr(_pr(number=3, ci_state=CiState.SUCCESS), NOW)
    assert [ui.pr.number for ui in rank([c, a, b])] == [2, 1, 3]
