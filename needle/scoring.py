"""
Urgency scoring and categorization for Needle.

A PR's score is a sum of independent terms:

    +50  review requested from you
    +40  CI failed, and the failure is new (state changed or new commit)
    -30  CI failed, unchanged since the last refresh
    +20  CI running for longer than 10 minutes
    +15  approved but unmerged for more than 24 hours
    -20  waiting on others (no review state, CI green)

The constants below are also what the help screen displays.
"""

from __future__ import annotations

from .model import Category, CiCheckState, CiState, Pr, ReviewState, UiPr

SCORE_REVIEW_REQUESTED = 50
SCORE_CI_FAILED_NEW = 40
SCORE_CI_RUNNING_LONG = 20
SCORE_APPROVED_UNMERGED_OLD = 15
SCORE_WAITING_ON_OTHERS_GREEN = -20
SCORE_CI_FAILED_UNCHANGED = -30

CATEGORY_NEEDS_YOU_MIN = 40
CATEGORY_NO_ACTION_MIN = 0

CI_RUNNING_LONG_SECS = 10 * 60
APPROVED_UNMERGED_OLD_SECS = 24 * 3600


def running_for_secs(pr: Pr, now: int) -> int:
    """How long CI has been running.

    Uses the oldest running check's start time when any check reports one;
    the PR's updated_at is only a proxy.
    """
    starts = [
        c.started_at
        for c in pr.ci_checks
        if c.state is CiCheckState.RUNNING and c.started_at is not None
    ]
    if starts:
        return max(0, now - min(starts))
    return max(0, now - pr.updated_at)


def review_term(pr: Pr) -> int:
    if pr.review_state is ReviewState.REQUESTED:
        return SCORE_REVIEW_REQUESTED
    return 0


def ci_failure_term(pr: Pr, is_new_ci_failure: bool) -> int:
    if pr.ci_state is not CiState.FAILURE:
        return 0
    if is_new_ci_failure:
        return SCORE_CI_FAILED_NEW
    return SCORE_CI_FAILED_UNCHANGED


def ci_running_term(pr: Pr, now: int, threshold_secs: int = CI_RUNNING_LONG_SECS) -> int:
    if pr.ci_state is CiState.RUNNING and running_for_secs(pr, now) > threshold_secs:
        return SCORE_CI_RUNNING_LONG
    return 0


def approved_term(pr: Pr, now: int, threshold_secs: int = APPROVED_UNMERGED_OLD_SECS) -> int:
    if pr.review_state is ReviewState.APPROVED and now - pr.updated_at > threshold_secs:
        return SCORE_APPROVED_UNMERGED_OLD
    return 0


def waiting_term(pr: Pr) -> int:
    # Approved PRs are exempt: green + approved is usually actionable (merge).
    if pr.review_state is ReviewState.NONE and pr.ci_state is CiState.SUCCESS:
        return SCORE_WAITING_ON_OTHERS_GREEN
    return 0


def score_pr(pr: Pr, is_new_ci_failure: bool, now: int) -> int:
    """Sum every scoring term; no term depends on another."""
    return (
        review_term(pr)
        + ci_failure_term(pr, is_new_ci_failure)
        + ci_running_term(pr, now)
        + approved_term(pr, now)
        + waiting_term(pr)
    )


def category_for_score(score: int) -> Category:
    if score >= CATEGORY_NEEDS_YOU_MIN:
        return Category.NEEDS_YOU
    if score >= CATEGORY_NO_ACTION_MIN:
        return Category.WAITING
    return Category.STALE


def is_ready_to_merge(pr: Pr) -> bool:
    """Your own non-draft PR, CI green, and no known merge blockers."""
    if not pr.is_viewer_author or pr.is_draft:
        return False
    if pr.ci_state is not CiState.SUCCESS:
        return False
    return pr.merge_blockers is None or pr.merge_blockers.is_clear()


def categorize(pr: Pr, score: int) -> Category:
    if is_ready_to_merge(pr):
        return Category.READY_TO_MERGE
    return category_for_score(score)


def human_age(now: int, then: int) -> str:
    d = max(0, now - then)
    if d < 60:
        return "now"
    if d < 3600:
        return f"{d // 60}m ago"
    if d < 86400:
        return f"{d // 3600}h ago"
    return f"{d // 86400}d ago"


def human_duration(secs: int) -> str:
    s = max(0, secs)
    if s < 60:
        return f"{s}s"
    if s < 3600:
        return f"{s // 60}m"
    return f"{s // 3600}h{(s % 3600) // 60}m"


def status_text(pr: Pr, now: int, is_new_ci_failure: bool, is_new_review_request: bool) -> str:
    """One-line status derived from state; never stored."""
    if is_new_review_request and pr.review_state is ReviewState.REQUESTED:
        return "👀 review requested"

    if pr.ci_state is CiState.FAILURE:
        return "❌ CI failed (new)" if is_new_ci_failure else "❌ CI failed"
    if pr.ci_state is CiState.RUNNING:
        return f"🟡 CI running ({running_for_secs(pr, now) // 60}m)"
    if pr.ci_state is CiState.SUCCESS:
        return f"✅ green {human_age(now, pr.updated_at)}"
    return f"⏺ none {human_age(now, pr.updated_at)}"


def evaluate_pr(
    pr: Pr,
    now: int,
    is_new_ci_failure: bool = False,
    is_new_review_request: bool = False,
    last_opened_at: int | None = None,
) -> UiPr:
    """Score, categorize and describe a PR for display."""
    score = score_pr(pr, is_new_ci_failure, now)
    return UiPr(
        pr=pr,
        score=score,
        category=categorize(pr, score),
        display_status=status_text(pr, now, is_new_ci_failure, is_new_review_request),
        last_opened_at=last_opened_at,
        is_new_review_request=is_new_review_request,
        is_new_ci_failure=is_new_ci_failure,
    )


def rank(prs: list[UiPr]) -> list[UiPr]:
    """Score descending, then most recently updated first."""
    return sorted(prs, key=lambda p: (-p.score, -p.pr.updated_at))
