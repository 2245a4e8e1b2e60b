"""
Novelty detection: has this event already been shown to the user?

Both checks compare a freshly fetched PR with its cached row from the previous
cycle. They depend only on their inputs.
"""

from __future__ import annotations

from .model import CiState, Pr, ReviewState
from .store import CachedRow


def is_new_review_request(pr: Pr, old: CachedRow | None) -> bool:
    """A review request is new unless the previous cycle already saw it."""
    if pr.review_state is not ReviewState.REQUESTED:
        return False
    if old is None:
        return True
    return old.last_review_state != ReviewState.REQUESTED.value


def is_new_ci_failure(pr: Pr, old: CachedRow | None) -> bool:
    """A CI failure is new if CI was not failing before, or a new commit was pushed.

    A PR that stays red across a push is a different failure and counts as new.
    """
    if pr.ci_state is not CiState.FAILURE:
        return False
    if old is None:
        return True
    if old.last_ci_state != CiState.FAILURE.value:
        return True
    return old.last_commit_sha != pr.last_commit_sha
