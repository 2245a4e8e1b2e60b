"""
Attention model shared by the cache, scoring engine and UI.

A PR is identified by ``pr_key`` ("{owner}/{repo}#{number}"), which stays
stable across refreshes and joins fetch cycles to cached rows.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class CiState(str, Enum):
    """Aggregate CI rollup for a PR's head commit."""

    SUCCESS = "success"
    FAILURE = "failure"
    RUNNING = "running"
    NONE = "none"

    @classmethod
    def parse(cls, value: str | None) -> "CiState":
        try:
            return cls(value)
        except ValueError:
            return cls.NONE


class ReviewState(str, Enum):
    """Review state as it pertains to the viewer."""

    REQUESTED = "requested"
    APPROVED = "approved"
    NONE = "none"

    @classmethod
    def parse(cls, value: str | None) -> "ReviewState":
        try:
            return cls(value)
        except ValueError:
            return cls.NONE


class CiCheckState(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    RUNNING = "running"
    NEUTRAL = "neutral"
    NONE = "none"

    @classmethod
    def parse(cls, value: str | None) -> "CiCheckState":
        try:
            return cls(value)
        except ValueError:
            return cls.NONE

    @property
    def is_failure(self) -> bool:
        return self is CiCheckState.FAILURE


class Category(str, Enum):
    NEEDS_YOU = "needs_you"
    READY_TO_MERGE = "ready_to_merge"
    WAITING = "waiting"
    STALE = "stale"


DRAFT_PARTITION = "draft"

# Display order of list sections; drafts always render last.
PARTITION_ORDER: tuple[str, ...] = (
    Category.READY_TO_MERGE.value,
    Category.NEEDS_YOU.value,
    Category.WAITING.value,
    Category.STALE.value,
    DRAFT_PARTITION,
)


@dataclass
class CiCheck:
    """One named check run or commit status."""

    name: str
    state: CiCheckState = CiCheckState.NONE
    url: str | None = None
    started_at: int | None = None  # unix seconds

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "url": self.url,
            "started_at": self.started_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CiCheck":
        started_at = data.get("started_at")
        return cls(
            name=str(data["name"]),
            state=CiCheckState.parse(data.get("state")),
            url=data.get("url"),
            started_at=int(started_at) if started_at is not None else None,
        )


@dataclass
class MergeBlockers:
    """Why a PR cannot be merged right now."""

    has_conflicts: bool = False
    required_approvals: int | None = None
    current_approvals: int = 0
    required_checks: list[str] = field(default_factory=list)
    failing_required_checks: list[str] = field(default_factory=list)
    behind_base: bool = False

    def is_clear(self) -> bool:
        if self.has_conflicts or self.behind_base:
            return False
        if self.failing_required_checks:
            return False
        if self.required_approvals is not None and self.current_approvals < self.required_approvals:
            return False
        return True

    def reasons(self) -> list[str]:
        """Human-readable list of what is blocking the merge."""
        out: list[str] = []
        if self.has_conflicts:
            out.append("merge conflicts")
        if self.behind_base:
            out.append("behind base branch")
        if self.required_approvals is not None and self.current_approvals < self.required_approvals:
            out.append(f"approvals {self.current_approvals}/{self.required_approvals}")
        for name in self.failing_required_checks:
            out.append(f"required check failing: {name}")
        return out

    def to_dict(self) -> dict[str, Any]:
        return {
            "has_conflicts": self.has_conflicts,
            "required_approvals": self.required_approvals,
            "current_approvals": self.current_approvals,
            "required_checks": list(self.required_checks),
            "failing_required_checks": list(self.failing_required_checks),
            "behind_base": self.behind_base,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MergeBlockers":
        required = data.get("required_approvals")
        return cls(
            has_conflicts=bool(data.get("has_conflicts", False)),
            required_approvals=int(required) if required is not None else None,
            current_approvals=int(data.get("current_approvals", 0)),
            required_checks=[str(c) for c in data.get("required_checks", [])],
            failing_required_checks=[str(c) for c in data.get("failing_required_checks", [])],
            behind_base=bool(data.get("behind_base", False)),
        )


def make_pr_key(owner: str, repo: str, number: int) -> str:
    return f"{owner}/{repo}#{number}"


@dataclass
class Pr:
    """A pull request as seen by one fetch cycle."""

    owner: str
    repo: str
    number: int
    author: str
    title: str
    url: str
    updated_at: int  # unix seconds, as reported by the remote
    last_commit_sha: str | None = None
    ci_state: CiState = CiState.NONE
    ci_checks: list[CiCheck] = field(default_factory=list)
    review_state: ReviewState = ReviewState.NONE
    is_draft: bool = False
    mergeable: str | None = None
    merge_state_status: str | None = None
    is_viewer_author: bool = False
    merge_blockers: MergeBlockers | None = None

    @property
    def pr_key(self) -> str:
        return make_pr_key(self.owner, self.repo, self.number)

    @property
    def repo_slug(self) -> str:
        return f"{self.owner}/{self.repo}"


@dataclass
class UiPr:
    """A scored PR as handed to the UI.

    The novelty flags only describe the refresh cycle that produced this
    instance; they are re-derived every cycle from the cached prior state.
    """

    pr: Pr
    score: int
    category: Category
    display_status: str
    last_opened_at: int | None = None
    is_new_review_request: bool = False
    is_new_ci_failure: bool = False

    @property
    def pr_key(self) -> str:
        return self.pr.pr_key

    @property
    def partition(self) -> str:
        """List section this PR renders in (drafts get their own)."""
        if self.pr.is_draft:
            return DRAFT_PARTITION
        return self.category.value
