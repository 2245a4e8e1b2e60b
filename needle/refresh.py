"""
Refresh orchestration: fetch, reconcile with the cache, score, persist.

One cycle is:

1. Fetch the attention set (remote or demo generator), filtered by the
   cutoff window and scope.
2. Look up each PR's cached row from the previous cycle.
3. Run novelty detection and scoring.
4. Upsert every row, then prune the cache to exactly this cycle's keys.

A fetch failure aborts the cycle before anything is written.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Protocol, runtime_checkable

from .config import ScopeConfig
from .demo import DemoGenerator, seeded_last_opened_at
from .github import GitHubClient, fetch_attention_prs
from .model import Pr, UiPr
from .novelty import is_new_ci_failure, is_new_review_request
from .scoring import evaluate_pr, rank
from .store import CachedRow, Store

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86_400


@dataclass
class ScopeFilters:
    """Org and repository filters; empty lists match everything."""

    orgs: list[str] = field(default_factory=list)
    include_repos: list[str] = field(default_factory=list)  # owner/repo
    exclude_repos: list[str] = field(default_factory=list)  # owner/repo

    @classmethod
    def from_config(cls, scope: ScopeConfig) -> "ScopeFilters":
        return cls(
            orgs=list(scope.org),
            include_repos=list(scope.include),
            exclude_repos=list(scope.exclude),
        )

    def matches(self, pr: Pr) -> bool:
        if self.orgs and pr.owner not in self.orgs:
            return False
        if self.include_repos and pr.repo_slug not in self.include_repos:
            return False
        if pr.repo_slug in self.exclude_repos:
            return False
        return True


@runtime_checkable
class Refresher(Protocol):
    """Anything that can run one refresh cycle."""

    def refresh(self) -> list[UiPr]:
        """Run a full cycle and return the ranked list."""
        ...


def cutoff_for(now: int, days: int) -> int:
    return now - max(0, days) * SECONDS_PER_DAY


def run_cycle(
    store: Store,
    prs: list[Pr],
    now: int,
    cutoff_ts: int,
    scope: ScopeFilters,
    seed_opened: Callable[[str, int], int | None] | None = None,
) -> list[UiPr]:
    """Reconcile, score and persist an already fetched PR list.

    ``seed_opened`` supplies a ``last_opened_at`` for PRs with no cached row.
    """
    current: dict[str, Pr] = {}
    for pr in prs:
        if pr.updated_at < cutoff_ts or not scope.matches(pr):
            continue
        current[pr.pr_key] = pr

    existing = store.load_all()

    out: list[UiPr] = []
    for key, pr in current.items():
        old = existing.get(key)
        new_review = is_new_review_request(pr, old)
        new_failure = is_new_ci_failure(pr, old)

        if old is not None:
            last_opened_at = old.last_opened_at
        elif seed_opened is not None:
            last_opened_at = seed_opened(key, now)
        else:
            last_opened_at = None

        store.upsert(CachedRow.from_pr(pr, last_seen_at=now, last_opened_at=last_opened_at), now)
        out.append(evaluate_pr(
            pr,
            now,
            is_new_ci_failure=new_failure,
            is_new_review_request=new_review,
            last_opened_at=last_opened_at,
        ))

    removed = store.prune_to(current.keys())
    logger.info(
        "Refresh cycle: %d PRs (%d fetched, %d pruned from cache)",
        len(out), len(prs), removed,
    )
    return rank(out)


def load_cached(store: Store, cutoff_days: int, scope: ScopeFilters, now: int | None = None) -> list[UiPr]:
    """Render the cache without touching the network.

    Rows outside the window or scope are skipped; novelty flags are false.
    """
    if now is None:
        now = int(time.time())
    cutoff_ts = cutoff_for(now, cutoff_days)

    out: list[UiPr] = []
    for row in store.load_all().values():
        pr = row.to_pr(fallback_updated_at=now)
        if pr.updated_at < cutoff_ts or not scope.matches(pr):
            continue
        out.append(evaluate_pr(pr, now, last_opened_at=row.last_opened_at))
    return rank(out)


class LiveRefresher:
    """Refresh cycle backed by the GitHub API."""

    def __init__(
        self,
        db_path: Path,
        client: GitHubClient,
        days: int,
        scope: ScopeFilters,
        include_team_requests: bool = False,
        clock: Callable[[], float] = time.time,
    ):
        self.db_path = db_path
        self.client = client
        self.days = days
        self.scope = scope
        self.include_team_requests = include_team_requests
        self.clock = clock

    def refresh(self) -> list[UiPr]:
        now = int(self.clock())
        cutoff_ts = cutoff_for(now, self.days)
        prs = fetch_attention_prs(self.client, cutoff_ts, self.include_team_requests)
        # Fresh handle per cycle; the UI keeps its own.
        return run_cycle(Store(self.db_path), prs, now, cutoff_ts, self.scope)


class DemoRefresher:
    """Refresh cycle backed by the deterministic demo generator."""

    def __init__(
        self,
        db_path: Path,
        generator: DemoGenerator,
        days: int,
        scope: ScopeFilters,
        clock: Callable[[], float] = time.time,
    ):
        self.db_path = db_path
        self.generator = generator
        self.days = days
        self.scope = scope
        self.clock = clock

    def refresh(self) -> list[UiPr]:
        now = int(self.clock())
        cutoff_ts = cutoff_for(now, self.days)
        prs = self.generator.generate(now)
        return run_cycle(
            Store(self.db_path), prs, now, cutoff_ts, self.scope,
            seed_opened=seeded_last_opened_at,
        )
