"""
Deterministic synthetic PRs for demo mode.

Every PR is derived from a fixed template, the current time, a per-generator
tick and a hash of the PR key, so successive refreshes change in a
repeatable way.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from .model import CiCheck, CiCheckState, CiState, MergeBlockers, Pr, ReviewState, make_pr_key

MASK_64 = (1 << 64) - 1
FNV_OFFSET = 0xCBF29CE484222325
FNV_PRIME = 0x100000001B3
GOLDEN = 0x9E3779B97F4A7C15

DEFAULT_VIEWER = "you"


class CiProfile(Enum):
    GREEN = "green"
    RED_NEW = "red_new"
    RED_STUCK = "red_stuck"
    RUNNING_LONG = "running_long"
    RUNNING_SHORT = "running_short"
    NO_CI = "no_ci"


# Profiles whose head SHA never changes between ticks.
STABLE_PROFILES = {CiProfile.GREEN, CiProfile.RED_STUCK, CiProfile.NO_CI}
# Profiles whose updated_at drifts a little between ticks.
WOBBLE_PROFILES = {CiProfile.RUNNING_LONG, CiProfile.RUNNING_SHORT, CiProfile.RED_NEW}


@dataclass(frozen=True)
class DemoPrSpec:
    owner: str
    repo: str
    number: int
    author: str | None  # None means the viewer
    title: str
    updated_age_secs: int
    review: ReviewState
    ci: CiProfile
    is_draft: bool = False
    behind_base: bool = False


DEMO_SPECS: tuple[DemoPrSpec, ...] = (
    DemoPrSpec("acme-inc", "billing-api", 842, "anika",
               "Fix idempotency for retries on charge capture",
               2 * 3600, ReviewState.REQUESTED, CiProfile.GREEN),
    DemoPrSpec("orbit", "web", 1932, "santiago",
               "Add keyboard navigation to project switcher",
               28 * 60, ReviewState.NONE, CiProfile.RED_NEW),
    DemoPrSpec("windmill-labs", "infra", 317, "chen",
               "Bump Postgres to 16.2 and tune autovacuum thresholds",
               4 * 86400, ReviewState.NONE, CiProfile.RED_STUCK),
    DemoPrSpec("paperplane", "mobile", 501, "sofia",
               "Reduce cold-start time by deferring analytics init",
               19 * 60, ReviewState.NONE, CiProfile.RUNNING_LONG),
    DemoPrSpec("acme-inc", "design-system", 128, "mia",
               "Button: add loading state and improve focus ring",
               6 * 60, ReviewState.NONE, CiProfile.RUNNING_SHORT),
    DemoPrSpec("honeycombio", "otel-collector", 77, "devin",
               "Add tail-sampling defaults for high-cardinality traces",
               7 * 86400, ReviewState.NONE, CiProfile.GREEN),
    DemoPrSpec("orbit", "api", 1104, "jules",
               "Rate limit /v1/events and emit structured logs",
               16 * 3600, ReviewState.APPROVED, CiProfile.GREEN),
    DemoPrSpec("paperplane", "docs", 42, "noah",
               "Docs: clarify OAuth scopes and add troubleshooting",
               3 * 86400, ReviewState.NONE, CiProfile.NO_CI),
    DemoPrSpec("acme-inc", "monorepo", 2551, "anika",
               "Refactor: extract feature flags into shared crate",
               11 * 3600, ReviewState.REQUESTED, CiProfile.RUNNING_LONG),
    DemoPrSpec("windmill-labs", "sdk-rust", 98, "chen",
               "Add retry policy for 429/503 responses",
               12 * 86400, ReviewState.NONE, CiProfile.GREEN),
    DemoPrSpec("orbit", "web", 1940, "sofia",
               "Fix flaky onboarding test on CI runners",
               50 * 60, ReviewState.NONE, CiProfile.RED_NEW),
    DemoPrSpec("paperplane", "backend", 611, "devin",
               "Graceful shutdown: drain queue workers before exit",
               26 * 3600, ReviewState.APPROVED, CiProfile.NO_CI),
    DemoPrSpec("honeycombio", "ui", 390, "mia",
               "Charts: fix tooltip positioning near viewport edges",
               9 * 3600, ReviewState.NONE, CiProfile.GREEN),
    DemoPrSpec("acme-inc", "payments-worker", 219, "santiago",
               "Handle duplicate webhook deliveries and add metrics",
               3 * 3600, ReviewState.REQUESTED, CiProfile.RED_NEW),
    DemoPrSpec("windmill-labs", "infra", 321, "jules",
               "Terraform: split prod/staging state and add drift detection",
               18 * 86400, ReviewState.NONE, CiProfile.GREEN),
    DemoPrSpec("paperplane", "mobile", 523, "noah",
               "Fix crash when resuming from background on iOS 17.2",
               90 * 60, ReviewState.NONE, CiProfile.RUNNING_LONG),
    # Viewer-authored PRs
    DemoPrSpec("acme-inc", "billing-api", 851, None,
               "Expose invoice PDF download link in customer portal",
               5 * 3600, ReviewState.APPROVED, CiProfile.GREEN),
    DemoPrSpec("orbit", "api", 1112, None,
               "Paginate /v1/projects with opaque cursors",
               30 * 3600, ReviewState.APPROVED, CiProfile.GREEN, behind_base=True),
    DemoPrSpec("paperplane", "backend", 618, None,
               "WIP: move job scheduler to a dedicated service",
               40 * 60, ReviewState.NONE, CiProfile.RUNNING_SHORT, is_draft=True),
)


def fnv1a_64(s: str) -> int:
    h = FNV_OFFSET
    for b in s.encode("utf-8"):
        h ^= b
        h = (h * FNV_PRIME) & MASK_64
    return h


def rotate_left_64(x: int, n: int) -> int:
    x &= MASK_64
    return ((x << n) | (x >> (64 - n))) & MASK_64


def short_sha(x: int) -> str:
    """Deterministic 7-hex-digit pseudo SHA (xorshift64)."""
    out = []
    for _ in range(7):
        x ^= (x << 13) & MASK_64
        x ^= x >> 7
        x ^= (x << 17) & MASK_64
        out.append("0123456789abcdef"[x & 0x0F])
    return "".join(out)


def seeded_last_opened_at(pr_key: str, now: int) -> int | None:
    """Give roughly a quarter of demo PRs a prior "opened" time."""
    bucket = fnv1a_64(pr_key) % 11
    if bucket == 0:
        return now - 23 * 60
    if bucket == 1:
        return now - 3 * 3600
    if bucket == 2:
        return now - 2 * 86400
    return None


def actions_url(owner: str, repo: str, run_id: int) -> str:
    return f"https://github.com/{owner}/{repo}/actions/runs/{run_id}"


def pr_url(owner: str, repo: str, number: int) -> str:
    return f"https://github.com/{owner}/{repo}/pull/{number}"


def checks_for(profile: CiProfile, owner: str, repo: str, now: int, salt: int) -> tuple[CiState, list[CiCheck]]:
    base_run = 8_100_000 + (salt % 900_000)

    def mk(name: str, state: CiCheckState, started_at: int | None, offset: int) -> CiCheck:
        return CiCheck(name=name, state=state, url=actions_url(owner, repo, base_run + offset), started_at=started_at)

    if profile is CiProfile.GREEN:
        return CiState.SUCCESS, [
            mk("build / linux", CiCheckState.SUCCESS, None, 11),
            mk("test / unit", CiCheckState.SUCCESS, None, 22),
            mk("lint", CiCheckState.SUCCESS, None, 33),
            mk("e2e / chrome", CiCheckState.NEUTRAL, None, 44),
        ]
    if profile in (CiProfile.RED_NEW, CiProfile.RED_STUCK):
        return CiState.FAILURE, [
            mk("test / unit", CiCheckState.FAILURE, None, 22),
            mk("e2e / chrome", CiCheckState.FAILURE, None, 44),
            mk("build / linux", CiCheckState.SUCCESS, None, 11),
            mk("lint", CiCheckState.SUCCESS, None, 33),
        ]
    if profile is CiProfile.RUNNING_LONG:
        return CiState.RUNNING, [
            mk("test / integration", CiCheckState.RUNNING, now - 68 * 60, 22),
            mk("deploy / preview", CiCheckState.RUNNING, now - 41 * 60, 44),
            mk("build / linux", CiCheckState.SUCCESS, None, 11),
            mk("lint", CiCheckState.SUCCESS, None, 33),
        ]
    if profile is CiProfile.RUNNING_SHORT:
        return CiState.RUNNING, [
            mk("build / linux", CiCheckState.RUNNING, now - 4 * 60, 11),
            mk("lint", CiCheckState.NONE, None, 33),
            mk("test / unit", CiCheckState.NONE, None, 22),
        ]
    return CiState.NONE, []


class DemoGenerator:
    """Synthetic PR source; each ``generate`` call advances the tick."""

    def __init__(self, viewer: str = DEFAULT_VIEWER, specs: tuple[DemoPrSpec, ...] = DEMO_SPECS):
        self.viewer = viewer
        self.specs = specs
        self.tick = 0

    def generate(self, now: int) -> list[Pr]:
        self.tick += 1
        return [self._build(spec, now, self.tick) for spec in self.specs]

    def _build(self, spec: DemoPrSpec, now: int, tick: int) -> Pr:
        key = make_pr_key(spec.owner, spec.repo, spec.number)
        key_hash = fnv1a_64(key)
        salt = key_hash ^ rotate_left_64(tick, 13)

        ci_state, ci_checks = checks_for(spec.ci, spec.owner, spec.repo, now, salt)

        if spec.ci in STABLE_PROFILES:
            sha_seed = key_hash
        else:
            sha_seed = salt ^ ((tick * GOLDEN) & MASK_64)

        wobble = (tick % 7) * 60 if spec.ci in WOBBLE_PROFILES else 0
        updated_at = now - max(0, spec.updated_age_secs - wobble)

        author = spec.author or self.viewer
        return Pr(
            owner=spec.owner,
            repo=spec.repo,
            number=spec.number,
            author=author,
            title=spec.title,
            url=pr_url(spec.owner, spec.repo, spec.number),
            updated_at=updated_at,
            last_commit_sha=short_sha(sha_seed),
            ci_state=ci_state,
            ci_checks=ci_checks,
            review_state=spec.review,
            is_draft=spec.is_draft,
            mergeable="MERGEABLE",
            merge_state_status="BEHIND" if spec.behind_base else "CLEAN",
            is_viewer_author=author == self.viewer,
            merge_blockers=MergeBlockers(
                required_approvals=1,
                current_approvals=1 if spec.review is ReviewState.APPROVED else 0,
                behind_base=spec.behind_base,
            ),
        )
