"""
GitHub GraphQL client for Needle.

Fetches the viewer's attention set: open PRs they authored plus open PRs
where their review is requested, with CI rollup, individual checks, review
state and merge blockers already resolved.
Uses NEEDLE_GITHUB_TOKEN or GITHUB_TOKEN for authentication.
"""

from __future__ import annotations

import logging
import os
import time
from datetime import datetime, timezone
from typing import Any, Iterator

import requests

from . import __version__
from .model import (
    CiCheck,
    CiCheckState,
    CiState,
    MergeBlockers,
    Pr,
    ReviewState,
    make_pr_key,
)

logger = logging.getLogger(__name__)

GITHUB_GRAPHQL_URL = "https://api.github.com/graphql"
PAGE_SIZE = 50
MAX_RETRIES = 3
RETRY_DELAY = 1.0
REQUEST_TIMEOUT = 30.0


class FetchError(Exception):
    """Remote fetch failed (network, auth, rate limit, malformed response)."""


class GitHubAPIError(FetchError):
    """Error from GitHub API."""
    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class RateLimitError(GitHubAPIError):
    """Rate limit exceeded."""
    def __init__(self, reset_time: int | None = None):
        super().__init__("GitHub API rate limit exceeded", 403)
        self.reset_time = reset_time


_PR_FIELDS = """
        number
        author { login }
        title
        url
        updatedAt
        headRefOid
        isDraft
        mergeable
        mergeStateStatus
        reviewDecision
        repository { name owner { login } }
        baseRef {
          branchProtectionRule {
            requiredApprovingReviewCount
            requiredStatusCheckContexts
          }
        }
        latestOpinionatedReviews(first: 50, writersOnly: true) {
          nodes { state }
        }
        reviewRequests(first: 50) {
          nodes {
            requestedReviewer {
              __typename
              ... on User { login }
              ... on Team { slug }
            }
          }
        }
        commits(last: 1) {
          nodes {
            commit {
              statusCheckRollup {
                state
                contexts(first: 50) {
                  nodes {
                    __typename
                    ... on CheckRun { name conclusion detailsUrl startedAt }
                    ... on StatusContext { context state targetUrl }
                  }
                }
              }
            }
          }
        }
"""

AUTHORED_QUERY = """
query($page_size: Int!, $cursor: String) {
  viewer {
    login
    pullRequests(first: $page_size, after: $cursor, states: OPEN,
                 orderBy: {field: UPDATED_AT, direction: DESC}) {
      pageInfo { hasNextPage endCursor }
      nodes {%s}
    }
  }
}
""" % _PR_FIELDS

REVIEW_REQUESTED_QUERY = """
query($page_size: Int!, $cursor: String, $search_query: String!) {
  search(query: $search_query, type: ISSUE, first: $page_size, after: $cursor) {
    pageInfo { hasNextPage endCursor }
    nodes {
      __typename
      ... on PullRequest {%s}
    }
  }
}
""" % _PR_FIELDS


def parse_github_datetime(value: str | None) -> int | None:
    """Parse an ISO-8601 timestamp into unix seconds."""
    if not value:
        return None
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp())


def cutoff_date(cutoff_ts: int) -> str:
    return datetime.fromtimestamp(cutoff_ts, tz=timezone.utc).strftime("%Y-%m-%d")


def resolve_token() -> str | None:
    return os.environ.get("NEEDLE_GITHUB_TOKEN") or os.environ.get("GITHUB_TOKEN")


class GitHubClient:
    """GitHub GraphQL client with retry and rate limit handling."""

    def __init__(self, token: str | None = None):
        self.token = token or resolve_token()
        self.session = requests.Session()

        if self.token:
            self.session.headers["Authorization"] = f"bearer {self.token}"

        self.session.headers["Accept"] = "application/vnd.github+json"
        self.session.headers["User-Agent"] = f"needle/{__version__}"

    def graphql(self, query: str, variables: dict[str, Any]) -> dict[str, Any]:
        """Run a GraphQL query and return its ``data`` object."""
        for attempt in range(MAX_RETRIES):
            try:
                response = self.session.post(
                    GITHUB_GRAPHQL_URL,
                    json={"query": query, "variables": variables},
                    timeout=REQUEST_TIMEOUT,
                )
            except requests.RequestException as e:
                if attempt < MAX_RETRIES - 1:
                    time.sleep(RETRY_DELAY * (attempt + 1))
                    continue
                raise GitHubAPIError(f"Request failed: {e}")

            if response.status_code in (403, 429):
                remaining = response.headers.get("X-RateLimit-Remaining")
                if remaining == "0" or response.status_code == 429:
                    reset_time = int(response.headers.get("X-RateLimit-Reset", 0))
                    raise RateLimitError(reset_time)

            if response.status_code >= 400:
                raise GitHubAPIError(
                    f"GitHub API error: {response.status_code} - {response.text}",
                    response.status_code,
                )

            try:
                payload = response.json()
            except ValueError as e:
                raise GitHubAPIError(f"Malformed response: {e}", response.status_code)

            errors = payload.get("errors")
            if errors:
                messages = "; ".join(str(err.get("message", err)) for err in errors)
                raise GitHubAPIError(f"GraphQL error: {messages}", response.status_code)

            data = payload.get("data")
            if not isinstance(data, dict):
                raise GitHubAPIError("Malformed response: missing data", response.status_code)
            return data

        raise GitHubAPIError("Max retries exceeded")

    def iter_authored(self, cutoff_ts: int) -> Iterator[tuple[str, dict[str, Any]]]:
        """Yield (viewer_login, node) for authored open PRs updated since cutoff."""
        cursor: str | None = None
        while True:
            data = self.graphql(AUTHORED_QUERY, {"page_size": PAGE_SIZE, "cursor": cursor})
            viewer = data.get("viewer") or {}
            login = viewer.get("login") or "unknown"
            connection = viewer.get("pullRequests") or {}

            # Ordered by updatedAt desc: stop once a page crosses the cutoff.
            crossed = False
            for node in connection.get("nodes") or []:
                updated = parse_github_datetime(node.get("updatedAt"))
                if updated is None:
                    continue
                if updated < cutoff_ts:
                    crossed = True
                    continue
                yield login, node

            page_info = connection.get("pageInfo") or {}
            cursor = page_info.get("endCursor")
            if crossed or not page_info.get("hasNextPage") or not cursor:
                return

    def iter_review_requested(self, cutoff_ts: int) -> Iterator[dict[str, Any]]:
        """Yield open PR nodes with the viewer's review requested since cutoff."""
        search_query = (
            "is:pr is:open review-requested:@me sort:updated-desc "
            f"updated:>={cutoff_date(cutoff_ts)}"
        )
        cursor: str | None = None
        while True:
            data = self.graphql(
                REVIEW_REQUESTED_QUERY,
                {"page_size": PAGE_SIZE, "cursor": cursor, "search_query": search_query},
            )
            connection = data.get("search") or {}

            crossed = False
            for node in connection.get("nodes") or []:
                if not node or node.get("__typename") != "PullRequest":
                    continue
                updated = parse_github_datetime(node.get("updatedAt"))
                if updated is None:
                    continue
                if updated < cutoff_ts:
                    crossed = True
                    continue
                yield node

            page_info = connection.get("pageInfo") or {}
            cursor = page_info.get("endCursor")
            if crossed or not page_info.get("hasNextPage") or not cursor:
                return


def _rollup(node: dict[str, Any]) -> dict[str, Any] | None:
    commits = (node.get("commits") or {}).get("nodes") or []
    if not commits:
        return None
    commit = (commits[0] or {}).get("commit") or {}
    return commit.get("statusCheckRollup")


def map_ci_state(node: dict[str, Any]) -> CiState:
    rollup = _rollup(node)
    if not rollup:
        return CiState.NONE
    state = rollup.get("state") or ""
    if state == "SUCCESS":
        return CiState.SUCCESS
    if state in ("FAILURE", "ERROR"):
        return CiState.FAILURE
    if state in ("PENDING", "EXPECTED"):
        return CiState.RUNNING
    return CiState.NONE


_CHECK_RANK = {
    CiCheckState.FAILURE: 0,
    CiCheckState.RUNNING: 1,
    CiCheckState.SUCCESS: 2,
    CiCheckState.NEUTRAL: 3,
    CiCheckState.NONE: 4,
}


def _check_run_state(conclusion: str | None) -> CiCheckState:
    if conclusion is None:
        return CiCheckState.RUNNING
    if conclusion == "SUCCESS":
        return CiCheckState.SUCCESS
    if conclusion in ("FAILURE", "ERROR", "TIMED_OUT", "STARTUP_FAILURE"):
        return CiCheckState.FAILURE
    if conclusion in ("NEUTRAL", "SKIPPED", "STALE", "CANCELLED", "ACTION_REQUIRED"):
        return CiCheckState.NEUTRAL
    return CiCheckState.NONE


def _status_context_state(state: str | None) -> CiCheckState:
    if state == "SUCCESS":
        return CiCheckState.SUCCESS
    if state in ("FAILURE", "ERROR"):
        return CiCheckState.FAILURE
    if state in ("PENDING", "EXPECTED"):
        return CiCheckState.RUNNING
    return CiCheckState.NONE


def map_ci_checks(node: dict[str, Any]) -> list[CiCheck]:
    """Individual checks: failed first, then running, success, neutral, none; then by name."""
    rollup = _rollup(node)
    if not rollup:
        return []
    contexts = (rollup.get("contexts") or {}).get("nodes") or []

    checks: list[CiCheck] = []
    for ctx in contexts:
        if not ctx:
            continue
        typename = ctx.get("__typename")
        if typename == "CheckRun":
            checks.append(CiCheck(
                name=ctx.get("name") or "check",
                state=_check_run_state(ctx.get("conclusion")),
                url=ctx.get("detailsUrl"),
                started_at=parse_github_datetime(ctx.get("startedAt")),
            ))
        elif typename == "StatusContext":
            checks.append(CiCheck(
                name=ctx.get("context") or "status",
                state=_status_context_state(ctx.get("state")),
                url=ctx.get("targetUrl"),
            ))

    checks.sort(key=lambda c: (_CHECK_RANK[c.state], c.name))
    return checks


def is_review_requested(node: dict[str, Any], viewer_login: str, include_team_requests: bool = False) -> bool:
    """Whether the viewer is a requested reviewer (as a user, or via a team if enabled)."""
    requests_ = (node.get("reviewRequests") or {}).get("nodes") or []
    for item in requests_:
        reviewer = (item or {}).get("requestedReviewer") or {}
        typename = reviewer.get("__typename")
        if typename == "User" and reviewer.get("login") == viewer_login:
            return True
        if include_team_requests and typename == "Team":
            return True
    return False


def map_review_state(node: dict[str, Any], is_requested: bool) -> ReviewState:
    # "Requested" takes precedence over "approved".
    if is_requested:
        return ReviewState.REQUESTED
    if node.get("reviewDecision") == "APPROVED":
        return ReviewState.APPROVED
    return ReviewState.NONE


def map_merge_blockers(node: dict[str, Any], checks: list[CiCheck]) -> MergeBlockers:
    rule = ((node.get("baseRef") or {}).get("branchProtectionRule")) or {}
    required_approvals = rule.get("requiredApprovingReviewCount")
    required_checks = [str(c) for c in rule.get("requiredStatusCheckContexts") or []]

    failing = {c.name for c in checks if c.state.is_failure}
    reviews = (node.get("latestOpinionatedReviews") or {}).get("nodes") or []
    approvals = sum(1 for r in reviews if (r or {}).get("state") == "APPROVED")

    return MergeBlockers(
        has_conflicts=node.get("mergeable") == "CONFLICTING",
        required_approvals=int(required_approvals) if required_approvals is not None else None,
        current_approvals=approvals,
        required_checks=required_checks,
        failing_required_checks=[name for name in required_checks if name in failing],
        behind_base=node.get("mergeStateStatus") == "BEHIND",
    )


def to_pr(node: dict[str, Any], viewer_login: str, is_requested: bool) -> Pr | None:
    """Convert a GraphQL PullRequest node; None if required fields are missing."""
    repository = node.get("repository") or {}
    owner = (repository.get("owner") or {}).get("login")
    repo = repository.get("name")
    number = node.get("number")
    updated_at = parse_github_datetime(node.get("updatedAt"))
    if not owner or not repo or number is None or updated_at is None:
        return None

    author = (node.get("author") or {}).get("login") or "unknown"
    checks = map_ci_checks(node)
    return Pr(
        owner=owner,
        repo=repo,
        number=int(number),
        author=author,
        title=node.get("title") or "",
        url=node.get("url") or "",
        updated_at=updated_at,
        last_commit_sha=node.get("headRefOid"),
        ci_state=map_ci_state(node),
        ci_checks=checks,
        review_state=map_review_state(node, is_requested),
        is_draft=bool(node.get("isDraft", False)),
        mergeable=node.get("mergeable"),
        merge_state_status=node.get("mergeStateStatus"),
        is_viewer_author=author == viewer_login,
        merge_blockers=map_merge_blockers(node, checks),
    )


def fetch_attention_prs(
    client: GitHubClient,
    cutoff_ts: int,
    include_team_requests: bool = False,
) -> list[Pr]:
    """Fetch the deduplicated authored + review-requested set updated since cutoff."""
    by_key: dict[str, Pr] = {}
    viewer_login = "unknown"

    for login, node in client.iter_authored(cutoff_ts):
        viewer_login = login
        # Team requests on your own PR are not requests to you.
        pr = to_pr(node, login, is_review_requested(node, login))
        if pr is not None:
            by_key[pr.pr_key] = pr

    if viewer_login == "unknown":
        # No authored PRs in the window; still need the login for request matching.
        data = client.graphql("query { viewer { login } }", {})
        viewer_login = (data.get("viewer") or {}).get("login") or "unknown"

    requested = 0
    for node in client.iter_review_requested(cutoff_ts):
        if not is_review_requested(node, viewer_login, include_team_requests):
            continue
        pr = to_pr(node, viewer_login, True)
        if pr is not None:
            by_key[make_pr_key(pr.owner, pr.repo, pr.number)] = pr
            requested += 1

    logger.info("Fetched %d PRs (%d review-requested) for %s", len(by_key), requested, viewer_login)
    return list(by_key.values())
