"""
Interaction state machine for the dashboard.

Owns everything the UI shows: the ranked PR list, view mode, selection,
filters, the in-flight refresh and its animation phase. Every user input
and every refresh result is applied here, synchronously, from the UI loop.
Rendering only reads this state.
"""

from __future__ import annotations

import logging
import time
import webbrowser
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

from .config import DEFAULT_DETAILS_INTERVAL_SECS, DEFAULT_LIST_INTERVAL_SECS
from .model import PARTITION_ORDER, Category, CiState, ReviewState, UiPr
from .notify import Notifier
from .refresh import Refresher
from .store import StorageError, Store
from .worker import RefreshResult, RefreshWorker, start_worker

logger = logging.getLogger(__name__)

MAX_NOTIFICATIONS_PER_KIND = 3


class ViewMode(str, Enum):
    LIST = "list"
    DETAILS = "details"


def matches_query(ui: UiPr, query: str) -> bool:
    """Case-insensitive substring match over repo, author, title and #number."""
    q = query.strip().lower()
    if not q:
        return True
    pr = ui.pr
    return (
        q in pr.repo_slug.lower()
        or q in pr.author.lower()
        or q in pr.title.lower()
        or q in f"#{pr.number}"
    )


@dataclass
class ListFilters:
    query: str = ""
    editing: bool = False
    only_needs_you: bool = False
    only_failing_ci: bool = False
    only_review_requested: bool = False

    def is_active(self) -> bool:
        return bool(
            self.query
            or self.only_needs_you
            or self.only_failing_ci
            or self.only_review_requested
        )

    def matches(self, ui: UiPr) -> bool:
        if self.only_needs_you and ui.category is not Category.NEEDS_YOU:
            return False
        if self.only_failing_ci and ui.pr.ci_state is not CiState.FAILURE:
            return False
        if self.only_review_requested and ui.pr.review_state is not ReviewState.REQUESTED:
            return False
        return matches_query(ui, self.query)

    def clear(self) -> None:
        self.query = ""
        self.only_needs_you = False
        self.only_failing_ci = False
        self.only_review_requested = False


@dataclass
class Alerts:
    """What changed between two successive ranked lists."""

    entered_needs_you: list[UiPr] = field(default_factory=list)
    entered_ready_to_merge: list[UiPr] = field(default_factory=list)
    new_ci_failures: list[UiPr] = field(default_factory=list)
    new_review_requests: list[UiPr] = field(default_factory=list)
    new_repos: list[str] = field(default_factory=list)
    current_repos: set[str] = field(default_factory=set)

    @property
    def ring_bell(self) -> bool:
        return bool(self.entered_needs_you or self.new_ci_failures)


def diff_alerts(old: list[UiPr], new: list[UiPr], seen_repos: set[str]) -> Alerts:
    """Compare the previous list with a fresh one."""
    old_needs = {p.pr_key for p in old if p.category is Category.NEEDS_YOU}
    old_ready = {p.pr_key for p in old if p.category is Category.READY_TO_MERGE}

    current_repos = {p.pr.repo_slug for p in new}
    return Alerts(
        entered_needs_you=[
            p for p in new if p.category is Category.NEEDS_YOU and p.pr_key not in old_needs
        ],
        entered_ready_to_merge=[
            p for p in new if p.category is Category.READY_TO_MERGE and p.pr_key not in old_ready
        ],
        new_ci_failures=[p for p in new if p.is_new_ci_failure],
        new_review_requests=[p for p in new if p.is_new_review_request],
        new_repos=sorted(current_repos - seen_repos),
        current_repos=current_repos,
    )


class AppState:
    """Session state plus every transition the UI can trigger."""

    def __init__(
        self,
        prs: list[UiPr],
        refresher: Refresher,
        store: Store | None = None,
        notifier: Notifier | None = None,
        opener: Callable[[str], object] = webbrowser.open,
        bell: Callable[[], None] | None = None,
        bell_enabled: bool = False,
        notifications_enabled: bool = True,
        list_interval_secs: float = DEFAULT_LIST_INTERVAL_SECS,
        details_interval_secs: float = DEFAULT_DETAILS_INTERVAL_SECS,
        worker_factory: Callable[[Callable[[], list[UiPr]]], RefreshWorker] = start_worker,
        monotonic: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
    ):
        self.prs = list(prs)
        self.refresher = refresher
        self.store = store
        self.notifier = notifier
        self.opener = opener
        self.bell = bell
        self.bell_enabled = bell_enabled
        self.notifications_enabled = notifications_enabled
        self.list_interval_secs = list_interval_secs
        self.details_interval_secs = details_interval_secs
        self.worker_factory = worker_factory
        self.monotonic = monotonic
        self.wall_clock = wall_clock

        self.mode = ViewMode.LIST
        self.selected = 0
        self.filters = ListFilters()
        self.help_open = False

        self.details_pr_key: str | None = None
        self.details_ci_selected = 0
        self.details_last_auto_refresh: float | None = None

        self.refreshing = False
        self.phase = 0
        self.last_refresh_started: float | None = None
        self.last_error: str | None = None
        self._worker: RefreshWorker | None = None

        self.seen_repos: set[str] = {p.pr.repo_slug for p in self.prs}

    # =========================================================================
    # Projection
    # =========================================================================

    def visible_indices(self) -> list[int]:
        """Indices into ``prs`` that pass the filters, in display order.

        Display order groups by partition; within a partition the ranked
        order is kept.
        """
        by_partition: dict[str, list[int]] = {name: [] for name in PARTITION_ORDER}
        for idx, ui in enumerate(self.prs):
            if self.filters.matches(ui):
                by_partition[ui.partition].append(idx)
        out: list[int] = []
        for name in PARTITION_ORDER:
            out.extend(by_partition[name])
        return out

    def visible(self) -> list[UiPr]:
        return [self.prs[i] for i in self.visible_indices()]

    @property
    def selected_pr(self) -> UiPr | None:
        visible = self.visible_indices()
        if not visible:
            return None
        return self.prs[visible[min(self.selected, len(visible) - 1)]]

    @property
    def details_pr(self) -> UiPr | None:
        if self.details_pr_key is None:
            return None
        for ui in self.prs:
            if ui.pr_key == self.details_pr_key:
                return ui
        return None

    def clamp_selection(self) -> None:
        n = len(self.visible_indices())
        if n == 0:
            self.selected = 0
        elif self.selected >= n:
            self.selected = n - 1

        details = self.details_pr
        checks = len(details.pr.ci_checks) if details else 0
        if checks == 0:
            self.details_ci_selected = 0
        elif self.details_ci_selected >= checks:
            self.details_ci_selected = checks - 1

    # =========================================================================
    # Refresh lifecycle
    # =========================================================================

    def start_refresh(self) -> bool:
        """Spawn a refresh cycle unless one is already in flight."""
        if self.refreshing:
            return False
        self.refreshing = True
        self.phase = 0
        self.last_refresh_started = self.monotonic()
        self._worker = self.worker_factory(self.refresher.refresh)
        logger.debug("Refresh started")
        return True

    def request_refresh(self) -> bool:
        """Manual refresh: honoured immediately, ignored while one is running."""
        return self.start_refresh()

    def apply_refresh_result(self, result: RefreshResult) -> None:
        self.refreshing = False
        self._worker = None

        if not result.ok:
            self.last_error = result.error or "refresh failed"
            logger.warning("Refresh failed, keeping previous list: %s", self.last_error)
            return

        new_prs = result.prs or []
        alerts = diff_alerts(self.prs, new_prs, self.seen_repos)
        self._dispatch_alerts(alerts)

        self.seen_repos = alerts.current_repos
        self.prs = list(new_prs)
        self.last_error = None
        if self.mode is ViewMode.DETAILS and self.details_pr is None:
            logger.info("%s left the attention window; back to list", self.details_pr_key)
            self.mode = ViewMode.LIST
            self.details_pr_key = None
            self.details_last_auto_refresh = None
        self.clamp_selection()

    def _dispatch_alerts(self, alerts: Alerts) -> None:
        if self.bell_enabled and alerts.ring_bell and self.bell is not None:
            self.bell()

        if not self.notifications_enabled or self.notifier is None:
            return
        for repo in alerts.new_repos:
            self.notifier.new_repo(repo)
        for ui in alerts.new_ci_failures[:MAX_NOTIFICATIONS_PER_KIND]:
            self.notifier.ci_failure(ui.pr.title, ui.pr.repo_slug, ui.pr.url)
        for ui in alerts.new_review_requests[:MAX_NOTIFICATIONS_PER_KIND]:
            self.notifier.review_requested(ui.pr.title, ui.pr.repo_slug, ui.pr.url)
        if alerts.entered_needs_you:
            self.notifier.needs_you(len(alerts.entered_needs_you))
        for ui in alerts.entered_ready_to_merge[:MAX_NOTIFICATIONS_PER_KIND]:
            self.notifier.ready_to_merge(ui.pr.title, ui.pr.repo_slug, ui.pr.url)

    def _auto_refresh_due(self, now: float) -> bool:
        if self.mode is ViewMode.DETAILS:
            last = self.details_last_auto_refresh
            return last is None or now - last >= self.details_interval_secs
        last = self.last_refresh_started
        return last is None or now - last >= self.list_interval_secs

    def tick(self) -> None:
        """One UI loop iteration: collect results, animate, schedule."""
        if self.notifier is not None:
            self.notifier.reap()
        if self.refreshing and self._worker is not None:
            result = self._worker.poll()
            if result is not None:
                self.apply_refresh_result(result)

        if self.refreshing:
            self.phase += 1
            return

        now = self.monotonic()
        if self._auto_refresh_due(now):
            if self.mode is ViewMode.DETAILS:
                self.details_last_auto_refresh = now
            self.start_refresh()

    # =========================================================================
    # Navigation
    # =========================================================================

    def move_up(self) -> None:
        if self.mode is ViewMode.DETAILS:
            if self.details_ci_selected > 0:
                self.details_ci_selected -= 1
            return
        n = len(self.visible_indices())
        if n == 0:
            return
        self.selected = n - 1 if self.selected == 0 else min(self.selected, n) - 1

    def move_down(self) -> None:
        if self.mode is ViewMode.DETAILS:
            details = self.details_pr
            checks = len(details.pr.ci_checks) if details else 0
            if self.details_ci_selected + 1 < checks:
                self.details_ci_selected += 1
            return
        n = len(self.visible_indices())
        if n == 0:
            return
        self.selected = 0 if self.selected + 1 >= n else self.selected + 1

    def toggle_details(self) -> None:
        if self.mode is ViewMode.DETAILS:
            self.mode = ViewMode.LIST
            self.details_last_auto_refresh = None
            return
        ui = self.selected_pr
        if ui is None:
            return
        self.details_pr_key = ui.pr_key
        self.details_ci_selected = 0
        self.details_last_auto_refresh = self.monotonic()
        self.mode = ViewMode.DETAILS

    def toggle_help(self) -> None:
        self.help_open = not self.help_open

    def close_help(self) -> None:
        self.help_open = False

    # =========================================================================
    # Filters
    # =========================================================================

    def begin_filter(self) -> None:
        if self.mode is not ViewMode.LIST or self.filters.editing:
            return
        self.filters.editing = True
        self.selected = 0

    def type_char(self, ch: str) -> None:
        if not self.filters.editing or not ch.isprintable():
            return
        self.filters.query += ch
        self.clamp_selection()

    def backspace(self) -> None:
        if not self.filters.editing:
            return
        self.filters.query = self.filters.query[:-1]
        self.clamp_selection()

    def cancel_filter(self) -> None:
        """Leave editing and drop the query."""
        self.filters.query = ""
        self.filters.editing = False
        self.selected = 0

    def submit_filter(self) -> None:
        """Open the current selection and leave editing; the query stays."""
        self.open_selected()
        self.filters.editing = False

    def toggle_only_needs_you(self) -> None:
        self.filters.only_needs_you = not self.filters.only_needs_you
        self.selected = 0

    def toggle_only_failing_ci(self) -> None:
        self.filters.only_failing_ci = not self.filters.only_failing_ci
        self.selected = 0

    def toggle_only_review_requested(self) -> None:
        self.filters.only_review_requested = not self.filters.only_review_requested
        self.selected = 0

    def clear_filters(self) -> None:
        self.filters.clear()
        self.selected = 0

    def escape(self) -> None:
        if self.help_open:
            self.close_help()
        elif self.filters.editing:
            self.cancel_filter()
        elif self.mode is ViewMode.LIST and self.filters.is_active():
            self.clear_filters()

    # =========================================================================
    # Opening
    # =========================================================================

    def _open(self, ui: UiPr, url: str) -> None:
        try:
            self.opener(url)
        except webbrowser.Error as e:
            logger.warning("Failed to open %s: %s", url, e)
            return

        ts = int(self.wall_clock())
        ui.last_opened_at = ts
        if self.store is None:
            return
        try:
            if not self.store.set_opened_at(ui.pr_key, ts):
                logger.debug("Opened %s but it is no longer cached", ui.pr_key)
        except StorageError as e:
            logger.warning("Failed to record open for %s: %s", ui.pr_key, e)

    def open_selected(self) -> None:
        """Open the selected PR, or the selected CI check in details view."""
        if self.mode is ViewMode.DETAILS:
            ui = self.details_pr
            if ui is None:
                return
            checks = ui.pr.ci_checks
            url = None
            if 0 <= self.details_ci_selected < len(checks):
                url = checks[self.details_ci_selected].url
            self._open(ui, url or ui.pr.url)
            return

        ui = self.selected_pr
        if ui is not None:
            self._open(ui, ui.pr.url)

    def open_failing_check(self) -> None:
        """Details view: open the first failing check, else the PR."""
        if self.mode is not ViewMode.DETAILS:
            return
        ui = self.details_pr
        if ui is None:
            return
        url = next((c.url for c in ui.pr.ci_checks if c.state.is_failure and c.url), None)
        self._open(ui, url or ui.pr.url)
