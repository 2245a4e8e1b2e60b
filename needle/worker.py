"""
Background refresh worker.

Runs one refresh cycle on a daemon thread and hands the outcome back through
a one-slot queue that the UI loop polls without blocking. Only one cycle may
be in flight per worker; there is no cancellation and no timeout.
"""

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass
from typing import Callable

from .github import FetchError
from .model import UiPr
from .store import StorageError

logger = logging.getLogger(__name__)


@dataclass
class RefreshResult:
    """Outcome of one cycle: a ranked list or an error message."""

    prs: list[UiPr] | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.prs is not None


def run_refresh(fn: Callable[[], list[UiPr]]) -> RefreshResult:
    """Run a cycle, converting any failure into a failed result."""
    try:
        return RefreshResult(prs=fn())
    except (FetchError, StorageError) as e:
        logger.warning("Refresh failed: %s", e)
        return RefreshResult(error=str(e))
    except Exception as e:
        logger.exception("Refresh crashed")
        return RefreshResult(error=f"{type(e).__name__}: {e}")


class RefreshWorker:
    """One-shot background cycle with a non-blocking result channel."""

    def __init__(self, fn: Callable[[], list[UiPr]]):
        self._fn = fn
        self._results: queue.Queue[RefreshResult] = queue.Queue(maxsize=1)
        self._thread = threading.Thread(target=self._run, name="needle-refresh", daemon=True)

    def start(self) -> "RefreshWorker":
        self._thread.start()
        return self

    def _run(self) -> None:
        self._results.put(run_refresh(self._fn))

    def poll(self) -> RefreshResult | None:
        """Return the result once available; None while the cycle is running."""
        try:
            return self._results.get_nowait()
        except queue.Empty:
            pass
        if not self._thread.is_alive() and self._thread.ident is not None:
            # Thread ended without posting; re-check in case it posted meanwhile.
            try:
                return self._results.get_nowait()
            except queue.Empty:
                return RefreshResult(error="refresh worker exited without a result")
        return None

    def join(self, timeout: float | None = None) -> None:
        self._thread.join(timeout)


def start_worker(fn: Callable[[], list[UiPr]]) -> RefreshWorker:
    return RefreshWorker(fn).start()
