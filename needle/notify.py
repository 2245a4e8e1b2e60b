"""
Desktop notifications for important PR events.

On macOS, terminal-notifier is preferred (clicking opens the PR), with
osascript as a fallback. Elsewhere notify-send is used. When no backend is
installed, notifications are silently skipped. A notification never raises.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
import sys
from typing import Callable

logger = logging.getLogger(__name__)

TITLE_MAX_CHARS = 50


def truncate(text: str, max_chars: int = TITLE_MAX_CHARS) -> str:
    if len(text) <= max_chars:
        return text
    return text[: max_chars - 1] + "…"


def _applescript_quote(text: str) -> str:
    return '"' + text.replace("\\", "\\\\").replace('"', '\\"') + '"'


def detect_backend(platform: str | None = None, which: Callable[[str], str | None] = shutil.which) -> str | None:
    """Name of the notification command to use, or None."""
    platform = platform or sys.platform
    if platform == "darwin":
        if which("terminal-notifier"):
            return "terminal-notifier"
        if which("osascript"):
            return "osascript"
        return None
    if which("notify-send"):
        return "notify-send"
    return None


def build_command(backend: str, title: str, subtitle: str, body: str, url: str | None = None) -> list[str]:
    if backend == "terminal-notifier":
        cmd = ["terminal-notifier", "-title", title, "-message", body, "-ignoreDnD"]
        if subtitle:
            cmd[3:3] = ["-subtitle", subtitle]
        if url:
            cmd += ["-open", url]
        return cmd
    if backend == "osascript":
        script = f"display notification {_applescript_quote(body)} with title {_applescript_quote(title)}"
        if subtitle:
            script += f" subtitle {_applescript_quote(subtitle)}"
        return ["osascript", "-e", script]
    lines = [line for line in (subtitle, body, url) if line]
    return ["notify-send", "--expire-time=5000", title, "\n".join(lines)]


class Notifier:
    """Fire-and-forget OS notifications, one method per event type."""

    def __init__(self, enabled: bool = True, backend: str | None = None):
        self.enabled = enabled
        self.backend = backend if backend is not None else (detect_backend() if enabled else None)
        self._children: list[subprocess.Popen] = []

    def reap(self) -> int:
        """Collect finished notifier processes; returns how many are still running."""
        self._children = [p for p in self._children if p.poll() is None]
        return len(self._children)

    def _send(self, title: str, subtitle: str, body: str, url: str | None = None) -> None:
        if not self.enabled or not self.backend:
            return
        self.reap()
        cmd = build_command(self.backend, title, subtitle, body, url)
        try:
            child = subprocess.Popen(cmd, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
        except (OSError, ValueError) as e:
            logger.debug("Notification via %s failed: %s", self.backend, e)
            return
        self._children.append(child)

    def ci_failure(self, pr_title: str, repo: str, url: str) -> None:
        self._send("❌ CI Failed", repo, truncate(pr_title), url)

    def review_requested(self, pr_title: str, repo: str, url: str) -> None:
        self._send("👀 Review Requested", repo, truncate(pr_title), url)

    def new_repo(self, repo_name: str) -> None:
        self._send("📁 New Repository", "", f"PRs from {repo_name} now visible")

    def needs_you(self, count: int) -> None:
        body = "1 PR needs your attention" if count == 1 else f"{count} PRs need your attention"
        self._send("⚠️ Needle: Action Required", "", body)

    def ready_to_merge(self, pr_title: str, repo: str, url: str) -> None:
        self._send("✅ Ready to Merge", repo, truncate(pr_title), url)
