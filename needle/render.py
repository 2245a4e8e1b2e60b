"""
Rich text rendering for the dashboard.

Pure functions from AppState to ``rich.text.Text``; nothing here mutates
state.
"""

from __future__ import annotations

import time

from rich.text import Text

from .config import DisplayConfig
from .model import DRAFT_PARTITION, Category, CiCheckState, CiState, UiPr
from .scoring import (
    APPROVED_UNMERGED_OLD_SECS,
    CATEGORY_NEEDS_YOU_MIN,
    CATEGORY_NO_ACTION_MIN,
    CI_RUNNING_LONG_SECS,
    SCORE_APPROVED_UNMERGED_OLD,
    SCORE_CI_FAILED_NEW,
    SCORE_CI_FAILED_UNCHANGED,
    SCORE_CI_RUNNING_LONG,
    SCORE_REVIEW_REQUESTED,
    SCORE_WAITING_ON_OTHERS_GREEN,
    human_age,
    human_duration,
)
from .state import AppState, ViewMode

SECTION_TITLES = {
    Category.NEEDS_YOU.value: ("🔥 NEEDS YOU", "bold yellow"),
    Category.READY_TO_MERGE.value: ("🚢 READY TO MERGE", "bold green"),
    Category.WAITING.value: ("✅ NO ACTION NEEDED", "bold cyan"),
    Category.STALE.value: ("⏳ WAITING ON OTHERS", "bold magenta"),
    DRAFT_PARTITION: ("📝 DRAFT", "bold bright_black"),
}

CI_COLORS = {
    CiState.SUCCESS: "green",
    CiState.FAILURE: "red",
    CiState.RUNNING: "yellow",
    CiState.NONE: "bright_black",
}

CHECK_ICONS = {
    CiCheckState.SUCCESS: ("✅", "green"),
    CiCheckState.FAILURE: ("❌", "red"),
    CiCheckState.RUNNING: ("🟡", "yellow"),
    CiCheckState.NEUTRAL: ("➖", "bright_black"),
    CiCheckState.NONE: ("⏺", "bright_black"),
}

REPO_WIDTH = 28
AUTHOR_WIDTH = 12
NUMBER_WIDTH = 6
STATUS_WIDTH = 24
SHIMMER_WIDTH = 10


def fit(text: str, width: int) -> str:
    """Truncate with an ellipsis and pad to exactly ``width`` cells."""
    t = Text(text)
    t.truncate(max(1, width), overflow="ellipsis", pad=True)
    return t.plain


def shimmer(phase: int, width: int = SHIMMER_WIDTH) -> str:
    pos = phase % width
    return "".join("▓" if i == pos else "░" for i in range(width))


def filter_banner(state: AppState) -> str | None:
    f = state.filters
    if f.editing:
        return f"Filter: {f.query} (Esc back)"
    if not f.is_active():
        return None
    parts = []
    if f.query:
        parts.append(f'q="{f.query}"')
    if f.only_needs_you:
        parts.append("needs-you")
    if f.only_failing_ci:
        parts.append("failing-ci")
    if f.only_review_requested:
        parts.append("review-requested")
    return "Filtered: " + " ".join(parts) + "  (Esc/x clear)"


def _row(ui: UiPr, selected: bool, display: DisplayConfig, width: int, now: int) -> Text:
    base = "reverse" if selected else ""
    # Nothing changed since the user last opened it.
    if not selected and (ui.pr.is_draft or (ui.last_opened_at and ui.last_opened_at >= ui.pr.updated_at)):
        base = "dim"

    row = Text(style=base)
    row.append("> " if selected else "  ")
    used = 2
    if not display.hide_repo:
        row.append(fit(ui.pr.repo_slug, REPO_WIDTH), style="cyan")
        row.append("  ")
        used += REPO_WIDTH + 2
    if not display.hide_author:
        row.append(fit(ui.pr.author, AUTHOR_WIDTH), style="magenta")
        row.append("  ")
        used += AUTHOR_WIDTH + 2
    if not display.hide_pr_numbers:
        row.append(fit(f"#{ui.pr.number}", NUMBER_WIDTH), style="bold blue")
        row.append("  ")
        used += NUMBER_WIDTH + 2

    title_width = max(8, width - used - STATUS_WIDTH - 2)
    row.append(fit(ui.pr.title, title_width))
    row.append("  ")
    row.append(fit(ui.display_status, STATUS_WIDTH), style=f"bold {CI_COLORS[ui.pr.ci_state]}")
    return row


def render_list(state: AppState, display: DisplayConfig, width: int = 120, now: int | None = None) -> Text:
    if now is None:
        now = int(time.time())
    out = Text()

    banner = filter_banner(state)
    if banner:
        out.append(banner + "\n", style="bold yellow")

    visible = state.visible()
    if not visible:
        if state.prs:
            out.append("No PRs match the current filters.\n", style="bright_black")
        elif state.refreshing:
            out.append("Loading…\n", style="bright_black")
        else:
            out.append("No PRs in your attention window.\n", style="bright_black")
        return out

    current = None
    for pos, ui in enumerate(visible):
        if ui.partition != current:
            if current is not None:
                out.append("\n")
            current = ui.partition
            title, style = SECTION_TITLES[current]
            count = sum(1 for p in visible if p.partition == current)
            out.append(f"{title} ({count})\n", style=style)
        out.append_text(_row(ui, pos == state.selected, display, width, now))
        out.append("\n")
    return out


def render_details(ui: UiPr | None, ci_selected: int, width: int = 120, now: int | None = None) -> Text:
    if now is None:
        now = int(time.time())
    out = Text()
    out.append("DETAILS\n", style="bold yellow")
    out.append("─" * width + "\n", style="bright_black")
    if ui is None:
        out.append("This PR is no longer in your attention window. Tab to go back.\n", style="bright_black")
        return out

    pr = ui.pr
    rows = [
        ("Repo", pr.repo_slug),
        ("PR", f"#{pr.number}"),
        ("Author", pr.author),
        ("Title", pr.title),
        ("Status", ui.display_status),
        ("Score", f"{ui.score} ({ui.category.value})"),
        ("Updated", human_age(now, pr.updated_at)),
        ("Opened", human_age(now, ui.last_opened_at) if ui.last_opened_at else "never"),
        ("URL", pr.url),
        ("Commit", pr.last_commit_sha or "none"),
        ("Draft", "yes" if pr.is_draft else "no"),
        ("Mergeable", pr.mergeable or "unknown"),
        ("MergeState", pr.merge_state_status or "unknown"),
    ]
    for key, value in rows:
        out.append(f"{key}: ", style="bold cyan")
        out.append(value + "\n")

    if pr.merge_blockers is not None:
        reasons = pr.merge_blockers.reasons()
        out.append("Blockers: ", style="bold cyan")
        out.append((", ".join(reasons) if reasons else "none") + "\n", style="red" if reasons else "green")

    out.append("\nCI CHECKS\n", style="bold yellow")
    out.append("─" * width + "\n", style="bright_black")
    checks = pr.ci_checks
    if not checks:
        out.append("No check runs\n", style="bright_black")
        return out

    counts = {state: 0 for state in CiCheckState}
    for c in checks:
        counts[c.state] += 1
    other = counts[CiCheckState.NEUTRAL] + counts[CiCheckState.NONE]
    out.append(
        f"Summary: {counts[CiCheckState.FAILURE]} failed, {counts[CiCheckState.RUNNING]} running, "
        f"{counts[CiCheckState.SUCCESS]} ok, {other} other\n",
        style="dim",
    )
    failed = [c.name for c in checks if c.state.is_failure][:3]
    if failed:
        out.append(f"Failed: {', '.join(failed)}\n", style="bold red")

    for idx, c in enumerate(checks):
        selected = idx == ci_selected
        icon, color = CHECK_ICONS[c.state]
        suffix = ""
        if c.state is CiCheckState.RUNNING and c.started_at is not None:
            suffix = f" ({human_duration(now - c.started_at)})"
        line = Text(style="reverse" if selected else "")
        line.append("> " if selected else "  ")
        line.append(f"{icon} ", style=f"bold {color}")
        line.append(fit(c.name + suffix, max(8, width - 6)).rstrip())
        out.append_text(line)
        out.append("\n")
    out.append("Enter: open selected check   f: open first failing check\n", style="dim")
    return out


def _keys(*pairs: tuple[str, str]) -> Text:
    out = Text()
    for i, (key, label) in enumerate(pairs):
        if i:
            out.append("  ")
        out.append(f"[{key}]", style="bold cyan")
        out.append(label, style="bright_black")
    return out


def render_footer(state: AppState) -> Text:
    if state.mode is ViewMode.DETAILS:
        out = _keys(("↑/↓", "check"), ("Enter", "open"), ("f", "failing"), ("Tab", "back"),
                    ("r", "refresh"), ("q", "quit"))
    elif state.filters.editing:
        out = _keys(("Esc", "back"), ("Enter", "open"), ("Backspace", "delete"),
                    ("Ctrl+n", "needs"), ("Ctrl+c", "failing"), ("Ctrl+v", "review"), ("Ctrl+x", "clear"))
    else:
        out = _keys(("↑/↓", "move"), ("Enter", "open"), ("Tab", "details"), ("r", "refresh"),
                    ("/", "filter"), ("?", "help"), ("q", "quit"))

    if state.refreshing:
        out.append("  ")
        out.append(f"refreshing {shimmer(state.phase)}", style="yellow")
    elif state.last_error:
        out.append("  ")
        out.append(f"refresh failed: {state.last_error}", style="red")
    return out


def render_help() -> Text:
    out = Text()
    out.append("needle", style="bold yellow")
    out.append("  help\n", style="bright_black")
    out.append("─" * 60 + "\n\n", style="bright_black")

    out.append("Sections\n", style="bold yellow")
    out.append(f"  🔥 NEEDS YOU: score >= {CATEGORY_NEEDS_YOU_MIN}\n")
    out.append("  🚢 READY TO MERGE: your PR, CI green, no blockers\n")
    out.append(f"  ✅ NO ACTION NEEDED: score {CATEGORY_NO_ACTION_MIN}..{CATEGORY_NEEDS_YOU_MIN - 1}\n")
    out.append(f"  ⏳ WAITING ON OTHERS: score < {CATEGORY_NO_ACTION_MIN}\n")
    out.append("  📝 DRAFT: drafts are dimmed and shown in their own section\n\n")

    out.append("Scoring\n", style="bold yellow")
    out.append(f"  +{SCORE_REVIEW_REQUESTED:<3} review requested from you\n")
    out.append(f"  +{SCORE_CI_FAILED_NEW:<3} CI failed (new: state changed or new commit)\n")
    out.append(f"  +{SCORE_CI_RUNNING_LONG:<3} CI running longer than {CI_RUNNING_LONG_SECS // 60}m\n")
    out.append(
        f"  +{SCORE_APPROVED_UNMERGED_OLD:<3} approved but unmerged for >{APPROVED_UNMERGED_OLD_SECS // 3600}h\n"
    )
    out.append(f"  {SCORE_WAITING_ON_OTHERS_GREEN:<4} waiting on others (green, no review, not approved)\n")
    out.append(f"  {SCORE_CI_FAILED_UNCHANGED:<4} CI failed (unchanged)\n\n")

    out.append("Keys\n", style="bold yellow")
    out.append("  List    : ↑/↓ move  Enter open  Tab details  r refresh  / filter  ? help  q quit\n")
    out.append("            n needs-you  c failing CI  v review requested  x clear  Esc clear filters\n")
    out.append("  Filter  : type to filter  ↑/↓ move  Enter open  Esc clear+exit\n")
    out.append("            Ctrl+n needs  Ctrl+c failing  Ctrl+v review  Ctrl+x clear\n")
    out.append("  Details : ↑/↓ select  Enter open check  f open failing  Tab back\n\n")
    out.append("Press ? or Esc to close.\n", style="bright_black")
    return out
