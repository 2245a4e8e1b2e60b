"""
Textual TUI for the attention dashboard.
"""

from __future__ import annotations

import time

from textual import events
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import VerticalScroll
from textual.widgets import Static

from .config import DisplayConfig
from .render import render_details, render_footer, render_help, render_list
from .state import AppState, ViewMode

POLL_INTERVAL_SECS = 0.1


def route_key(state: AppState, key: str, character: str | None = None) -> bool:
    """Apply one key press to the state machine.

    Returns False when the key asks to quit.
    """
    if state.help_open:
        if key in ("question_mark", "escape", "q") or character in ("?", "q"):
            state.close_help()
        return True

    if state.filters.editing:
        if key == "up":
            state.move_up()
        elif key == "down":
            state.move_down()
        elif key == "escape":
            state.cancel_filter()
        elif key == "backspace":
            state.backspace()
        elif key == "enter":
            state.submit_filter()
        elif key == "ctrl+x":
            state.clear_filters()
        elif key == "ctrl+n":
            state.toggle_only_needs_you()
        elif key == "ctrl+c":
            state.toggle_only_failing_ci()
        elif key == "ctrl+v":
            state.toggle_only_review_requested()
        elif character and character.isprintable():
            state.type_char(character)
        return True

    if character == "q":
        return False
    if character == "?":
        state.toggle_help()
    elif key == "escape":
        state.escape()
    elif character == "r":
        state.request_refresh()
    elif key == "tab":
        state.toggle_details()
    elif key == "up":
        state.move_up()
    elif key == "down":
        state.move_down()
    elif key == "enter":
        state.open_selected()
    elif state.mode is ViewMode.DETAILS:
        if character == "f":
            state.open_failing_check()
    elif character == "/":
        state.begin_filter()
    elif character == "x":
        state.clear_filters()
    elif character == "n":
        state.toggle_only_needs_you()
    elif character == "c":
        state.toggle_only_failing_ci()
    elif character == "v":
        state.toggle_only_review_requested()
    return True


class NeedleApp(App):
    TITLE = "needle"
    BINDINGS = [
        # Keep Tab and Ctrl+C away from textual's focus and quit handling.
        Binding("tab", "route('tab')", show=False, priority=True),
        Binding("ctrl+c", "route('ctrl+c')", show=False, priority=True),
    ]

    CSS = """
    Screen {
      layout: vertical;
    }
    #body {
      height: 1fr;
      border: round $surface;
    }
    #footer {
      height: 1;
      content-align: left middle;
    }
    """

    def __init__(self, state: AppState, display: DisplayConfig | None = None):
        super().__init__()
        self.state = state
        self.display_prefs = display or DisplayConfig()
        self.state.bell = self.bell

    def compose(self) -> ComposeResult:
        with VerticalScroll(id="body"):
            yield Static("", id="content")
        yield Static("", id="footer")

    def on_mount(self) -> None:
        self.set_interval(POLL_INTERVAL_SECS, self._poll)
        self._redraw()

    def _poll(self) -> None:
        self.state.tick()
        self._redraw()

    def _redraw(self) -> None:
        content = self.query_one("#content", Static)
        footer = self.query_one("#footer", Static)
        width = max(40, self.size.width - 4)
        now = int(time.time())

        if self.state.help_open:
            content.update(render_help())
        elif self.state.mode is ViewMode.DETAILS:
            content.update(render_details(self.state.details_pr, self.state.details_ci_selected, width, now))
        else:
            content.update(render_list(self.state, self.display_prefs, width, now))
        footer.update(render_footer(self.state))

    def _handle(self, key: str, character: str | None) -> None:
        if not route_key(self.state, key, character):
            self.exit()
            return
        self._redraw()

    def action_route(self, key: str) -> None:
        self._handle(key, None)

    def on_key(self, event: events.Key) -> None:
        event.stop()
        event.prevent_default()
        self._handle(event.key, event.character)


def run_tui(state: AppState, display: DisplayConfig | None = None) -> None:
    NeedleApp(state, display).run()
