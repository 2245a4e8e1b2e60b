"""
Needle CLI - PR attention triage in your terminal.

Commands:
    (none)    - Run the live dashboard
    init      - Write a sample ~/.needle/config.yml
    list      - Print the ranked PR list once
"""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path

import click
from dotenv import load_dotenv
from loguru import logger

# Load .env file from current directory
load_dotenv()

from . import __version__
from .config import (
    SAMPLE_CONFIG,
    NeedleConfig,
    ensure_needle_dir,
    get_config_path,
    get_needle_dir,
    split_csv,
)
from .demo import DemoGenerator
from .github import FetchError, GitHubClient, resolve_token
from .model import PARTITION_ORDER, UiPr
from .notify import Notifier
from .refresh import DemoRefresher, LiveRefresher, Refresher, ScopeFilters, load_cached
from .render import SECTION_TITLES
from .state import AppState
from .store import StorageError, Store, default_db_path

LOG_FILENAME = "needle.log"

# Cycles run before the first render in demo mode, so some failures are
# already "unchanged" when the dashboard appears.
DEMO_STARTUP_CYCLES = 2


class InterceptHandler(logging.Handler):
    """Intercept standard logging messages toward Loguru sinks."""
    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_logging(console: bool = False) -> None:
    """Route all logging to ~/.needle/needle.log (and stderr warnings if asked).

    The dashboard owns the terminal, so it never logs to the console.
    """
    log_file = get_needle_dir() / LOG_FILENAME

    # Remove default loguru handler
    logger.remove()

    if console:
        logger.add(sys.stderr, level="WARNING", colorize=True, format="<level>{level: <8}</level> | {message}")

    try:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            str(log_file),
            level="INFO",
            rotation="5 MB",
            retention="1 week",
            format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}",
        )
    except OSError as e:
        click.echo(f"Warning: cannot write log file {log_file}: {e}", err=True)

    # Intercept standard logging
    logging.basicConfig(handlers=[InterceptHandler()], level=logging.INFO, force=True)


def _fail(message: str) -> None:
    click.echo(f"Error: {message}", err=True)
    sys.exit(1)


def _open_store(db_path: Path, purge: bool = False, clear: bool = False) -> Store:
    """Open the cache; any storage failure here is fatal."""
    if purge and db_path.exists():
        try:
            db_path.unlink()
        except OSError as e:
            _fail(f"Failed to delete cache {db_path}: {e}")
        logger.info("Purged cache file {}", db_path)
    try:
        store = Store(db_path)
        if clear:
            store.clear()
    except StorageError as e:
        _fail(str(e))
    return store


def _build_refresher(config: NeedleConfig, demo: bool, db_path: Path) -> Refresher:
    scope = ScopeFilters.from_config(config.scope)
    if demo:
        return DemoRefresher(db_path, DemoGenerator(), config.days, scope)

    token = resolve_token()
    if not token:
        _fail("No GitHub token found. Set NEEDLE_GITHUB_TOKEN or GITHUB_TOKEN (a .env file works too).")
    return LiveRefresher(
        db_path,
        GitHubClient(token),
        config.days,
        scope,
        include_team_requests=config.include_team_requests,
    )


def _pr_to_dict(ui: UiPr) -> dict:
    pr = ui.pr
    return {
        "key": pr.pr_key,
        "repo": pr.repo_slug,
        "number": pr.number,
        "title": pr.title,
        "author": pr.author,
        "url": pr.url,
        "score": ui.score,
        "category": ui.category.value,
        "section": ui.partition,
        "status": ui.display_status,
        "ci_state": pr.ci_state.value,
        "review_state": pr.review_state.value,
        "is_draft": pr.is_draft,
        "updated_at": pr.updated_at,
        "last_opened_at": ui.last_opened_at,
        "is_new_ci_failure": ui.is_new_ci_failure,
        "is_new_review_request": ui.is_new_review_request,
    }


@click.group(invoke_without_command=True)
@click.version_option(version=__version__)
@click.option("--days", type=int, default=None, help="Only include PRs updated in the last N days (default 30)")
@click.option("--org", multiple=True, help="Only show PRs from these orgs/users (repeatable or comma-delimited)")
@click.option("--include", multiple=True, help="Only show these repos, owner/repo (repeatable or comma-delimited)")
@click.option("--exclude", multiple=True, help="Hide these repos, owner/repo (repeatable or comma-delimited)")
@click.option("--include-team-requests/--no-include-team-requests", default=None,
              help="Count review requests sent to your teams")
@click.option("--bell/--no-bell", default=None, help="Ring the terminal bell on important new events")
@click.option("--notifications/--no-notifications", default=None, help="Send desktop notifications")
@click.option("--hide-pr-numbers", is_flag=True, help="Hide the PR number column")
@click.option("--hide-repo", is_flag=True, help="Hide the repository column")
@click.option("--hide-author", is_flag=True, help="Hide the author column")
@click.option("--demo", is_flag=True, help="Use synthetic demo data instead of GitHub")
@click.option("--no-cache", is_flag=True, help="Ignore and clear the cache on startup")
@click.option("--purge-cache", is_flag=True, help="Delete the cache database before starting")
@click.option("--config", "config_path", type=click.Path(dir_okay=False, path_type=Path), default=None,
              help="Config file (default ~/.needle/config.yml)")
@click.pass_context
def main(
    ctx: click.Context,
    days: int | None,
    org: tuple[str, ...],
    include: tuple[str, ...],
    exclude: tuple[str, ...],
    include_team_requests: bool | None,
    bell: bool | None,
    notifications: bool | None,
    hide_pr_numbers: bool,
    hide_repo: bool,
    hide_author: bool,
    demo: bool,
    no_cache: bool,
    purge_cache: bool,
    config_path: Path | None,
):
    """Needle - see which pull requests need you, right now."""
    setup_logging(console=ctx.invoked_subcommand == "list")

    config = NeedleConfig.load(config_path).merged(
        days=days,
        org=split_csv(org),
        include=split_csv(include),
        exclude=split_csv(exclude),
        include_team_requests=include_team_requests,
        bell=bell,
        notifications=notifications,
        hide_pr_numbers=hide_pr_numbers,
        hide_repo=hide_repo,
        hide_author=hide_author,
    )
    ctx.ensure_object(dict)
    ctx.obj["config"] = config
    ctx.obj["config_path"] = config_path
    ctx.obj["demo"] = demo

    if ctx.invoked_subcommand is not None:
        return
    run_dashboard(config, demo=demo, no_cache=no_cache, purge_cache=purge_cache)


def run_dashboard(config: NeedleConfig, demo: bool = False, no_cache: bool = False, purge_cache: bool = False) -> None:
    from .tui import run_tui

    if not sys.stdin.isatty() or not sys.stdout.isatty():
        _fail("Not a TTY: run `needle` in an interactive terminal (or use `needle list`).")

    db_path = default_db_path(demo=demo)
    store = _open_store(db_path, purge=purge_cache, clear=no_cache)
    refresher = _build_refresher(config, demo, db_path)
    scope = ScopeFilters.from_config(config.scope)

    if demo:
        initial: list[UiPr] = []
        try:
            for _ in range(DEMO_STARTUP_CYCLES):
                initial = refresher.refresh()
        except StorageError as e:
            _fail(str(e))
    else:
        try:
            initial = load_cached(store, config.days, scope)
        except StorageError as e:
            _fail(str(e))

    logger.info("Starting dashboard with {} cached PRs (demo={})", len(initial), demo)
    state = AppState(
        initial,
        refresher,
        store=store,
        notifier=Notifier(enabled=config.alerts.notifications),
        bell_enabled=config.alerts.bell,
        notifications_enabled=config.alerts.notifications,
        list_interval_secs=config.refresh.list_interval_secs,
        details_interval_secs=config.refresh.details_interval_secs,
    )
    run_tui(state, config.display)


@main.command()
@click.option("--force", is_flag=True, help="Overwrite existing configuration")
@click.pass_context
def init(ctx: click.Context, force: bool):
    """Write a sample configuration file."""
    config_path = ctx.obj.get("config_path") or get_config_path()
    if config_path == get_config_path():
        ensure_needle_dir()

    if config_path.exists() and not force:
        click.echo(f"  Skipped: {config_path} (already exists, use --force to overwrite)")
        return

    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(SAMPLE_CONFIG)
    click.echo(f"  Created: {config_path}")


@main.command("list")
@click.option("--demo", "list_demo", is_flag=True, help="Use synthetic demo data")
@click.option("--cached", is_flag=True, help="Only show what is in the cache (no network)")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def list_prs(ctx: click.Context, list_demo: bool, cached: bool, as_json: bool):
    """Print the ranked PR list once."""
    config: NeedleConfig = ctx.obj["config"]
    demo = list_demo or ctx.obj.get("demo", False)
    db_path = default_db_path(demo=demo)
    store = _open_store(db_path)

    try:
        if cached:
            prs = load_cached(store, config.days, ScopeFilters.from_config(config.scope))
        else:
            prs = _build_refresher(config, demo, db_path).refresh()
    except (FetchError, StorageError) as e:
        _fail(f"Refresh failed: {e}")

    if as_json:
        click.echo(json.dumps([_pr_to_dict(ui) for ui in prs], indent=2))
        return

    if not prs:
        click.echo("No PRs in your attention window.")
        return

    for partition in PARTITION_ORDER:
        section = [ui for ui in prs if ui.partition == partition]
        if not section:
            continue
        title, _style = SECTION_TITLES[partition]
        click.echo(f"{title} ({len(section)})")
        for ui in section:
            click.echo(f"  {ui.score:>4}  {ui.pr.repo_slug}#{ui.pr.number}  {ui.pr.title}")
            click.echo(f"        {ui.display_status} | {ui.pr.author} | {ui.pr.url}")
        click.echo()


if __name__ == "__main__":
    main()
