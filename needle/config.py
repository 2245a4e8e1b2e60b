"""
Configuration management for Needle.

Loads ~/.needle/config.yml (all keys optional) and merges it with CLI
options. Precedence: CLI > config file > defaults.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "config.yml"

DEFAULT_DAYS = 30
DEFAULT_LIST_INTERVAL_SECS = 180
DEFAULT_DETAILS_INTERVAL_SECS = 30


SAMPLE_CONFIG = """\
# Needle configuration
# All keys are optional; command-line options override these values.

# Only include PRs updated in the last N days
days: 30

# Limit which PRs are shown
scope:
  org: []          # e.g. [my-company, my-username]
  include: []      # e.g. [my-company/important-repo]
  exclude: []      # e.g. [my-company/noisy-repo]

# Also count review requests sent to teams you are in
include_team_requests: false

alerts:
  bell: false           # terminal bell on important new events
  notifications: true   # desktop notifications

display:
  hide_pr_numbers: false
  hide_repo: false
  hide_author: false

# Auto-refresh intervals (seconds)
refresh:
  list_interval_secs: 180
  details_interval_secs: 30
"""


@dataclass
class ScopeConfig:
    """Which orgs/repos are part of the attention window."""

    org: list[str] = field(default_factory=list)
    include: list[str] = field(default_factory=list)  # owner/repo
    exclude: list[str] = field(default_factory=list)  # owner/repo


@dataclass
class AlertConfig:
    bell: bool = False
    notifications: bool = True


@dataclass
class DisplayConfig:
    hide_pr_numbers: bool = False
    hide_repo: bool = False
    hide_author: bool = False


@dataclass
class RefreshConfig:
    list_interval_secs: int = DEFAULT_LIST_INTERVAL_SECS
    details_interval_secs: int = DEFAULT_DETAILS_INTERVAL_SECS


@dataclass
class NeedleConfig:
    """Complete Needle configuration."""

    days: int = DEFAULT_DAYS
    scope: ScopeConfig = field(default_factory=ScopeConfig)
    include_team_requests: bool = False
    alerts: AlertConfig = field(default_factory=AlertConfig)
    display: DisplayConfig = field(default_factory=DisplayConfig)
    refresh: RefreshConfig = field(default_factory=RefreshConfig)

    @classmethod
    def load(cls, path: Path | None = None) -> "NeedleConfig":
        """Load configuration from a YAML file.

        A missing file yields defaults. A file that cannot be read or parsed
        is reported in the log and also yields defaults.
        """
        if path is None:
            path = get_config_path()
        if not path.exists():
            return cls()

        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.warning("Failed to read config file %s: %s", path, e)
            return cls()

        if not isinstance(data, dict):
            logger.warning("Ignoring config file %s: top level must be a mapping", path)
            return cls()
        try:
            return cls._parse(data)
        except (AttributeError, TypeError, ValueError) as e:
            logger.warning("Ignoring config file %s: invalid value: %s", path, e)
            return cls()

    @classmethod
    def _parse(cls, data: dict[str, Any]) -> "NeedleConfig":
        config = cls()
        config.days = int(data.get("days", DEFAULT_DAYS))
        config.include_team_requests = bool(data.get("include_team_requests", False))

        scope_data = data.get("scope") or {}
        config.scope = ScopeConfig(
            org=_as_list(scope_data.get("org")),
            include=_as_list(scope_data.get("include")),
            exclude=_as_list(scope_data.get("exclude")),
        )

        alerts_data = data.get("alerts") or {}
        config.alerts = AlertConfig(
            bell=bool(alerts_data.get("bell", False)),
            notifications=bool(alerts_data.get("notifications", True)),
        )

        display_data = data.get("display") or {}
        config.display = DisplayConfig(
            hide_pr_numbers=bool(display_data.get("hide_pr_numbers", False)),
            hide_repo=bool(display_data.get("hide_repo", False)),
            hide_author=bool(display_data.get("hide_author", False)),
        )

        refresh_data = data.get("refresh") or {}
        config.refresh = RefreshConfig(
            list_interval_secs=int(refresh_data.get("list_interval_secs", DEFAULT_LIST_INTERVAL_SECS)),
            details_interval_secs=int(
                refresh_data.get("details_interval_secs", DEFAULT_DETAILS_INTERVAL_SECS)
            ),
        )
        return config

    def merged(
        self,
        days: int | None = None,
        org: list[str] | None = None,
        include: list[str] | None = None,
        exclude: list[str] | None = None,
        include_team_requests: bool | None = None,
        bell: bool | None = None,
        notifications: bool | None = None,
        hide_pr_numbers: bool | None = None,
        hide_repo: bool | None = None,
        hide_author: bool | None = None,
    ) -> "NeedleConfig":
        """Return a copy with explicitly given CLI values applied on top.

        ``None`` (and an empty list) means "not given on the command line".
        """
        return NeedleConfig(
            days=days if days is not None else self.days,
            scope=ScopeConfig(
                org=list(org) if org else list(self.scope.org),
                include=list(include) if include else list(self.scope.include),
                exclude=list(exclude) if exclude else list(self.scope.exclude),
            ),
            include_team_requests=(
                include_team_requests
                if include_team_requests is not None
                else self.include_team_requests
            ),
            alerts=AlertConfig(
                bell=bell if bell is not None else self.alerts.bell,
                notifications=notifications if notifications is not None else self.alerts.notifications,
            ),
            display=DisplayConfig(
                hide_pr_numbers=hide_pr_numbers or self.display.hide_pr_numbers,
                hide_repo=hide_repo or self.display.hide_repo,
                hide_author=hide_author or self.display.hide_author,
            ),
            refresh=RefreshConfig(
                list_interval_secs=self.refresh.list_interval_secs,
                details_interval_secs=self.refresh.details_interval_secs,
            ),
        )


def _as_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return split_csv([value])
    return [str(v) for v in value if str(v).strip()]


def split_csv(values: tuple[str, ...] | list[str]) -> list[str]:
    """Flatten repeated and comma-delimited option values."""
    out: list[str] = []
    for value in values:
        for part in value.split(","):
            part = part.strip()
            if part:
                out.append(part)
    return out


def get_needle_dir() -> Path:
    """Get the ~/.needle directory path."""
    return Path.home() / ".needle"


def ensure_needle_dir() -> Path:
    """Ensure ~/.needle exists and return its path."""
    needle_dir = get_needle_dir()
    needle_dir.mkdir(parents=True, exist_ok=True)
    return needle_dir


def get_config_path() -> Path:
    return get_needle_dir() / CONFIG_FILENAME
