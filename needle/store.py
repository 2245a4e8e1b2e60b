"""
SQLite cache for Needle.

Schema:
- schema_version: Applied migration level
- prs: One row per PR in the current attention window, keyed by pr_key

The cache lets the dashboard render instantly on cold start and is the
baseline the novelty detector compares each fetch against. Columns are only
ever added (never renamed or dropped), so older cache files keep loading.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Generator, Iterable

from .config import get_needle_dir
from .model import CiCheck, CiState, MergeBlockers, Pr, ReviewState

logger = logging.getLogger(__name__)

DB_FILENAME = "prs.sqlite"
DEMO_DIRNAME = "demo"
CURRENT_SCHEMA_VERSION = 3

SCHEMA = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER NOT NULL
);

-- Attention window snapshot, one row per PR
CREATE TABLE IF NOT EXISTS prs (
    pr_key TEXT PRIMARY KEY,       -- "{owner}/{repo}#{number}"
    owner TEXT NOT NULL,
    repo TEXT NOT NULL,
    number INTEGER NOT NULL,
    title TEXT NOT NULL,
    url TEXT NOT NULL,
    last_commit_sha TEXT,
    last_ci_state TEXT,            -- success | failure | running | none
    last_review_state TEXT,        -- requested | approved | none
    last_seen_at INTEGER,          -- unix timestamp of last successful fetch
    last_opened_at INTEGER         -- unix timestamp the user last opened it
);
"""


class StorageError(Exception):
    """Cache could not be opened, read or written."""


@dataclass
class CachedRow:
    """Stored projection of a PR plus the two cache timestamps."""

    pr_key: str
    owner: str
    repo: str
    number: int
    title: str
    url: str
    author: str | None = None
    updated_at: int | None = None
    last_commit_sha: str | None = None
    last_ci_state: str | None = None
    last_review_state: str | None = None
    ci_checks: list[CiCheck] = field(default_factory=list)
    is_draft: bool | None = None
    mergeable: str | None = None
    merge_state_status: str | None = None
    is_viewer_author: bool | None = None
    merge_blockers: MergeBlockers | None = None
    last_seen_at: int | None = None
    last_opened_at: int | None = None

    @classmethod
    def from_pr(
        cls,
        pr: Pr,
        last_seen_at: int | None = None,
        last_opened_at: int | None = None,
    ) -> "CachedRow":
        return cls(
            pr_key=pr.pr_key,
            owner=pr.owner,
            repo=pr.repo,
            number=pr.number,
            title=pr.title,
            url=pr.url,
            author=pr.author,
            updated_at=pr.updated_at,
            last_commit_sha=pr.last_commit_sha,
            last_ci_state=pr.ci_state.value,
            last_review_state=pr.review_state.value,
            ci_checks=list(pr.ci_checks),
            is_draft=pr.is_draft,
            mergeable=pr.mergeable,
            merge_state_status=pr.merge_state_status,
            is_viewer_author=pr.is_viewer_author,
            merge_blockers=pr.merge_blockers,
            last_seen_at=last_seen_at,
            last_opened_at=last_opened_at,
        )

    def to_pr(self, fallback_updated_at: int) -> Pr:
        """Rebuild a Pr from the cached projection.

        Rows written before ``updated_at`` was stored fall back to
        ``last_seen_at`` and then to ``fallback_updated_at``.
        """
        updated_at = self.updated_at
        if updated_at is None:
            updated_at = self.last_seen_at if self.last_seen_at is not None else fallback_updated_at
        return Pr(
            owner=self.owner,
            repo=self.repo,
            number=self.number,
            author=self.author or "unknown",
            title=self.title,
            url=self.url,
            updated_at=updated_at,
            last_commit_sha=self.last_commit_sha,
            ci_state=CiState.parse(self.last_ci_state),
            ci_checks=list(self.ci_checks),
            review_state=ReviewState.parse(self.last_review_state),
            is_draft=bool(self.is_draft),
            mergeable=self.mergeable,
            merge_state_status=self.merge_state_status,
            is_viewer_author=bool(self.is_viewer_author),
            merge_blockers=self.merge_blockers,
        )


def _ci_checks_to_json(checks: list[CiCheck]) -> str | None:
    if not checks:
        return None
    return json.dumps([c.to_dict() for c in checks])


def _ci_checks_from_json(pr_key: str, raw: str | None) -> list[CiCheck]:
    if not raw:
        return []
    try:
        parsed = json.loads(raw)
        return [CiCheck.from_dict(item) for item in parsed]
    except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
        logger.warning("Dropping unreadable CI checks for %s: %s", pr_key, e)
        return []


def _blockers_to_json(blockers: MergeBlockers | None) -> str | None:
    if blockers is None:
        return None
    return json.dumps(blockers.to_dict())


def _blockers_from_json(pr_key: str, raw: str | None) -> MergeBlockers | None:
    if not raw:
        return None
    try:
        return MergeBlockers.from_dict(json.loads(raw))
    except (json.JSONDecodeError, AttributeError, TypeError, ValueError) as e:
        logger.warning("Dropping unreadable merge blockers for %s: %s", pr_key, e)
        return None


def _opt_bool(value: Any) -> bool | None:
    if value is None:
        return None
    return bool(value)


def _opt_int(value: bool | None) -> int | None:
    if value is None:
        return None
    return 1 if value else 0


def default_db_path(demo: bool = False) -> Path:
    base = get_needle_dir()
    if demo:
        base = base / DEMO_DIRNAME
    return base / DB_FILENAME


class Store:
    """SQLite storage manager for the PR cache.

    Every operation opens and closes its own connection, so a Store created on
    one thread never shares a file handle with a Store used on another.
    """

    def __init__(self, db_path: Path | None = None):
        if db_path is None:
            db_path = default_db_path()
        self.db_path = db_path
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        """Ensure database schema exists."""
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to create cache directory: {e}") from e
        with self._connect() as conn:
            conn.executescript(SCHEMA)
            self._run_migrations(conn)

    def _get_schema_version(self, conn: sqlite3.Connection) -> int:
        row = conn.execute("SELECT version FROM schema_version ORDER BY version DESC LIMIT 1").fetchone()
        if row is None:
            return 0
        value = row[0]
        return int(value) if value is not None else 0

    def _set_schema_version(self, conn: sqlite3.Connection, version: int) -> None:
        conn.execute("DELETE FROM schema_version")
        conn.execute("INSERT INTO schema_version (version) VALUES (?)", (version,))

    def _column_exists(self, conn: sqlite3.Connection, table: str, column: str) -> bool:
        rows = conn.execute(f"PRAGMA table_info({table})").fetchall()
        return any(str(row[1]) == column for row in rows)

    def _run_migrations(self, conn: sqlite3.Connection) -> None:
        current = self._get_schema_version(conn)
        if current >= CURRENT_SCHEMA_VERSION:
            return
        start = current

        if current < 1:
            current = 1

        # v1 -> v2: enough of the PR to render the list without network
        if current < 2:
            additions = (
                ("prs", "author", "TEXT"),
                ("prs", "updated_at", "INTEGER"),
                ("prs", "ci_checks_json", "TEXT"),
                ("prs", "is_draft", "INTEGER"),
                ("prs", "mergeable", "TEXT"),
                ("prs", "merge_state_status", "TEXT"),
            )
            for table, column, sql_type in additions:
                if not self._column_exists(conn, table, column):
                    conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {sql_type}")
            current = 2

        # v2 -> v3: authorship and merge blockers for ready-to-merge
        if current < 3:
            additions = (
                ("prs", "is_viewer_author", "INTEGER"),
                ("prs", "merge_blockers_json", "TEXT"),
            )
            for table, column, sql_type in additions:
                if not self._column_exists(conn, table, column):
                    conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {sql_type}")
            current = 3

        self._set_schema_version(conn, current)
        logger.debug("Cache schema migrated from v%d to v%d", start, current)

    @contextmanager
    def _connect(self) -> Generator[sqlite3.Connection, None, None]:
        """Context manager for database connection."""
        try:
            conn = sqlite3.connect(self.db_path)
        except sqlite3.Error as e:
            raise StorageError(f"Failed to open cache {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"Cache operation failed: {e}") from e
        finally:
            conn.close()

    def _row_from_db(self, row: sqlite3.Row) -> CachedRow:
        data = dict(row)
        pr_key = data["pr_key"]
        return CachedRow(
            pr_key=pr_key,
            owner=data["owner"],
            repo=data["repo"],
            number=int(data["number"]),
            title=data["title"],
            url=data["url"],
            author=data.get("author"),
            updated_at=data.get("updated_at"),
            last_commit_sha=data.get("last_commit_sha"),
            last_ci_state=data.get("last_ci_state"),
            last_review_state=data.get("last_review_state"),
            ci_checks=_ci_checks_from_json(pr_key, data.get("ci_checks_json")),
            is_draft=_opt_bool(data.get("is_draft")),
            mergeable=data.get("mergeable"),
            merge_state_status=data.get("merge_state_status"),
            is_viewer_author=_opt_bool(data.get("is_viewer_author")),
            merge_blockers=_blockers_from_json(pr_key, data.get("merge_blockers_json")),
            last_seen_at=data.get("last_seen_at"),
            last_opened_at=data.get("last_opened_at"),
        )

    # =========================================================================
    # PR cache
    # =========================================================================

    def load_all(self) -> dict[str, CachedRow]:
        """Load every cached row keyed by pr_key."""
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM prs").fetchall()
            out: dict[str, CachedRow] = {}
            for row in rows:
                cached = self._row_from_db(row)
                out[cached.pr_key] = cached
            return out

    def get(self, pr_key: str) -> CachedRow | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM prs WHERE pr_key = ?", (pr_key,)).fetchone()
            return self._row_from_db(row) if row else None

    def upsert(self, row: CachedRow, observed_at: int) -> None:
        """Insert or fully replace a row; last_seen_at becomes observed_at.

        ``last_opened_at`` keeps the stored value unless ``row`` carries a
        newer one.
        """
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO prs
                    (pr_key, owner, repo, number, title, url, author, updated_at,
                     last_commit_sha, last_ci_state, last_review_state, ci_checks_json,
                     is_draft, mergeable, merge_state_status, is_viewer_author,
                     merge_blockers_json, last_seen_at, last_opened_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(pr_key) DO UPDATE SET
                    owner = excluded.owner,
                    repo = excluded.repo,
                    number = excluded.number,
                    title = excluded.title,
                    url = excluded.url,
                    author = excluded.author,
                    updated_at = excluded.updated_at,
                    last_commit_sha = excluded.last_commit_sha,
                    last_ci_state = excluded.last_ci_state,
                    last_review_state = excluded.last_review_state,
                    ci_checks_json = excluded.ci_checks_json,
                    is_draft = excluded.is_draft,
                    mergeable = excluded.mergeable,
                    merge_state_status = excluded.merge_state_status,
                    is_viewer_author = excluded.is_viewer_author,
                    merge_blockers_json = excluded.merge_blockers_json,
                    last_seen_at = excluded.last_seen_at,
                    last_opened_at = CASE
                        WHEN prs.last_opened_at IS NULL THEN excluded.last_opened_at
                        WHEN excluded.last_opened_at IS NULL THEN prs.last_opened_at
                        ELSE MAX(prs.last_opened_at, excluded.last_opened_at)
                    END
                """,
                (
                    row.pr_key, row.owner, row.repo, row.number, row.title, row.url,
                    row.author, row.updated_at, row.last_commit_sha, row.last_ci_state,
                    row.last_review_state, _ci_checks_to_json(row.ci_checks),
                    _opt_int(row.is_draft), row.mergeable, row.merge_state_status,
                    _opt_int(row.is_viewer_author), _blockers_to_json(row.merge_blockers),
                    observed_at, row.last_opened_at,
                ),
            )

    def prune_to(self, keep_keys: Iterable[str]) -> int:
        """Delete every row whose key is not in keep_keys.

        An empty keep set clears the table. Returns the number of rows removed.
        """
        keys = sorted(set(keep_keys))
        with self._connect() as conn:
            if not keys:
                cursor = conn.execute("DELETE FROM prs")
                return cursor.rowcount
            conn.execute("CREATE TEMP TABLE IF NOT EXISTS keep_keys (pr_key TEXT PRIMARY KEY)")
            conn.execute("DELETE FROM keep_keys")
            conn.executemany("INSERT INTO keep_keys (pr_key) VALUES (?)", [(k,) for k in keys])
            cursor = conn.execute("DELETE FROM prs WHERE pr_key NOT IN (SELECT pr_key FROM keep_keys)")
            return cursor.rowcount

    def clear(self) -> None:
        self.prune_to([])

    def set_opened_at(self, pr_key: str, ts: int) -> bool:
        """Record when the user last opened a PR.

        Returns False when the row no longer exists (already pruned); that is
        not an error.
        """
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE prs SET last_opened_at = ? WHERE pr_key = ?",
                (ts, pr_key),
            )
            return cursor.rowcount > 0
