from __future__ import annotations

import sqlite3

import pytest

from needle.model import CiCheck, CiCheckState, CiState, MergeBlockers, Pr, ReviewState
from needle.store import CURRENT_SCHEMA_VERSION, CachedRow, StorageError, Store

NOW = 1_700_000_000


def _pr(number: int = 1, **overrides) -> Pr:
    fields = dict(
        owner="acme",
        repo="api",
        number=number,
        author="alice",
        title=f"PR {number}",
        url=f"https://github.com/acme/api/pull/{number}",
        updated_at=NOW - 600,
        last_commit_sha="abc1234",
        ci_state=CiState.FAILURE,
        ci_checks=[
            CiCheck(name="test", state=CiCheckState.FAILURE, url="https://ci/1"),
            CiCheck(name="lint", state=CiCheckState.RUNNING, started_at=NOW - 60),
        ],
        review_state=ReviewState.REQUESTED,
        is_draft=False,
        mergeable="MERGEABLE",
        merge_state_status="CLEAN",
        is_viewer_author=True,
        merge_blockers=MergeBlockers(required_approvals=1, required_checks=["test"],
                                     failing_required_checks=["test"]),
    )
    fields.update(overrides)
    return Pr(**fields)


def test_upsert_load_round_trip(tmp_path):
    store = Store(db_path=tmp_path / "prs.sqlite")
    row = CachedRow.from_pr(_pr(), last_seen_at=NOW)

    store.upsert(row, NOW)

    loaded = store.load_all()
    assert list(loaded) == ["acme/api#1"]
    assert loaded["acme/api#1"] == row
    assert store.get("acme/api#1") == row
    assert store.get("acme/api#2") is None


def test_upsert_overwrites_every_column_but_keeps_opened_at(tmp_path):
    store = Store(db_path=tmp_path / "prs.sqlite")
    store.upsert(CachedRow.from_pr(_pr(), last_opened_at=NOW - 100), NOW - 50)

    updated = _pr(title="Renamed", ci_state=CiState.SUCCESS, ci_checks=[], merge_blockers=None)
    store.upsert(CachedRow.from_pr(updated), NOW)

    row = store.get("acme/api#1")
    assert row.title == "Renamed"
    assert row.last_ci_state == "success"
    assert row.ci_checks == []
    assert row.merge_blockers is None
    assert row.last_seen_at == NOW
    assert row.last_opened_at == NOW - 100


def test_upsert_takes_newer_opened_at(tmp_path):
    store = Store(db_path=tmp_path / "prs.sqlite")
    store.upsert(CachedRow.from_pr(_pr(), last_opened_at=NOW - 100), NOW)

    store.upsert(CachedRow.from_pr(_pr(), last_opened_at=NOW - 10), NOW)
    assert store.get("acme/api#1").last_opened_at == NOW - 10

    store.upsert(CachedRow.from_pr(_pr(), last_opened_at=NOW - 500), NOW)
    assert store.get("acme/api#1").last_opened_at == NOW - 10


def test_prune_to_keeps_exactly_given_keys(tmp_path):
    store = Store(db_path=tmp_path / "prs.sqlite")
    for n in (1, 2, 3):
        store.upsert(CachedRow.from_pr(_pr(n)), NOW)

    removed = store.prune_to({"acme/api#1", "acme/api#2"})
    assert removed == 1
    assert set(store.load_all()) == {"acme/api#1", "acme/api#2"}

    # Idempotent
    assert store.prune_to({"acme/api#1", "acme/api#2"}) == 0
    assert set(store.load_all()) == {"acme/api#1", "acme/api#2"}


def test_prune_to_empty_clears_table(tmp_path):
    store = Store(db_path=tmp_path / "prs.sqlite")
    store.upsert(CachedRow.from_pr(_pr(1)), NOW)
    store.upsert(CachedRow.from_pr(_pr(2)), NOW)

    assert store.prune_to([]) == 2
    assert store.load_all() == {}


def test_set_opened_at_missing_row_is_not_an_error(tmp_path):
    store = Store(db_path=tmp_path / "prs.sqlite")
    store.upsert(CachedRow.from_pr(_pr()), NOW)

    assert store.set_opened_at("acme/api#1", NOW + 5) is True
    assert store.get("acme/api#1").last_opened_at == NOW + 5
    assert store.set_opened_at("acme/api#99", NOW) is False


def test_malformed_blobs_degrade_to_empty(tmp_path):
    db_path = tmp_path / "prs.sqlite"
    store = Store(db_path=db_path)
    store.upsert(CachedRow.from_pr(_pr()), NOW)

    conn = sqlite3.connect(db_path)
    conn.execute("UPDATE prs SET ci_checks_json = 'not json', merge_blockers_json = '[1, 2'")
    conn.commit()
    conn.close()

    row = store.get("acme/api#1")
    assert row.ci_checks == []
    assert row.merge_blockers is None
    assert row.title == "PR 1"


def test_migrates_v1_cache(tmp_path):
    db_path = tmp_path / "prs.sqlite"
    conn = sqlite3.connect(db_path)
    conn.executescript(
        """
        CREATE TABLE prs (
            pr_key TEXT PRIMARY KEY,
            owner TEXT NOT NULL,
            repo TEXT NOT NULL,
            number INTEGER NOT NULL,
            title TEXT NOT NULL,
            url TEXT NOT NULL,
            last_commit_sha TEXT,
            last_ci_state TEXT,
            last_review_state TEXT,
            last_seen_at INTEGER,
            last_opened_at INTEGER
        );
        INSERT INTO prs VALUES
            ('old/repo#5', 'old', 'repo', 5, 'Legacy', 'https://x', 'sha', 'failure', 'none', 1000, NULL);
        """
    )
    conn.commit()
    conn.close()

    store = Store(db_path=db_path)

    row = store.get("old/repo#5")
    assert row.author is None
    assert row.updated_at is None
    assert row.ci_checks == []
    assert row.is_viewer_author is None

    pr = row.to_pr(fallback_updated_at=NOW)
    assert pr.updated_at == 1000
    assert pr.author == "unknown"
    assert pr.ci_state is CiState.FAILURE

    conn = sqlite3.connect(db_path)
    version = conn.execute("SELECT version FROM schema_version").fetchone()[0]
    conn.close()
    assert version == CURRENT_SCHEMA_VERSION


def test_unopenable_cache_raises_storage_error(tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("file")

    with pytest.raises(StorageError):
        Store(db_path=blocker / "prs.sqlite")
