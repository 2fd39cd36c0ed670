# SPDX-License-Identifier: Apache-2.0
"""Unit tests for the SQLite migration system."""

from __future__ import annotations

import sqlite3

import pytest

from aegis import migrations
from aegis.migrations import SchemaTooNewError, applied_versions, apply_pending


def test_migrations_apply_once(tmp_path):
    db = tmp_path / "aegis.db"

    assert apply_pending(db) == ["001"]
    assert apply_pending(db) == []

    with sqlite3.connect(db) as conn:
        versions = [row[0] for row in conn.execute("SELECT version FROM schema_version")]
    assert versions == ["001"]


def test_migrations_create_dispatch_tables(tmp_path):
    db = tmp_path / "nested" / "aegis.db"

    apply_pending(db)

    with sqlite3.connect(db) as conn:
        tables = {
            row[0]
            for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
        }
    assert {
        "schema_version",
        "bookings",
        "payments",
        "guard_profiles",
        "location_updates",
        "domain_events",
    } <= tables


def test_applied_versions_on_fresh_database(tmp_path):
    assert applied_versions(tmp_path / "aegis.db") == []


def test_database_from_newer_release_is_refused(tmp_path):
    db = tmp_path / "aegis.db"
    apply_pending(db)
    with sqlite3.connect(db) as conn:
        conn.execute("INSERT INTO schema_version (version, applied_ts) VALUES ('999', 0)")

    with pytest.raises(SchemaTooNewError, match="999"):
        apply_pending(db)


def test_failed_migration_is_rolled_back(tmp_path, monkeypatch):
    versions = tmp_path / "versions"
    versions.mkdir()
    (versions / "001_ok.sql").write_text("CREATE TABLE a (id INTEGER);")
    (versions / "002_broken.sql").write_text("CREATE TABLE b (id INTEGER);\nNOT SQL;")
    monkeypatch.setattr(migrations, "MIGRATIONS_DIR", versions)
    db = tmp_path / "aegis.db"

    with pytest.raises(RuntimeError, match="Migration 002 failed"):
        apply_pending(db)

    assert applied_versions(db) == ["001"]
    with sqlite3.connect(db) as conn:
        tables = {row[0] for row in conn.execute("SELECT name FROM sqlite_master")}
    assert "a" in tables
    assert "b" not in tables
