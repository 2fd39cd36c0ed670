# SPDX-License-Identifier: Apache-2.0
"""SQLite schema migrations for the dispatch database.

Each ``versions/NNN_name.sql`` script runs once, in version order, inside its
own transaction, and is recorded in ``schema_version``. Every SQLite
repository calls ``apply_pending`` on construction, so a fresh database file
is usable straight away.
"""

from __future__ import annotations

import logging
import sqlite3
import time
from pathlib import Path
from typing import Dict, List, Union

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).parent / "versions"


class SchemaTooNewError(RuntimeError):
    """The database was migrated by a newer release than this one."""


def available_migrations() -> Dict[str, Path]:
    """Map version prefix to script, e.g. ``{"001": .../001_dispatch_core.sql}``."""
    return {path.stem.split("_")[0]: path for path in sorted(MIGRATIONS_DIR.glob("*.sql"))}


def applied_versions(db_path: Union[str, Path]) -> List[str]:
    """Versions recorded in ``schema_version``, oldest first."""
    with sqlite3.connect(db_path) as conn:
        _ensure_schema_version_table(conn)
        cursor = conn.execute("SELECT version FROM schema_version ORDER BY version")
        return [row[0] for row in cursor.fetchall()]


def apply_pending(db_path: Union[str, Path]) -> List[str]:
    """Apply the migrations not yet recorded in ``db_path``.

    Returns:
        The versions applied by this call, in order

    Raises:
        SchemaTooNewError: If the database records a version this release does not ship
        RuntimeError: If a migration script fails; that script is rolled back
    """
    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    available = available_migrations()
    applied = applied_versions(db_path)

    unknown = [v for v in applied if v not in available]
    if unknown:
        raise SchemaTooNewError(
            f"Database {db_path} has schema versions {', '.join(unknown)} "
            "that this release does not know; upgrade aegis to open it"
        )

    pending = [v for v in available if v not in applied]
    if not pending:
        logger.debug("No pending migrations for %s", db_path)
        return []

    logger.info("Applying %d pending migrations to %s", len(pending), db_path)
    with sqlite3.connect(db_path) as conn:
        for version in pending:
            _apply_migration(conn, version, available[version])
            logger.info("Applied migration %s: %s", version, available[version].name)
    return pending


def _ensure_schema_version_table(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_version (
            version TEXT PRIMARY KEY,
            applied_ts INTEGER NOT NULL
        )
        """
    )
    conn.commit()


def _apply_migration(conn: sqlite3.Connection, version: str, script: Path) -> None:
    """Run one script and record it, all or nothing."""
    statements = script.read_text(encoding="utf-8")
    try:
        # executescript() commits first, so wrap the script in an explicit transaction.
        conn.executescript(
            "BEGIN;\n"
            f"{statements}\n"
            f"INSERT INTO schema_version (version, applied_ts) VALUES ('{version}', {int(time.time())});\n"
            "COMMIT;"
        )
    except sqlite3.Error as e:
        if conn.in_transaction:
            conn.rollback()
        logger.error("Failed to apply migration %s: %s", version, e)
        raise RuntimeError(f"Migration {version} failed: {e}") from e
