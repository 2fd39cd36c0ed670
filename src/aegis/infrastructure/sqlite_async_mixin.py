# SPDX-License-Identifier: Apache-2.0
"""Async SQLite access shared by the SQLite repositories.

Connections are serialized per event loop. Writes that must be atomic, such
as a versioned aggregate row plus its events, go through ``_transaction``.
"""

from __future__ import annotations

import asyncio
import contextlib
import weakref
from collections.abc import AsyncIterator

import aiosqlite

from aegis.domain.repositories import ConcurrencyError

# Per-event-loop locks to avoid "bound to different event loop" errors
_EVENT_LOOP_LOCKS: weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, asyncio.Lock] = (
    weakref.WeakKeyDictionary()
)


def _get_event_loop_lock() -> asyncio.Lock:
    """Get or create a lock for the current event loop."""
    loop = asyncio.get_running_loop()
    if loop not in _EVENT_LOOP_LOCKS:
        _EVENT_LOOP_LOCKS[loop] = asyncio.Lock()
    return _EVENT_LOOP_LOCKS[loop]


class SqliteAsyncMixin:
    """Mixin providing async SQLite connection management.

    Usage:
        class SqliteThingRepository(SqliteAsyncMixin):
            def __init__(self, db_path: str):
                self.db_path = db_path

            async def save(self, thing):
                async with self._transaction() as db:
                    version = await self._swap_version(db, "things", "thing_id", thing.id, thing.version)
                    await db.execute("INSERT OR REPLACE INTO things ...", (...))
    """

    db_path: str

    @contextlib.asynccontextmanager
    async def _conn(self) -> AsyncIterator[aiosqlite.Connection]:
        """Open a connection with ``aiosqlite.Row`` rows, WAL and a 30 second busy timeout."""
        db_lock = _get_event_loop_lock()

        async with db_lock:
            async with aiosqlite.connect(self.db_path, timeout=30) as db:
                db.row_factory = aiosqlite.Row
                await db.execute("PRAGMA journal_mode=WAL;")
                await db.execute("PRAGMA synchronous=NORMAL;")
                yield db

    @contextlib.asynccontextmanager
    async def _transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Run the block in one write transaction.

        ``BEGIN IMMEDIATE`` takes the write lock up front, so a version read
        inside the block cannot be invalidated by another writer before the
        commit. Any exception rolls the whole block back.
        """
        async with self._conn() as db:
            await db.execute("BEGIN IMMEDIATE")
            try:
                yield db
            except BaseException:
                await db.rollback()
                raise
            await db.commit()

    @staticmethod
    async def _swap_version(
        db: aiosqlite.Connection, table: str, key_column: str, key: str, expected: int
    ) -> int:
        """Check the stored version of a row and return the next one.

        A missing row counts as version 0.

        Raises:
            ConcurrencyError: If the stored version differs from ``expected``
        """
        cursor = await db.execute(f"SELECT version FROM {table} WHERE {key_column} = ?", (key,))
        row = await cursor.fetchone()
        current = row[0] if row else 0
        if current != expected:
            raise ConcurrencyError(
                f"{table} row {key} has been modified by another process. "
                f"Expected version {expected}, found {current}"
            )
        return current + 1
