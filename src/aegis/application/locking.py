# SPDX-License-Identifier: Apache-2.0
"""Keyed asyncio locks.

One lock per key, created on first use and dropped when nobody holds or
waits for it. Locks only exclude callers in the same process; across
processes the repositories' version check is what rejects a stale write.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncIterator
from typing import Dict

from aegis.metrics import ACTIVE_BOOKING_LOCKS


class KeyedLocks:
    """A map of ``asyncio.Lock`` by key."""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    @contextlib.asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._users[key] = self._users.get(key, 0) + 1
        ACTIVE_BOOKING_LOCKS.inc()
        try:
            async with lock:
                yield
        finally:
            ACTIVE_BOOKING_LOCKS.dec()
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def is_locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)
