# SPDX-License-Identifier: Apache-2.0
"""Unit tests for KeyedLocks."""

from __future__ import annotations

import asyncio

import pytest

from aegis.application import KeyedLocks


class TestKeyedLocks:
    @pytest.mark.asyncio
    async def test_same_key_is_serialized(self):
        locks = KeyedLocks()
        order = []

        async def worker(name):
            async with locks.hold("booking:B1"):
                order.append(f"{name}-in")
                await asyncio.sleep(0.01)
                order.append(f"{name}-out")

        await asyncio.gather(worker("a"), worker("b"))

        assert order in (["a-in", "a-out", "b-in", "b-out"], ["b-in", "b-out", "a-in", "a-out"])

    @pytest.mark.asyncio
    async def test_different_keys_do_not_block(self):
        locks = KeyedLocks()
        async with locks.hold("booking:B1"):
            async with locks.hold("guard:G1"):
                assert locks.is_locked("booking:B1")
                assert locks.is_locked("guard:G1")

    @pytest.mark.asyncio
    async def test_idle_locks_are_dropped(self):
        locks = KeyedLocks()
        async with locks.hold("booking:B1"):
            assert len(locks) == 1
        assert len(locks) == 0
        assert not locks.is_locked("booking:B1")

    @pytest.mark.asyncio
    async def test_lock_released_on_error(self):
        locks = KeyedLocks()
        with pytest.raises(RuntimeError):
            async with locks.hold("booking:B1"):
                raise RuntimeError("boom")
        assert len(locks) == 0
