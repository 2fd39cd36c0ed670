# SPDX-License-Identifier: Apache-2.0
"""Unit tests for bounded collaborator calls."""

from __future__ import annotations

import asyncio

import pytest

from aegis.application.retry import call_with_retry
from aegis.domain.errors import DependencyTimeout, GatewayUnavailable


class Flaky:
    """Fails with ``error`` for the first ``failures`` calls."""

    def __init__(self, failures: int, error: Exception | None = None, delay: float = 0.0):
        self.failures = failures
        self.error = error
        self.delay = delay
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            if self.error is not None:
                raise self.error
            await asyncio.sleep(self.delay)
        return "ok"


class TestCallWithRetry:
    @pytest.mark.asyncio
    async def test_success_first_try(self):
        call = Flaky(0)
        assert await call_with_retry("dep", "op", call, timeout=1) == "ok"
        assert call.calls == 1

    @pytest.mark.asyncio
    async def test_one_retry_after_unavailable(self):
        call = Flaky(1, GatewayUnavailable("down"))
        assert await call_with_retry("dep", "op", call, timeout=1) == "ok"
        assert call.calls == 2

    @pytest.mark.asyncio
    async def test_one_retry_after_timeout(self):
        call = Flaky(1, delay=1.0)
        assert await call_with_retry("dep", "op", call, timeout=0.02) == "ok"
        assert call.calls == 2

    @pytest.mark.asyncio
    async def test_gives_up_with_dependency_timeout(self):
        call = Flaky(5, GatewayUnavailable("down"))

        with pytest.raises(DependencyTimeout) as exc_info:
            await call_with_retry("payment_gateway", "authorize", call, timeout=1)

        assert exc_info.value.dependency == "payment_gateway.authorize"
        assert call.calls == 2

    @pytest.mark.asyncio
    async def test_other_errors_are_not_retried(self):
        call = Flaky(1, ValueError("bad"))
        with pytest.raises(ValueError):
            await call_with_retry("dep", "op", call, timeout=1)
        assert call.calls == 1
