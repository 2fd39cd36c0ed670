# SPDX-License-Identifier: Apache-2.0
"""Shared test fixtures for the Aegis test suite.

FIXTURES PROVIDED:
- start_time: fixed, timezone-aware reference instant
- clock: FakeClock starting at ``start_time``
- policy: default DispatchPolicy
- runtime: in-memory DispatchRuntime wired to ``clock`` (backoff sleeps advance it)
- service / gateway / broadcaster: shortcuts into ``runtime``
"""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from aegis.bootstrap import DispatchRuntime, build_in_memory
from aegis.config import DispatchPolicy
from tests.fakes.clock import FakeClock


@pytest.fixture
def start_time() -> datetime:
    return datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock(start_time) -> FakeClock:
    return FakeClock(start_time)


@pytest.fixture
def policy() -> DispatchPolicy:
    return DispatchPolicy()


@pytest.fixture
def runtime(policy, clock) -> DispatchRuntime:
    """In-memory dispatch core with sandbox gateway and broadcaster."""
    return build_in_memory(policy, clock=clock, sleep=clock.sleep)


@pytest.fixture
def service(runtime):
    return runtime.service


@pytest.fixture
def gateway(runtime):
    return runtime.gateway


@pytest.fixture
def broadcaster(runtime):
    return runtime.broadcaster
