# SPDX-License-Identifier: Apache-2.0
"""Fake implementations and builders for testing."""

from __future__ import annotations

from .clock import FakeClock
from .events import FakeEventPublisher
from .locator import FakeGuardLocator

__all__ = [
    "FakeClock",
    "FakeEventPublisher",
    "FakeGuardLocator",
]
