# SPDX-License-Identifier: Apache-2.0
"""Repository implementations for Aegis."""

from .memory import (
    InMemoryBookingRepository,
    InMemoryEventLog,
    InMemoryGuardRepository,
    InMemoryLocationRepository,
    InMemoryPaymentRepository,
)
from .sqlite_domain import (
    SqliteBookingRepository,
    SqliteEventLog,
    SqliteGuardRepository,
    SqliteLocationRepository,
    SqlitePaymentRepository,
)

__all__ = [
    "InMemoryBookingRepository",
    "InMemoryEventLog",
    "InMemoryGuardRepository",
    "InMemoryLocationRepository",
    "InMemoryPaymentRepository",
    "SqliteBookingRepository",
    "SqliteEventLog",
    "SqliteGuardRepository",
    "SqliteLocationRepository",
    "SqlitePaymentRepository",
]
