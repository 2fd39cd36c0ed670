# SPDX-License-Identifier: Apache-2.0
"""Booking lifecycle commands."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from aegis.domain.value_objects import Money


@dataclass(frozen=True)
class RequestBookingCommand:
    """Command to request a guard for a service location."""

    customer_id: str
    latitude: float
    longitude: float
    address: str
    scheduled_start: datetime
    scheduled_end: datetime
    estimated_hours: Decimal
    hourly_rate: Optional[Money] = None
    booking_id: Optional[str] = None


@dataclass(frozen=True)
class AcceptBookingCommand:
    booking_id: str
    guard_id: str


@dataclass(frozen=True)
class StartJobCommand:
    booking_id: str
    guard_id: str


@dataclass(frozen=True)
class CompleteJobCommand:
    """Command to mark a job done; ``actor_id`` is the guard or the customer."""

    booking_id: str
    actor_id: str


@dataclass(frozen=True)
class CancelBookingCommand:
    booking_id: str
    reason: str = "customer_requested"


@dataclass(frozen=True)
class RecordLocationCommand:
    """A position report sent by a guard's device."""

    booking_id: str
    guard_id: str
    latitude: float
    longitude: float
    accuracy_m: Optional[float] = None
    recorded_at: Optional[datetime] = None


@dataclass(frozen=True)
class RegisterGuardCommand:
    """Command to create or replace a guard profile."""

    guard_id: str
    hourly_rate: Money
    rating: float = 5.0
    on_duty: bool = False
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    def __post_init__(self):
        """Validate command data."""
        if (self.latitude is None) != (self.longitude is None):
            raise ValueError("Latitude and longitude must be given together")
