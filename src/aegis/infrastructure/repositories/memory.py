# SPDX-License-Identifier: Apache-2.0
"""In-memory repository implementations.

Used by the simulator and by tests. Each repository stores snapshots
(deep copies) so that a caller mutating a loaded aggregate does not change
what is stored until it saves, and saves are checked against the stored
version the same way the SQLite repositories check them.
"""

from __future__ import annotations

import copy
from collections import defaultdict
from dataclasses import replace
from typing import Dict, List, Optional

from aegis.domain.aggregates import GUARD_HOLDING_STATUSES, Booking, BookingStatus
from aegis.domain.entities import Entity, GuardProfile, LocationUpdate, Payment, PaymentStatus
from aegis.domain.events import BookingEvent, IEventLog
from aegis.domain.repositories import (
    ConcurrencyError,
    IBookingRepository,
    IGuardRepository,
    ILocationRepository,
    IPaymentRepository,
)


def _check_version(stored: Optional[Entity], entity: Entity, kind: str) -> int:
    current = stored.version if stored is not None else 0
    if current != entity.version:
        raise ConcurrencyError(
            f"{kind} {entity.id} has been modified by another process. "
            f"Expected version {entity.version}, found {current}"
        )
    return current + 1


class InMemoryEventLog(IEventLog):
    """Event log held in process memory."""

    def __init__(self):
        self._events: List[BookingEvent] = []
        self._by_booking: Dict[str, List[BookingEvent]] = defaultdict(list)

    def record(self, events: List[BookingEvent]) -> None:
        """Append synchronously; used by repositories inside their save."""
        for event in events:
            self._events.append(event)
            self._by_booking[event.booking_id].append(event)

    async def events_for(self, booking_id: str) -> List[BookingEvent]:
        return list(self._by_booking.get(booking_id, []))

    async def count(self) -> int:
        return len(self._events)

    def all_events(self) -> List[BookingEvent]:
        """Every recorded event in append order (useful for testing)."""
        return self._events.copy()


class InMemoryBookingRepository(IBookingRepository):
    """Bookings held in process memory.

    ``save`` writes the snapshot and appends the booking's uncommitted events
    to the event log without yielding to the event loop in between, so both
    land together.
    """

    def __init__(self, event_log: Optional[InMemoryEventLog] = None):
        self._bookings: Dict[str, Booking] = {}
        self._event_log = event_log or InMemoryEventLog()

    @property
    def event_log(self) -> InMemoryEventLog:
        return self._event_log

    async def get(self, booking_id: str) -> Optional[Booking]:
        stored = self._bookings.get(booking_id)
        return self._copy(stored) if stored is not None else None

    async def save(self, booking: Booking) -> None:
        new_version = _check_version(self._bookings.get(booking.booking_id), booking, "Booking")

        snapshot = copy.deepcopy(booking)
        snapshot.clear_domain_events()
        snapshot._mark_persisted(new_version)

        self._bookings[booking.booking_id] = snapshot
        self._event_log.record(booking.domain_events)
        booking._mark_persisted(new_version)

    async def find_by_status(self, status: BookingStatus) -> List[Booking]:
        matches = [b for b in self._bookings.values() if b.status == status]
        matches.sort(key=lambda b: (b.created_at, b.booking_id))
        return [self._copy(b) for b in matches]

    async def find_active_for_guard(self, guard_id: str) -> List[Booking]:
        return [
            self._copy(b)
            for b in self._bookings.values()
            if b.guard_id == guard_id and b.status in GUARD_HOLDING_STATUSES
        ]

    async def count_by_status(self) -> Dict[BookingStatus, int]:
        counts: Dict[BookingStatus, int] = {}
        for booking in self._bookings.values():
            counts[booking.status] = counts.get(booking.status, 0) + 1
        return counts

    @staticmethod
    def _copy(booking: Booking) -> Booking:
        return copy.deepcopy(booking)


class InMemoryPaymentRepository(IPaymentRepository):
    """Payments held in process memory."""

    def __init__(self):
        self._payments: Dict[str, Payment] = {}

    async def get(self, booking_id: str) -> Optional[Payment]:
        stored = self._payments.get(booking_id)
        return copy.deepcopy(stored) if stored is not None else None

    async def save(self, payment: Payment) -> None:
        new_version = _check_version(self._payments.get(payment.booking_id), payment, "Payment")
        snapshot = copy.deepcopy(payment)
        snapshot._mark_persisted(new_version)
        self._payments[payment.booking_id] = snapshot
        payment._mark_persisted(new_version)

    async def find_by_status(self, status: PaymentStatus) -> List[Payment]:
        return [copy.deepcopy(p) for p in self._payments.values() if p.status == status]


class InMemoryGuardRepository(IGuardRepository):
    """Guard profiles held in process memory.

    Profiles are last-writer-wins; the locator only reads them and the
    location trail is the record of where a guard was.
    """

    def __init__(self):
        self._guards: Dict[str, GuardProfile] = {}

    async def get(self, guard_id: str) -> Optional[GuardProfile]:
        stored = self._guards.get(guard_id)
        return copy.deepcopy(stored) if stored is not None else None

    async def save(self, guard: GuardProfile) -> None:
        snapshot = copy.deepcopy(guard)
        snapshot._mark_persisted(guard.version + 1)
        self._guards[guard.guard_id] = snapshot
        guard._mark_persisted(guard.version + 1)

    async def list_on_duty(self) -> List[GuardProfile]:
        guards = [copy.deepcopy(g) for g in self._guards.values() if g.on_duty]
        guards.sort(key=lambda g: g.guard_id)
        return guards


class InMemoryLocationRepository(ILocationRepository):
    """Location trail held in process memory."""

    def __init__(self):
        self._updates: Dict[str, List[LocationUpdate]] = defaultdict(list)
        self._sequence = 0

    async def append(self, update: LocationUpdate) -> LocationUpdate:
        self._sequence += 1
        stored = replace(update, sequence=self._sequence)
        self._updates[update.booking_id].append(stored)
        return stored

    async def history(self, booking_id: str) -> List[LocationUpdate]:
        return list(self._updates.get(booking_id, []))

    async def latest(self, booking_id: str) -> Optional[LocationUpdate]:
        updates = self._updates.get(booking_id)
        return updates[-1] if updates else None
