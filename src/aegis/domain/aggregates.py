# SPDX-License-Identifier: Apache-2.0
"""Booking aggregate.

The booking is the consistency boundary of the dispatch core. Every state
change goes through one of the transition methods below, which check the
transition is legal, mutate the booking and record the matching domain event.
The aggregate does not talk to collaborators; the lifecycle service decides
when a transition is attempted and persists the result.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import List, Optional, Sequence, Tuple

from .entities import Entity
from .errors import ActorNotAssigned, GuardNotOffered, InvalidTransition
from .events import (
    BookingAccepted,
    BookingCancelled,
    BookingCompleted,
    BookingEvent,
    BookingRequested,
    GuardMatched,
    JobStarted,
    MatchReverted,
    PaymentAuthorized,
    PaymentCaptured,
    PaymentCaptureFailed,
)
from .value_objects import Money, ServiceLocation

_HOURS_PRECISION = Decimal("0.0001")


class BookingStatus(Enum):
    """Lifecycle state of a booking."""

    REQUESTED = "requested"
    MATCHED = "matched"
    ACCEPTED = "accepted"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED})

# A guard on a booking in one of these states is committed to it.
GUARD_HOLDING_STATUSES = frozenset({BookingStatus.ACCEPTED, BookingStatus.IN_PROGRESS})


class Booking(Entity):
    """
    A customer's request for a guard, from request to completion.

    Use ``Booking.request`` to create a new booking; the constructor is also
    used by repositories to restore a stored booking and therefore records no
    events.
    """

    def __init__(
        self,
        booking_id: str,
        customer_id: str,
        location: ServiceLocation,
        scheduled_start: datetime,
        scheduled_end: datetime,
        estimated_hours: Decimal,
        created_at: datetime,
        quoted_rate: Optional[Money] = None,
        status: BookingStatus = BookingStatus.REQUESTED,
        guard_id: Optional[str] = None,
        offered_guard_ids: Sequence[str] = (),
        hourly_rate: Optional[Money] = None,
        estimated_total: Optional[Money] = None,
        payment_reference: Optional[str] = None,
        actual_start: Optional[datetime] = None,
        actual_end: Optional[datetime] = None,
        final_amount: Optional[Money] = None,
        cancellation_reason: Optional[str] = None,
        match_attempts: int = 0,
        updated_at: Optional[datetime] = None,
    ):
        super().__init__(booking_id)
        self._customer_id = customer_id
        self._location = location
        self._scheduled_start = scheduled_start
        self._scheduled_end = scheduled_end
        self._estimated_hours = Decimal(estimated_hours)
        self._created_at = created_at
        self._quoted_rate = quoted_rate
        self._status = status
        self._guard_id = guard_id
        self._offered_guard_ids: Tuple[str, ...] = tuple(offered_guard_ids)
        self._hourly_rate = hourly_rate
        self._estimated_total = estimated_total
        self._payment_reference = payment_reference
        self._actual_start = actual_start
        self._actual_end = actual_end
        self._final_amount = final_amount
        self._cancellation_reason = cancellation_reason
        self._match_attempts = match_attempts
        self._updated_at = updated_at or created_at
        self._domain_events: List[BookingEvent] = []

    @classmethod
    def request(
        cls,
        booking_id: str,
        customer_id: str,
        location: ServiceLocation,
        scheduled_start: datetime,
        scheduled_end: datetime,
        estimated_hours: Decimal,
        at: datetime,
        quoted_rate: Optional[Money] = None,
    ) -> Booking:
        """Create a new booking in ``requested`` status.

        Raises:
            ValueError: If the request is malformed
        """
        if not customer_id:
            raise ValueError("Customer id is required")
        estimated_hours = Decimal(str(estimated_hours))
        if estimated_hours <= 0:
            raise ValueError("Estimated hours must be greater than 0")
        if not (_is_aware(scheduled_start) and _is_aware(scheduled_end)):
            raise ValueError("Scheduled start and end must be timezone-aware")
        if scheduled_end <= scheduled_start:
            raise ValueError("Scheduled end must be after scheduled start")

        booking = cls(
            booking_id=booking_id,
            customer_id=customer_id,
            location=location,
            scheduled_start=scheduled_start,
            scheduled_end=scheduled_end,
            estimated_hours=estimated_hours,
            created_at=at,
            quoted_rate=quoted_rate,
        )
        booking._add_domain_event(
            BookingRequested(
                booking_id=booking_id,
                customer_id=customer_id,
                latitude=location.latitude,
                longitude=location.longitude,
                address=location.address,
                scheduled_start=scheduled_start,
                scheduled_end=scheduled_end,
                estimated_hours=estimated_hours,
                occurred_at=at,
            )
        )
        return booking

    @property
    def booking_id(self) -> str:
        return self._id

    @property
    def customer_id(self) -> str:
        return self._customer_id

    @property
    def location(self) -> ServiceLocation:
        return self._location

    @property
    def scheduled_start(self) -> datetime:
        return self._scheduled_start

    @property
    def scheduled_end(self) -> datetime:
        return self._scheduled_end

    @property
    def estimated_hours(self) -> Decimal:
        return self._estimated_hours

    @property
    def created_at(self) -> datetime:
        return self._created_at

    @property
    def updated_at(self) -> datetime:
        return self._updated_at

    @property
    def quoted_rate(self) -> Optional[Money]:
        """Rate the customer asked for, if any; otherwise the guard's rate applies."""
        return self._quoted_rate

    @property
    def status(self) -> BookingStatus:
        return self._status

    @property
    def guard_id(self) -> Optional[str]:
        return self._guard_id

    @property
    def offered_guard_ids(self) -> Tuple[str, ...]:
        """Guards the booking is currently offered to, nearest first."""
        return self._offered_guard_ids

    @property
    def hourly_rate(self) -> Optional[Money]:
        return self._hourly_rate

    @property
    def estimated_total(self) -> Optional[Money]:
        return self._estimated_total

    @property
    def payment_reference(self) -> Optional[str]:
        return self._payment_reference

    @property
    def actual_start(self) -> Optional[datetime]:
        return self._actual_start

    @property
    def actual_end(self) -> Optional[datetime]:
        return self._actual_end

    @property
    def final_amount(self) -> Optional[Money]:
        return self._final_amount

    @property
    def cancellation_reason(self) -> Optional[str]:
        return self._cancellation_reason

    @property
    def match_attempts(self) -> int:
        """Number of match attempts that ended without a usable match."""
        return self._match_attempts

    @property
    def is_terminal(self) -> bool:
        return self._status.is_terminal

    @property
    def holds_guard(self) -> bool:
        """True while the assigned guard is committed to this booking."""
        return self._status in GUARD_HOLDING_STATUSES and self._guard_id is not None

    @property
    def actual_hours(self) -> Optional[Decimal]:
        """Elapsed service time in hours, once the job has ended."""
        if self._actual_start is None or self._actual_end is None:
            return None
        seconds = Decimal(str((self._actual_end - self._actual_start).total_seconds()))
        return (seconds / Decimal(3600)).quantize(_HOURS_PRECISION)

    @property
    def can_cancel(self) -> bool:
        return not self._status.is_terminal

    def is_party(self, actor_id: str) -> bool:
        """True if ``actor_id`` is the booking's customer or assigned guard."""
        return actor_id in (self._customer_id, self._guard_id)

    def match(
        self,
        guard_id: str,
        hourly_rate: Money,
        distance_km: float,
        eta_minutes: float,
        offered_guard_ids: Sequence[str],
        at: datetime,
    ) -> None:
        """Assign the nearest candidate and fix the price."""
        self._require(BookingStatus.REQUESTED, "match")
        offered = tuple(offered_guard_ids) or (guard_id,)
        if guard_id not in offered:
            raise ValueError(f"Matched guard {guard_id} must be among the offered guards")

        self._status = BookingStatus.MATCHED
        self._guard_id = guard_id
        self._offered_guard_ids = offered
        self._hourly_rate = hourly_rate
        self._estimated_total = hourly_rate * self._estimated_hours
        self._updated_at = at

        self._add_domain_event(
            GuardMatched(
                booking_id=self._id,
                guard_id=guard_id,
                customer_id=self._customer_id,
                hourly_rate=hourly_rate,
                estimated_total=self._estimated_total,
                distance_km=distance_km,
                eta_minutes=eta_minutes,
                offered_guard_ids=offered,
                occurred_at=at,
            )
        )

    def record_authorization(self, reference: str, at: datetime) -> None:
        """Attach the authorization hold obtained for the estimated total."""
        self._require(BookingStatus.MATCHED, "authorize")
        if self._payment_reference is not None:
            raise InvalidTransition(self._id, self._status.value, "authorize", "hold already recorded")

        self._payment_reference = reference
        self._updated_at = at
        self._add_domain_event(
            PaymentAuthorized(
                booking_id=self._id,
                amount=self._estimated_total,
                payment_reference=reference,
                occurred_at=at,
            )
        )

    def revert_match(self, reason: str, at: datetime) -> None:
        """Undo a match so the booking can be matched again."""
        self._require(BookingStatus.MATCHED, "revert")
        guard_id = self._guard_id

        self._status = BookingStatus.REQUESTED
        self._guard_id = None
        self._offered_guard_ids = ()
        self._hourly_rate = None
        self._estimated_total = None
        self._payment_reference = None
        self._match_attempts += 1
        self._updated_at = at

        self._add_domain_event(
            MatchReverted(booking_id=self._id, guard_id=guard_id, reason=reason, occurred_at=at)
        )

    def record_failed_match_attempt(self, at: datetime) -> None:
        """Count a match attempt that found nobody."""
        self._require(BookingStatus.REQUESTED, "match")
        self._match_attempts += 1
        self._updated_at = at

    def accept(self, guard_id: str, at: datetime) -> None:
        """
        Commit ``guard_id`` to the booking.

        Raises:
            InvalidTransition: If the booking is not matched or has no hold yet
            GuardNotOffered: If the booking was never offered to this guard
        """
        self._require(BookingStatus.MATCHED, "accept")
        if guard_id not in self._offered_guard_ids:
            raise GuardNotOffered(self._id, guard_id)
        if self._payment_reference is None:
            raise InvalidTransition(
                self._id, self._status.value, "accept", "authorization hold pending"
            )

        self._status = BookingStatus.ACCEPTED
        self._guard_id = guard_id
        self._updated_at = at
        self._add_domain_event(
            BookingAccepted(
                booking_id=self._id,
                guard_id=guard_id,
                customer_id=self._customer_id,
                occurred_at=at,
            )
        )

    def start(self, guard_id: str, at: datetime, grace: timedelta) -> None:
        """Start the job. Allowed from ``grace`` before the scheduled start."""
        self._require(BookingStatus.ACCEPTED, "start")
        if guard_id != self._guard_id:
            raise ActorNotAssigned(self._id, guard_id)
        if at < self._scheduled_start - grace:
            raise InvalidTransition(
                self._id,
                self._status.value,
                "start",
                f"too early, earliest start is {(self._scheduled_start - grace).isoformat()}",
            )

        self._status = BookingStatus.IN_PROGRESS
        self._actual_start = at
        self._updated_at = at
        self._add_domain_event(
            JobStarted(booking_id=self._id, guard_id=guard_id, actual_start=at, occurred_at=at)
        )

    def complete(self, at: datetime) -> Money:
        """
        End the job and fix the amount to capture.

        The final amount is actual hours times the hourly rate, capped at the
        authorized estimate.

        Returns:
            The amount to capture
        """
        self._require(BookingStatus.IN_PROGRESS, "complete")
        if self._actual_start is None:
            raise InvalidTransition(self._id, self._status.value, "complete", "job was never started")

        self._actual_end = max(at, self._actual_start)
        hours = self.actual_hours
        final_amount = min(self._hourly_rate * hours, self._estimated_total)

        self._status = BookingStatus.COMPLETED
        self._final_amount = final_amount
        self._updated_at = at
        self._add_domain_event(
            BookingCompleted(
                booking_id=self._id,
                guard_id=self._guard_id,
                customer_id=self._customer_id,
                actual_start=self._actual_start,
                actual_end=self._actual_end,
                actual_hours=hours,
                final_amount=final_amount,
                occurred_at=at,
            )
        )
        return final_amount

    def record_capture(self, amount: Money, at: datetime) -> None:
        self._require(BookingStatus.COMPLETED, "capture")
        self._updated_at = at
        self._add_domain_event(PaymentCaptured(booking_id=self._id, amount=amount, occurred_at=at))

    def record_capture_failure(self, amount: Money, reason: str, at: datetime) -> None:
        self._require(BookingStatus.COMPLETED, "capture")
        self._updated_at = at
        self._add_domain_event(
            PaymentCaptureFailed(booking_id=self._id, amount=amount, reason=reason, occurred_at=at)
        )

    def cancel(self, reason: str, at: datetime) -> None:
        """Cancel from any non-terminal state.

        The guard id is kept for the record; a cancelled booking no longer
        holds its guard.
        """
        if not self.can_cancel:
            raise InvalidTransition(self._id, self._status.value, "cancel")

        previous = self._status
        self._status = BookingStatus.CANCELLED
        self._cancellation_reason = reason
        self._updated_at = at
        self._add_domain_event(
            BookingCancelled(
                booking_id=self._id,
                reason=reason,
                previous_status=previous.value,
                guard_id=self._guard_id,
                occurred_at=at,
            )
        )

    @property
    def domain_events(self) -> List[BookingEvent]:
        """Get events recorded since the last commit."""
        return self._domain_events.copy()

    def clear_domain_events(self) -> None:
        self._domain_events.clear()

    def mark_events_committed(self) -> None:
        """Mark all events as committed (persisted to the event log)."""
        self._domain_events.clear()

    def _add_domain_event(self, event: BookingEvent) -> None:
        self._domain_events.append(event)

    def _require(self, status: BookingStatus, attempted: str) -> None:
        if self._status != status:
            raise InvalidTransition(self._id, self._status.value, attempted)

    def __repr__(self) -> str:
        return f"Booking(id={self._id}, status={self._status.value}, guard_id={self._guard_id})"


def _is_aware(value: datetime) -> bool:
    return value.tzinfo is not None and value.utcoffset() is not None
