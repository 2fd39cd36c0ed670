# SPDX-License-Identifier: Apache-2.0
"""Domain events for Aegis.

A booking's history is told by a fixed set of events. Each kind is its own
frozen dataclass carrying exactly the payload that kind needs; ``BookingEvent``
is the closed union over all of them. Consumers dispatch on the concrete
class (see ``EVENT_TYPES``) instead of probing attributes, so adding a kind
is a deliberate change that every consumer has to handle.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field, fields
from datetime import datetime
from decimal import Decimal
from typing import Any, ClassVar, Dict, List, Optional, Tuple, Union, get_args, get_origin, get_type_hints
from uuid import UUID, uuid4

from .value_objects import Money

# Fields every event carries; everything else is event-specific payload.
_ENVELOPE_FIELDS = ("booking_id", "occurred_at", "event_id")


@dataclass(frozen=True)
class BookingRequested:
    """A customer asked for a guard."""

    event_type: ClassVar[str] = "BookingRequested"

    booking_id: str
    customer_id: str
    latitude: float
    longitude: float
    address: str
    scheduled_start: datetime
    scheduled_end: datetime
    estimated_hours: Decimal
    occurred_at: datetime
    event_id: UUID = field(default_factory=uuid4)


@dataclass(frozen=True)
class GuardMatched:
    """The locator found a guard and the price was fixed."""

    event_type: ClassVar[str] = "GuardMatched"

    booking_id: str
    guard_id: str
    customer_id: str
    hourly_rate: Money
    estimated_total: Money
    distance_km: float
    eta_minutes: float
    offered_guard_ids: Tuple[str, ...]
    occurred_at: datetime
    event_id: UUID = field(default_factory=uuid4)


@dataclass(frozen=True)
class PaymentAuthorized:
    """Funds for the estimated total are held."""

    event_type: ClassVar[str] = "PaymentAuthorized"

    booking_id: str
    amount: Money
    payment_reference: str
    occurred_at: datetime
    event_id: UUID = field(default_factory=uuid4)


@dataclass(frozen=True)
class MatchReverted:
    """A match was undone and the booking is waiting for a guard again."""

    event_type: ClassVar[str] = "MatchReverted"

    booking_id: str
    guard_id: str
    reason: str
    occurred_at: datetime
    event_id: UUID = field(default_factory=uuid4)


@dataclass(frozen=True)
class BookingAccepted:
    """A guard committed to the booking."""

    event_type: ClassVar[str] = "BookingAccepted"

    booking_id: str
    guard_id: str
    customer_id: str
    occurred_at: datetime
    event_id: UUID = field(default_factory=uuid4)


@dataclass(frozen=True)
class JobStarted:
    """The guard is on site and the clock is running."""

    event_type: ClassVar[str] = "JobStarted"

    booking_id: str
    guard_id: str
    actual_start: datetime
    occurred_at: datetime
    event_id: UUID = field(default_factory=uuid4)


@dataclass(frozen=True)
class BookingCompleted:
    """Service was rendered; ``final_amount`` is what will be captured."""

    event_type: ClassVar[str] = "BookingCompleted"

    booking_id: str
    guard_id: str
    customer_id: str
    actual_start: datetime
    actual_end: datetime
    actual_hours: Decimal
    final_amount: Money
    occurred_at: datetime
    event_id: UUID = field(default_factory=uuid4)


@dataclass(frozen=True)
class PaymentCaptured:
    event_type: ClassVar[str] = "PaymentCaptured"

    booking_id: str
    amount: Money
    occurred_at: datetime
    event_id: UUID = field(default_factory=uuid4)


@dataclass(frozen=True)
class PaymentCaptureFailed:
    """Capture did not go through; the payment needs manual reconciliation."""

    event_type: ClassVar[str] = "PaymentCaptureFailed"

    booking_id: str
    amount: Money
    reason: str
    occurred_at: datetime
    event_id: UUID = field(default_factory=uuid4)


@dataclass(frozen=True)
class BookingCancelled:
    event_type: ClassVar[str] = "BookingCancelled"

    booking_id: str
    reason: str
    previous_status: str
    guard_id: Optional[str]
    occurred_at: datetime
    event_id: UUID = field(default_factory=uuid4)


BookingEvent = Union[
    BookingRequested,
    GuardMatched,
    PaymentAuthorized,
    MatchReverted,
    BookingAccepted,
    JobStarted,
    BookingCompleted,
    PaymentCaptured,
    PaymentCaptureFailed,
    BookingCancelled,
]

EVENT_TYPES: Dict[str, type] = {cls.event_type: cls for cls in get_args(BookingEvent)}


def event_payload(event: BookingEvent) -> Dict[str, Any]:
    """Return the event-specific fields as JSON-compatible values."""
    return {
        f.name: _encode(getattr(event, f.name))
        for f in fields(event)
        if f.name not in _ENVELOPE_FIELDS
    }


def event_from_record(
    event_type: str,
    booking_id: str,
    occurred_at: datetime,
    event_id: UUID,
    payload: Dict[str, Any],
) -> BookingEvent:
    """Rebuild an event from its stored envelope and payload.

    Raises:
        ValueError: If ``event_type`` is not one of the known kinds
    """
    cls = EVENT_TYPES.get(event_type)
    if cls is None:
        raise ValueError(f"Unknown event type: {event_type}")

    hints = get_type_hints(cls)
    kwargs = {
        name: _decode(hints[name], value)
        for name, value in payload.items()
        if name in hints
    }
    return cls(booking_id=booking_id, occurred_at=occurred_at, event_id=event_id, **kwargs)


def _encode(value: Any) -> Any:
    if isinstance(value, Money):
        return {"amount": str(value.amount), "currency": value.currency}
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, tuple):
        return [_encode(v) for v in value]
    return value


def _decode(hint: Any, value: Any) -> Any:
    if value is None:
        return None
    if get_origin(hint) is Union:
        hint = next(arg for arg in get_args(hint) if arg is not type(None))
    if hint is Money:
        return Money.of(value["amount"], value["currency"])
    if hint is datetime:
        return datetime.fromisoformat(value)
    if hint is Decimal:
        return Decimal(value)
    if get_origin(hint) is tuple:
        return tuple(value)
    return value


class IEventPublisher(ABC):
    """Delivers committed events to subscribers outside the core."""

    @abstractmethod
    async def publish(self, event: BookingEvent) -> None:
        """Publish a single domain event."""
        pass

    @abstractmethod
    async def publish_many(self, events: List[BookingEvent]) -> None:
        """Publish events in order."""
        pass


class IEventLog(ABC):
    """Append-only, per-booking ordered record of domain events."""

    @abstractmethod
    async def events_for(self, booking_id: str) -> List[BookingEvent]:
        """Return a booking's events in the order they were appended."""
        pass

    @abstractmethod
    async def count(self) -> int:
        """Total number of recorded events."""
        pass
