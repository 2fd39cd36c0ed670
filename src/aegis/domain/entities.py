# SPDX-License-Identifier: Apache-2.0
"""Domain entities for Aegis.

Entities are objects that have identity and lifecycle. They are distinguished
by their identity rather than their attributes and can change over time while
maintaining their identity.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Optional

from .errors import CaptureExceedsAuthorization, PaymentStateError
from .value_objects import GeoLocation, Money


class Entity:
    """Base class for all domain entities.

    ``version`` is the version the entity had when it was loaded (0 for an
    entity that was never saved). Repositories compare it with the stored
    version on save and bump it on success.
    """

    def __init__(self, id: str):
        self._id = id
        self._version = 0

    @property
    def id(self) -> str:
        """Get the entity's unique identifier."""
        return self._id

    @property
    def version(self) -> int:
        """Get the entity's version for optimistic concurrency control."""
        return self._version

    def _mark_persisted(self, version: int) -> None:
        """Record the version assigned by the repository."""
        self._version = version

    def __eq__(self, other: object) -> bool:
        """Entities are equal if they have the same type and ID."""
        return type(other) is type(self) and self._id == other._id  # type: ignore[attr-defined]

    def __hash__(self) -> int:
        return hash((type(self).__name__, self._id))


class PaymentStatus(Enum):
    """State of the money behind a booking."""

    PENDING = "pending"
    AUTHORIZED = "authorized"
    CAPTURED = "captured"
    REFUNDED = "refunded"
    FAILED = "failed"
    RELEASED = "released"


class PaymentFailureStage(Enum):
    AUTHORIZATION = "authorization"
    CAPTURE = "capture"


# Failure reason recorded when the gateway did not answer in time.
GATEWAY_TIMEOUT = "gateway_timeout"


class Payment(Entity):
    """
    The payment behind a single booking.

    A payment is identified by its booking. It is created when the engine asks
    for an authorization hold and then only moves forward: a captured,
    refunded or released payment never becomes authorized again. The one
    retry path is a failed authorization, which may be attempted again when
    the booking is rematched.
    """

    def __init__(
        self,
        booking_id: str,
        amount_authorized: Money,
        platform_fee_percent: Decimal = Decimal("20"),
        status: PaymentStatus = PaymentStatus.PENDING,
        created_at: Optional[datetime] = None,
    ):
        super().__init__(booking_id)
        if not Decimal(0) <= Decimal(platform_fee_percent) <= Decimal(100):
            raise ValueError("Platform fee percentage must be between 0 and 100")

        self._amount_authorized = amount_authorized
        self._platform_fee_percent = Decimal(platform_fee_percent)
        self._status = status
        self._reference: Optional[str] = None
        self._amount_captured: Optional[Money] = None
        self._failure_stage: Optional[PaymentFailureStage] = None
        self._failure_reason: Optional[str] = None
        self._authorization_attempts = 1
        self._created_at = created_at
        self._updated_at = created_at
        self._platform_fee, self._guard_payout = self._split(amount_authorized)

    @property
    def booking_id(self) -> str:
        return self._id

    @property
    def amount_authorized(self) -> Money:
        return self._amount_authorized

    @property
    def amount_captured(self) -> Optional[Money]:
        return self._amount_captured

    @property
    def platform_fee(self) -> Money:
        """Platform share of the captured amount, or of the hold before capture."""
        return self._platform_fee

    @property
    def guard_payout(self) -> Money:
        return self._guard_payout

    @property
    def platform_fee_percent(self) -> Decimal:
        return self._platform_fee_percent

    @property
    def status(self) -> PaymentStatus:
        return self._status

    @property
    def reference(self) -> Optional[str]:
        """External authorization reference returned by the gateway."""
        return self._reference

    @property
    def authorization_attempts(self) -> int:
        """Number of holds requested for this booking, including the current one."""
        return self._authorization_attempts

    @property
    def failure_stage(self) -> Optional[PaymentFailureStage]:
        return self._failure_stage

    @property
    def failure_reason(self) -> Optional[str]:
        return self._failure_reason

    @property
    def created_at(self) -> Optional[datetime]:
        return self._created_at

    @property
    def updated_at(self) -> Optional[datetime]:
        return self._updated_at

    @property
    def needs_reconciliation(self) -> bool:
        """True when a capture failed and an operator has to step in."""
        return (
            self._status == PaymentStatus.FAILED
            and self._failure_stage == PaymentFailureStage.CAPTURE
        )

    @property
    def can_capture(self) -> bool:
        return self._status == PaymentStatus.AUTHORIZED or self.needs_reconciliation

    @property
    def authorization_outcome_unknown(self) -> bool:
        """True when an authorization timed out, so the gateway may hold funds we have no reference for."""
        return (
            self.can_reauthorize
            and self._reference is None
            and self._failure_reason == GATEWAY_TIMEOUT
        )

    @property
    def can_release(self) -> bool:
        return (
            self._status in (PaymentStatus.PENDING, PaymentStatus.AUTHORIZED)
            or self.authorization_outcome_unknown
        )

    @property
    def can_reauthorize(self) -> bool:
        return (
            self._status == PaymentStatus.FAILED
            and self._failure_stage == PaymentFailureStage.AUTHORIZATION
        )

    def restart_authorization(self, amount: Money, at: datetime) -> None:
        """Prepare a new hold attempt after a failed authorization."""
        if not self.can_reauthorize:
            raise PaymentStateError(
                f"Cannot re-authorize payment for booking {self._id} in status {self._status.value}"
            )
        self._amount_authorized = amount
        self._platform_fee, self._guard_payout = self._split(amount)
        self._status = PaymentStatus.PENDING
        self._authorization_attempts += 1
        self._failure_stage = None
        self._failure_reason = None
        self._touch(at)

    def authorize(self, reference: str, at: datetime) -> None:
        """Record a successful hold."""
        if self._status != PaymentStatus.PENDING:
            raise PaymentStateError(
                f"Cannot authorize payment for booking {self._id} in status {self._status.value}"
            )
        if not reference:
            raise ValueError("Authorization reference is required")
        self._reference = reference
        self._status = PaymentStatus.AUTHORIZED
        self._touch(at)

    def capture(self, amount: Money, at: datetime) -> None:
        """Record a successful capture of ``amount``.

        Raises:
            CaptureExceedsAuthorization: If ``amount`` is above the hold
            PaymentStateError: If the payment is not capturable
        """
        if amount > self._amount_authorized:
            raise CaptureExceedsAuthorization(
                f"Capture of {amount} exceeds authorized {self._amount_authorized} "
                f"for booking {self._id}"
            )
        if not self.can_capture:
            raise PaymentStateError(
                f"Cannot capture payment for booking {self._id} in status {self._status.value}"
            )
        self._amount_captured = amount
        self._platform_fee, self._guard_payout = self._split(amount)
        self._status = PaymentStatus.CAPTURED
        self._failure_stage = None
        self._failure_reason = None
        self._touch(at)

    def fail(self, stage: PaymentFailureStage, reason: str, at: datetime) -> None:
        if self._status in (PaymentStatus.CAPTURED, PaymentStatus.REFUNDED, PaymentStatus.RELEASED):
            raise PaymentStateError(
                f"Cannot mark payment for booking {self._id} as failed in status {self._status.value}"
            )
        self._status = PaymentStatus.FAILED
        self._failure_stage = stage
        self._failure_reason = reason
        self._touch(at)

    def release(self, at: datetime) -> None:
        """Void an outstanding hold."""
        if not self.can_release:
            raise PaymentStateError(
                f"Cannot release payment for booking {self._id} in status {self._status.value}"
            )
        self._status = PaymentStatus.RELEASED
        self._touch(at)

    def _split(self, amount: Money) -> tuple[Money, Money]:
        fee = amount.percentage(self._platform_fee_percent)
        return fee, amount - fee

    def _touch(self, at: datetime) -> None:
        if self._created_at is None:
            self._created_at = at
        self._updated_at = at

    def __repr__(self) -> str:
        return (
            f"Payment(booking_id={self._id}, status={self._status.value}, "
            f"authorized={self._amount_authorized}, captured={self._amount_captured})"
        )


class GuardProfile(Entity):
    """A guard as seen by the locator.

    ``on_duty`` is the guard's own switch. Whether the guard can take a job
    also depends on the bookings they hold, which the profile does not know
    about; the lifecycle service combines both.
    """

    def __init__(
        self,
        guard_id: str,
        hourly_rate: Money,
        rating: float = 5.0,
        on_duty: bool = False,
        last_location: Optional[GeoLocation] = None,
        last_seen_at: Optional[datetime] = None,
    ):
        super().__init__(guard_id)
        if not 0 <= rating <= 5:
            raise ValueError("Rating must be between 0 and 5")
        self._hourly_rate = hourly_rate
        self._rating = float(rating)
        self._on_duty = on_duty
        self._last_location = last_location
        self._last_seen_at = last_seen_at

    @property
    def guard_id(self) -> str:
        return self._id

    @property
    def hourly_rate(self) -> Money:
        return self._hourly_rate

    @property
    def rating(self) -> float:
        return self._rating

    @property
    def on_duty(self) -> bool:
        return self._on_duty

    @property
    def last_location(self) -> Optional[GeoLocation]:
        return self._last_location

    @property
    def last_seen_at(self) -> Optional[datetime]:
        return self._last_seen_at

    def go_on_duty(self) -> None:
        self._on_duty = True

    def go_off_duty(self) -> None:
        self._on_duty = False

    def update_location(self, location: GeoLocation, at: datetime) -> None:
        self._last_location = location
        self._last_seen_at = at

    def has_fresh_location(self, now: datetime, staleness: timedelta) -> bool:
        """True if the last known position is recent enough to match on."""
        if self._last_location is None or self._last_seen_at is None:
            return False
        return now - self._last_seen_at <= staleness

    def __repr__(self) -> str:
        return f"GuardProfile(guard_id={self._id}, on_duty={self._on_duty}, rate={self._hourly_rate})"


@dataclass(frozen=True)
class LocationUpdate:
    """One position report from a guard working a booking.

    ``recorded_at`` is the device timestamp as received; ordering is by
    arrival (``sequence``), not by ``recorded_at``.
    """

    booking_id: str
    guard_id: str
    location: GeoLocation
    recorded_at: datetime
    accuracy_m: Optional[float] = None
    sequence: int = 0
