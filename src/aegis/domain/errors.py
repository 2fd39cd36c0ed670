# SPDX-License-Identifier: Apache-2.0
"""Dispatch error taxonomy.

Every failure the lifecycle engine reports to its callers derives from
``DispatchError``. Repository and infrastructure failures are not part of
this hierarchy and propagate untransformed.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class DispatchError(Exception):
    """Base class for dispatch domain failures."""

    code = "dispatch_error"

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class BookingNotFound(DispatchError):
    """Raised when no booking exists for the given identifier."""

    code = "booking_not_found"

    def __init__(self, booking_id: str):
        super().__init__(f"Booking not found: {booking_id}", details={"booking_id": booking_id})
        self.booking_id = booking_id


class InvalidTransition(DispatchError):
    """The requested transition is not legal from the booking's current state."""

    code = "invalid_transition"

    def __init__(self, booking_id: str, current: str, attempted: str, reason: str = ""):
        message = f"Cannot {attempted} booking {booking_id} in status {current}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(
            message,
            details={"booking_id": booking_id, "status": current, "attempted": attempted},
        )
        self.booking_id = booking_id
        self.current = current
        self.attempted = attempted


class Conflict(DispatchError):
    """A concurrent caller won the race for this booking."""

    code = "conflict"

    def __init__(self, booking_id: str, message: str = "Booking already taken"):
        super().__init__(f"{message}: {booking_id}", details={"booking_id": booking_id})
        self.booking_id = booking_id


class GuardUnavailable(Conflict):
    """The accepting guard is already committed to another booking."""

    code = "guard_unavailable"

    def __init__(self, booking_id: str, guard_id: str):
        super().__init__(booking_id, f"Guard {guard_id} already holds an active booking")
        self.guard_id = guard_id


class GuardNotOffered(DispatchError):
    """A guard tried to accept a booking that was never offered to them."""

    code = "guard_not_offered"

    def __init__(self, booking_id: str, guard_id: str):
        super().__init__(
            f"Booking {booking_id} was not offered to guard {guard_id}",
            details={"booking_id": booking_id, "guard_id": guard_id},
        )
        self.guard_id = guard_id


class ActorNotAssigned(DispatchError):
    """The caller is neither the assigned guard nor the booking's customer."""

    code = "actor_not_assigned"

    def __init__(self, booking_id: str, actor_id: str):
        super().__init__(
            f"{actor_id} is not assigned to booking {booking_id}",
            details={"booking_id": booking_id, "actor_id": actor_id},
        )
        self.actor_id = actor_id


class NoGuardAvailable(DispatchError):
    """The locator returned no usable candidate.

    ``cancelled`` is True when this attempt exhausted the match policy and the
    booking was cancelled as a consequence.
    """

    code = "no_guard_available"

    def __init__(self, booking_id: str, *, cancelled: bool = False):
        super().__init__(
            f"No guard available for booking {booking_id}",
            details={"booking_id": booking_id, "cancelled": cancelled},
        )
        self.booking_id = booking_id
        self.cancelled = cancelled


class PaymentError(DispatchError):
    """Base class for payment coordinator failures."""

    code = "payment_error"


class PaymentDeclined(PaymentError):
    """The gateway refused the authorization hold."""

    code = "payment_declined"

    def __init__(self, booking_id: str, reason: str = "declined", *, cancelled: bool = False):
        super().__init__(
            f"Authorization declined for booking {booking_id}: {reason}",
            details={"booking_id": booking_id, "reason": reason, "cancelled": cancelled},
        )
        self.booking_id = booking_id
        self.reason = reason
        self.cancelled = cancelled


class CaptureFailed(PaymentError):
    """The gateway could not capture the held funds."""

    code = "capture_failed"

    def __init__(self, booking_id: str, reason: str = "capture failed"):
        super().__init__(
            f"Capture failed for booking {booking_id}: {reason}",
            details={"booking_id": booking_id, "reason": reason},
        )
        self.booking_id = booking_id
        self.reason = reason


class CaptureExceedsAuthorization(PaymentError):
    """Contract violation: a capture larger than the hold was requested."""

    code = "capture_exceeds_authorization"


class PaymentStateError(PaymentError):
    """The payment cannot move in the requested direction."""

    code = "payment_state_error"


class GatewayUnavailable(DispatchError):
    """Transient collaborator failure; safe to retry once."""

    code = "gateway_unavailable"


class DependencyTimeout(DispatchError):
    """An external call exceeded its bound even after a retry."""

    code = "dependency_timeout"

    def __init__(self, dependency: str, timeout_seconds: float):
        super().__init__(
            f"{dependency} did not respond within {timeout_seconds}s",
            details={"dependency": dependency, "timeout_seconds": timeout_seconds},
        )
        self.dependency = dependency
        self.timeout_seconds = timeout_seconds
