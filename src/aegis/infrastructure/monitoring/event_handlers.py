# SPDX-License-Identifier: Apache-2.0
"""Event handlers for automatic metrics collection.

This module subscribes to booking events and records Prometheus metrics
from them, so the lifecycle service itself only counts what never becomes
an event (dropped location updates, broadcast failures, timeouts).
"""

from __future__ import annotations

import logging

from aegis.domain.events import (
    BookingCancelled,
    BookingCompleted,
    BookingEvent,
    EVENT_TYPES,
    PaymentCaptured,
    PaymentCaptureFailed,
)
from aegis.infrastructure.events.publishers import InMemoryEventPublisher
from aegis.metrics import BOOKING_EVENTS, BOOKINGS_CANCELLED, CAPTURED_AMOUNT, PAYMENT_OPERATIONS

logger = logging.getLogger(__name__)

# Reasons with their own label value; any other free-text reason is counted as "other".
KNOWN_CANCEL_REASONS = frozenset(
    {"customer_requested", "guard_no_show", "no_guard_available", "payment_declined"}
)


def _count_event(event: BookingEvent) -> None:
    BOOKING_EVENTS.labels(event_type=event.event_type).inc()


def _handle_cancelled(event: BookingCancelled) -> None:
    reason = event.reason if event.reason in KNOWN_CANCEL_REASONS else "other"
    BOOKINGS_CANCELLED.labels(reason=reason, previous_status=event.previous_status).inc()
    logger.debug("Recorded cancellation metrics for booking %s", event.booking_id)


def _handle_completed(event: BookingCompleted) -> None:
    logger.debug(
        "Booking %s completed after %s hours, final amount %s",
        event.booking_id,
        event.actual_hours,
        event.final_amount,
    )


def _handle_captured(event: PaymentCaptured) -> None:
    CAPTURED_AMOUNT.labels(currency=event.amount.currency).inc(float(event.amount.amount))


def _handle_capture_failed(event: PaymentCaptureFailed) -> None:
    PAYMENT_OPERATIONS.labels(operation="capture", outcome="needs_reconciliation").inc()


def register(publisher: InMemoryEventPublisher) -> None:
    """Register all metrics handlers with ``publisher``.

    Called once during bootstrap.
    """
    for event_type in EVENT_TYPES:
        publisher.register_handler(event_type, _count_event)

    publisher.register_handler(BookingCancelled.event_type, _handle_cancelled)
    publisher.register_handler(BookingCompleted.event_type, _handle_completed)
    publisher.register_handler(PaymentCaptured.event_type, _handle_captured)
    publisher.register_handler(PaymentCaptureFailed.event_type, _handle_capture_failed)

    logger.info("Monitoring event handlers registered")


__all__ = [
    "register",
]
