# SPDX-License-Identifier: Apache-2.0
"""Tests for the metrics event handlers."""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import patch

import pytest
from prometheus_client import REGISTRY

from aegis.domain.events import BookingCancelled, PaymentCaptured, PaymentCaptureFailed
from aegis.domain.value_objects import Money
from aegis.infrastructure.events import InMemoryEventPublisher
from aegis.infrastructure.monitoring.event_handlers import register

NOW = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)


def sample(name: str, labels: dict) -> float:
    return REGISTRY.get_sample_value(name, labels) or 0.0


@pytest.fixture
def publisher():
    publisher = InMemoryEventPublisher()
    register(publisher)
    return publisher


@pytest.mark.asyncio
async def test_cancellation_is_counted(publisher):
    labels = {"reason": "guard_no_show", "previous_status": "accepted"}
    before = sample("aegis_bookings_cancelled_total", labels)
    events_before = sample("aegis_booking_events_total", {"event_type": "BookingCancelled"})

    await publisher.publish(BookingCancelled("B1", "guard_no_show", "accepted", "G1", NOW))

    assert sample("aegis_bookings_cancelled_total", labels) == before + 1
    assert (
        sample("aegis_booking_events_total", {"event_type": "BookingCancelled"})
        == events_before + 1
    )


@pytest.mark.asyncio
async def test_free_text_cancel_reason_is_counted_as_other(publisher):
    labels = {"reason": "other", "previous_status": "requested"}
    before = sample("aegis_bookings_cancelled_total", labels)

    await publisher.publish(BookingCancelled("B1", "changed my mind, sorry!", "requested", None, NOW))

    assert sample("aegis_bookings_cancelled_total", labels) == before + 1
    assert (
        sample(
            "aegis_bookings_cancelled_total",
            {"reason": "changed my mind, sorry!", "previous_status": "requested"},
        )
        == 0.0
    )


@pytest.mark.asyncio
async def test_captured_amount_is_summed(publisher):
    before = sample("aegis_captured_amount_total", {"currency": "USD"})

    await publisher.publish(PaymentCaptured("B1", Money.of("45.00"), NOW))

    assert sample("aegis_captured_amount_total", {"currency": "USD"}) == before + 45.0


@pytest.mark.asyncio
async def test_capture_failure_marks_reconciliation(publisher):
    labels = {"operation": "capture", "outcome": "needs_reconciliation"}
    before = sample("aegis_payment_operations_total", labels)

    await publisher.publish(PaymentCaptureFailed("B1", Money.of("45.00"), "processor_error", NOW))

    assert sample("aegis_payment_operations_total", labels) == before + 1


def test_register_logs():
    with patch("aegis.infrastructure.monitoring.event_handlers.logger") as mock_logger:
        register(InMemoryEventPublisher())

    mock_logger.info.assert_called_with("Monitoring event handlers registered")
