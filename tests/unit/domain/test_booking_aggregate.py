# SPDX-License-Identifier: Apache-2.0
"""Unit tests for the Booking aggregate."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from aegis.domain.aggregates import Booking, BookingStatus
from aegis.domain.errors import ActorNotAssigned, GuardNotOffered, InvalidTransition
from aegis.domain.events import (
    BookingAccepted,
    BookingCancelled,
    BookingCompleted,
    BookingRequested,
    GuardMatched,
    MatchReverted,
)
from aegis.domain.value_objects import Money, ServiceLocation

T0 = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)
GRACE = timedelta(minutes=15)


def create_booking(hours: str = "2", start: datetime = T0) -> Booking:
    return Booking.request(
        booking_id="B1",
        customer_id="C1",
        location=ServiceLocation.at(40.7128, -74.0060, "1 Centre Street"),
        scheduled_start=start,
        scheduled_end=start + timedelta(hours=float(hours)),
        estimated_hours=Decimal(hours),
        at=T0,
    )


def create_matched_booking(**kwargs) -> Booking:
    booking = create_booking(**kwargs)
    booking.match(
        guard_id="G1",
        hourly_rate=Money.of("25"),
        distance_km=1.2,
        eta_minutes=2.4,
        offered_guard_ids=["G1", "G2"],
        at=T0,
    )
    booking.record_authorization("auth_1", T0)
    return booking


def create_started_booking() -> Booking:
    booking = create_matched_booking()
    booking.accept("G1", T0)
    booking.start("G1", T0, GRACE)
    return booking


class TestBookingRequest:
    """Test booking creation and validation."""

    def test_request_records_event(self):
        booking = create_booking()

        assert booking.status == BookingStatus.REQUESTED
        assert booking.version == 0
        events = booking.domain_events
        assert len(events) == 1
        assert isinstance(events[0], BookingRequested)
        assert events[0].estimated_hours == Decimal("2")

    def test_non_positive_hours_rejected(self):
        with pytest.raises(ValueError, match="greater than 0"):
            create_booking(hours="0")

    def test_end_before_start_rejected(self):
        with pytest.raises(ValueError, match="after scheduled start"):
            Booking.request(
                booking_id="B1",
                customer_id="C1",
                location=ServiceLocation.at(0, 0, "1 Main Street"),
                scheduled_start=T0,
                scheduled_end=T0,
                estimated_hours=Decimal("1"),
                at=T0,
            )

    def test_naive_schedule_rejected(self):
        with pytest.raises(ValueError, match="timezone-aware"):
            create_booking(start=T0.replace(tzinfo=None))

    def test_restore_records_no_events(self):
        booking = Booking(
            booking_id="B1",
            customer_id="C1",
            location=ServiceLocation.at(0, 0, "1 Main Street"),
            scheduled_start=T0,
            scheduled_end=T0 + timedelta(hours=1),
            estimated_hours=Decimal("1"),
            created_at=T0,
            status=BookingStatus.ACCEPTED,
            guard_id="G1",
        )
        assert booking.domain_events == []
        assert booking.holds_guard


class TestBookingMatch:
    def test_match_prices_estimate(self):
        booking = create_booking()
        booking.clear_domain_events()
        booking.match("G1", Money.of("25"), 1.2, 2.4, ["G1", "G2"], T0)

        assert booking.status == BookingStatus.MATCHED
        assert booking.estimated_total == Money.of("50")
        assert booking.offered_guard_ids == ("G1", "G2")
        assert not booking.holds_guard
        event = booking.domain_events[0]
        assert isinstance(event, GuardMatched)
        assert event.distance_km == 1.2

    def test_match_requires_requested(self):
        booking = create_matched_booking()
        with pytest.raises(InvalidTransition):
            booking.match("G2", Money.of("25"), 1.0, 2.0, ["G2"], T0)

    def test_revert_match_returns_to_requested(self):
        booking = create_booking()
        booking.match("G1", Money.of("25"), 1.2, 2.4, ["G1"], T0)
        booking.clear_domain_events()

        booking.revert_match("payment_declined: card_declined", T0)

        assert booking.status == BookingStatus.REQUESTED
        assert booking.guard_id is None
        assert booking.estimated_total is None
        assert booking.match_attempts == 1
        assert isinstance(booking.domain_events[0], MatchReverted)


class TestBookingAccept:
    def test_offered_guard_accepts(self):
        booking = create_matched_booking()
        booking.clear_domain_events()

        booking.accept("G2", T0)

        assert booking.status == BookingStatus.ACCEPTED
        assert booking.guard_id == "G2"
        assert booking.holds_guard
        assert isinstance(booking.domain_events[0], BookingAccepted)

    def test_guard_not_offered(self):
        booking = create_matched_booking()
        with pytest.raises(GuardNotOffered):
            booking.accept("G9", T0)

    def test_accept_waits_for_hold(self):
        booking = create_booking()
        booking.match("G1", Money.of("25"), 1.2, 2.4, ["G1"], T0)
        with pytest.raises(InvalidTransition, match="authorization hold pending"):
            booking.accept("G1", T0)


class TestBookingStartAndComplete:
    def test_start_too_early(self):
        booking = create_matched_booking(start=T0 + timedelta(hours=1))
        booking.accept("G1", T0)
        with pytest.raises(InvalidTransition, match="too early"):
            booking.start("G1", T0, GRACE)

    def test_start_within_grace(self):
        booking = create_matched_booking(start=T0 + timedelta(minutes=10))
        booking.accept("G1", T0)
        booking.start("G1", T0, GRACE)
        assert booking.status == BookingStatus.IN_PROGRESS
        assert booking.actual_start == T0

    def test_start_by_other_guard(self):
        booking = create_matched_booking()
        booking.accept("G1", T0)
        with pytest.raises(ActorNotAssigned):
            booking.start("G2", T0, GRACE)

    def test_complete_charges_actual_hours(self):
        booking = create_started_booking()
        booking.clear_domain_events()

        final = booking.complete(T0 + timedelta(hours=1.8))

        assert final == Money.of("45.00")
        assert booking.actual_hours == Decimal("1.8000")
        assert booking.status == BookingStatus.COMPLETED
        event = booking.domain_events[0]
        assert isinstance(event, BookingCompleted)
        assert event.final_amount == Money.of("45.00")

    def test_complete_capped_at_estimate(self):
        booking = create_started_booking()
        final = booking.complete(T0 + timedelta(hours=3))
        assert final == Money.of("50.00")

    def test_complete_requires_in_progress(self):
        booking = create_matched_booking()
        with pytest.raises(InvalidTransition):
            booking.complete(T0)


class TestBookingCancel:
    @pytest.mark.parametrize("builder", [create_booking, create_matched_booking, create_started_booking])
    def test_cancel_from_non_terminal(self, builder):
        booking = builder()
        previous = booking.status
        booking.clear_domain_events()

        booking.cancel("customer_requested", T0)

        assert booking.status == BookingStatus.CANCELLED
        assert booking.cancellation_reason == "customer_requested"
        assert not booking.holds_guard
        event = booking.domain_events[0]
        assert isinstance(event, BookingCancelled)
        assert event.previous_status == previous.value

    def test_cancel_completed_is_invalid(self):
        booking = create_started_booking()
        booking.complete(T0 + timedelta(hours=1))
        with pytest.raises(InvalidTransition):
            booking.cancel("customer_requested", T0)

    def test_mark_events_committed_clears(self):
        booking = create_booking()
        booking.mark_events_committed()
        assert booking.domain_events == []

    def test_is_party(self):
        booking = create_matched_booking()
        assert booking.is_party("C1")
        assert booking.is_party("G1")
        assert not booking.is_party("G2")
