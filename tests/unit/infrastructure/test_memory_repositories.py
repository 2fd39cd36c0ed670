# SPDX-License-Identifier: Apache-2.0
"""Unit tests for in-memory repositories."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from aegis.domain.aggregates import Booking, BookingStatus
from aegis.domain.entities import GuardProfile, LocationUpdate, Payment, PaymentStatus
from aegis.domain.repositories import ConcurrencyError
from aegis.domain.value_objects import GeoLocation, Money, ServiceLocation
from aegis.infrastructure.repositories import (
    InMemoryBookingRepository,
    InMemoryGuardRepository,
    InMemoryLocationRepository,
    InMemoryPaymentRepository,
)

T0 = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)


def new_booking(booking_id: str = "B1") -> Booking:
    return Booking.request(
        booking_id=booking_id,
        customer_id="C1",
        location=ServiceLocation.at(40.7128, -74.0060, "1 Centre Street"),
        scheduled_start=T0,
        scheduled_end=T0 + timedelta(hours=2),
        estimated_hours=Decimal("2"),
        at=T0,
    )


class TestInMemoryBookingRepository:
    @pytest.mark.asyncio
    async def test_save_stores_snapshot_and_events(self):
        repo = InMemoryBookingRepository()
        booking = new_booking()

        await repo.save(booking)

        assert booking.version == 1
        stored = await repo.get("B1")
        assert stored is not booking
        assert stored.version == 1
        assert stored.domain_events == []
        assert [e.event_type for e in await repo.event_log.events_for("B1")] == ["BookingRequested"]

    @pytest.mark.asyncio
    async def test_unsaved_changes_are_not_visible(self):
        repo = InMemoryBookingRepository()
        await repo.save(new_booking())

        loaded = await repo.get("B1")
        loaded.cancel("customer_requested", T0)

        assert (await repo.get("B1")).status == BookingStatus.REQUESTED

    @pytest.mark.asyncio
    async def test_stale_write_is_rejected(self):
        repo = InMemoryBookingRepository()
        await repo.save(new_booking())
        first = await repo.get("B1")
        second = await repo.get("B1")

        first.cancel("customer_requested", T0)
        await repo.save(first)
        second.cancel("other", T0)

        with pytest.raises(ConcurrencyError):
            await repo.save(second)
        assert (await repo.get("B1")).cancellation_reason == "customer_requested"
        assert len(await repo.event_log.events_for("B1")) == 2

    @pytest.mark.asyncio
    async def test_duplicate_new_booking_is_rejected(self):
        repo = InMemoryBookingRepository()
        await repo.save(new_booking())
        with pytest.raises(ConcurrencyError):
            await repo.save(new_booking())

    @pytest.mark.asyncio
    async def test_queries(self):
        repo = InMemoryBookingRepository()
        await repo.save(new_booking("B1"))
        active = Booking(
            booking_id="B2",
            customer_id="C1",
            location=ServiceLocation.at(0, 0, "1 Main Street"),
            scheduled_start=T0,
            scheduled_end=T0 + timedelta(hours=1),
            estimated_hours=Decimal("1"),
            created_at=T0,
            status=BookingStatus.IN_PROGRESS,
            guard_id="G1",
        )
        await repo.save(active)

        assert [b.booking_id for b in await repo.find_by_status(BookingStatus.REQUESTED)] == ["B1"]
        assert [b.booking_id for b in await repo.find_active_for_guard("G1")] == ["B2"]
        assert await repo.find_active_for_guard("G2") == []
        assert await repo.count_by_status() == {
            BookingStatus.REQUESTED: 1,
            BookingStatus.IN_PROGRESS: 1,
        }


class TestInMemoryPaymentRepository:
    @pytest.mark.asyncio
    async def test_version_checked(self):
        repo = InMemoryPaymentRepository()
        payment = Payment("B1", Money.of("50"), created_at=T0)
        await repo.save(payment)

        stale = await repo.get("B1")
        payment.authorize("auth_1", T0)
        await repo.save(payment)

        stale.release(T0)
        with pytest.raises(ConcurrencyError):
            await repo.save(stale)
        assert [p.booking_id for p in await repo.find_by_status(PaymentStatus.AUTHORIZED)] == ["B1"]


class TestInMemoryGuardRepository:
    @pytest.mark.asyncio
    async def test_list_on_duty_sorted(self):
        repo = InMemoryGuardRepository()
        await repo.save(GuardProfile("G2", Money.of("25"), on_duty=True))
        await repo.save(GuardProfile("G1", Money.of("25"), on_duty=True))
        await repo.save(GuardProfile("G3", Money.of("25"), on_duty=False))

        assert [g.guard_id for g in await repo.list_on_duty()] == ["G1", "G2"]
        assert await repo.get("missing") is None


class TestInMemoryLocationRepository:
    @pytest.mark.asyncio
    async def test_append_assigns_increasing_sequence(self):
        repo = InMemoryLocationRepository()
        first = await repo.append(LocationUpdate("B1", "G1", GeoLocation(1, 1), T0))
        await repo.append(LocationUpdate("B2", "G2", GeoLocation(2, 2), T0))
        third = await repo.append(
            LocationUpdate("B1", "G1", GeoLocation(1.1, 1), T0 - timedelta(minutes=5))
        )

        assert first.sequence < third.sequence
        assert await repo.history("B1") == [first, third]
        assert await repo.latest("B1") == third
        assert await repo.latest("B9") is None
