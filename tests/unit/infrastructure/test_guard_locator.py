# SPDX-License-Identifier: Apache-2.0
"""Unit tests for RepositoryGuardLocator."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from aegis.domain.aggregates import Booking, BookingStatus
from aegis.domain.entities import GuardProfile
from aegis.domain.services import GuardRankingService
from aegis.domain.value_objects import GeoLocation, Money, ServiceLocation
from aegis.infrastructure.locator import RepositoryGuardLocator
from aegis.infrastructure.repositories import InMemoryBookingRepository, InMemoryGuardRepository

NOW = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)
SITE = GeoLocation(40.7128, -74.0060)


async def add_guard(repo, guard_id, km_north, seen_at=NOW):
    guard = GuardProfile(guard_id, Money.of("25"), on_duty=True)
    guard.update_location(GeoLocation(SITE.latitude + km_north / 111.195, SITE.longitude), seen_at)
    await repo.save(guard)


@pytest.fixture
def guards():
    return InMemoryGuardRepository()


@pytest.fixture
def bookings():
    return InMemoryBookingRepository()


@pytest.fixture
def locator(guards, bookings):
    return RepositoryGuardLocator(
        guards, bookings, GuardRankingService(), staleness=timedelta(minutes=5), clock=lambda: NOW
    )


class TestRepositoryGuardLocator:
    @pytest.mark.asyncio
    async def test_ranks_by_distance(self, locator, guards):
        await add_guard(guards, "G2", 3.0)
        await add_guard(guards, "G1", 1.2)

        candidates = await locator.find_candidates(SITE, 50.0)

        assert [(c.guard_id, c.distance_km) for c in candidates] == [("G1", 1.2), ("G2", 3.0)]

    @pytest.mark.asyncio
    async def test_excludes_guards_holding_a_booking(self, locator, guards, bookings):
        await add_guard(guards, "G1", 1.2)
        await add_guard(guards, "G2", 3.0)
        await bookings.save(
            Booking(
                booking_id="B0",
                customer_id="C9",
                location=ServiceLocation.at(0, 0, "1 Main Street"),
                scheduled_start=NOW,
                scheduled_end=NOW + timedelta(hours=1),
                estimated_hours=Decimal("1"),
                created_at=NOW,
                status=BookingStatus.IN_PROGRESS,
                guard_id="G1",
            )
        )

        candidates = await locator.find_candidates(SITE, 50.0)

        assert [c.guard_id for c in candidates] == ["G2"]

    @pytest.mark.asyncio
    async def test_excludes_stale_and_distant_guards(self, locator, guards):
        await add_guard(guards, "stale", 1.0, seen_at=NOW - timedelta(minutes=10))
        await add_guard(guards, "far", 20.0)

        assert await locator.find_candidates(SITE, 10.0) == []
