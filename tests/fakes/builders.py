# SPDX-License-Identifier: Apache-2.0
"""Builders that drive the lifecycle service into a given state."""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

from aegis.application import (
    AcceptBookingCommand,
    RegisterGuardCommand,
    RequestBookingCommand,
    StartJobCommand,
)
from aegis.domain.aggregates import Booking
from aegis.domain.value_objects import Money

SITE_LATITUDE = 40.7128
SITE_LONGITUDE = -74.0060

# Kilometres per degree of latitude on a 6371 km sphere.
KM_PER_DEGREE = 111.195


async def add_guard(service, guard_id: str, distance_km: float, rate="25", on_duty: bool = True):
    """Register a guard ``distance_km`` north of the test site."""
    return await service.register_guard(
        RegisterGuardCommand(
            guard_id=guard_id,
            hourly_rate=Money.of(rate),
            on_duty=on_duty,
            latitude=SITE_LATITUDE + distance_km / KM_PER_DEGREE,
            longitude=SITE_LONGITUDE,
        )
    )


async def request(service, clock, hours="2", booking_id=None, **overrides) -> Booking:
    """Request a booking at the test site starting now."""
    hours = Decimal(hours)
    fields = dict(
        customer_id="C1",
        latitude=SITE_LATITUDE,
        longitude=SITE_LONGITUDE,
        address="1 Centre Street, New York",
        scheduled_start=clock.now,
        scheduled_end=clock.now + timedelta(hours=float(hours)),
        estimated_hours=hours,
        booking_id=booking_id,
    )
    fields.update(overrides)
    return await service.request_booking(RequestBookingCommand(**fields))


async def matched(service, clock, **kwargs) -> Booking:
    booking = await request(service, clock, **kwargs)
    return await service.match_guard(booking.booking_id)


async def accepted(service, clock, guard_id: str = "G1", **kwargs) -> Booking:
    booking = await matched(service, clock, **kwargs)
    return await service.accept_booking(AcceptBookingCommand(booking.booking_id, guard_id))


async def in_progress(service, clock, guard_id: str = "G1", **kwargs) -> Booking:
    booking = await accepted(service, clock, guard_id=guard_id, **kwargs)
    return await service.start_job(StartJobCommand(booking.booking_id, guard_id))
