# SPDX-License-Identifier: Apache-2.0
"""Run the reference booking scenario against in-memory adapters."""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from typing import Optional

import typer

from aegis.application import (
    AcceptBookingCommand,
    CompleteJobCommand,
    RecordLocationCommand,
    RegisterGuardCommand,
    RequestBookingCommand,
    StartJobCommand,
)
from aegis.bootstrap import DispatchRuntime, build_in_memory, build_sqlite
from aegis.config import DispatchPolicy, load_policy
from aegis.domain.errors import Conflict
from aegis.domain.events import event_payload
from aegis.domain.value_objects import Money

# Kilometres per degree of latitude on a 6371 km sphere.
_KM_PER_DEGREE = 111.195


class SimulationClock:
    """A clock that only moves when told to."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


async def run_scenario(runtime: DispatchRuntime, clock: SimulationClock, hourly_rate: Money) -> str:
    """Book a guard for two hours, work 1.8 hours and return the booking id."""
    service = runtime.service
    latitude, longitude = 40.7128, -74.0060

    for guard_id, distance_km in (("G1", 1.2), ("G2", 3.0)):
        await service.register_guard(
            RegisterGuardCommand(
                guard_id=guard_id,
                hourly_rate=hourly_rate,
                on_duty=True,
                latitude=latitude + distance_km / _KM_PER_DEGREE,
                longitude=longitude,
            )
        )

    booking = await service.request_booking(
        RequestBookingCommand(
            customer_id="C1",
            latitude=latitude,
            longitude=longitude,
            address="1 Centre Street, New York",
            scheduled_start=clock.now,
            scheduled_end=clock.now + timedelta(hours=2),
            estimated_hours=Decimal("2"),
        )
    )
    booking_id = booking.booking_id
    typer.echo(f"📝 Requested booking {booking_id}")

    booking = await service.match_guard(booking_id)
    typer.echo(f"🔎 Matched {booking.guard_id}, holding {booking.estimated_total}")

    await service.accept_booking(AcceptBookingCommand(booking_id, "G1"))
    typer.echo("✅ G1 accepted")
    try:
        await service.accept_booking(AcceptBookingCommand(booking_id, "G2"))
    except Conflict:
        typer.echo("⚔️  G2 lost the race")

    await service.start_job(StartJobCommand(booking_id, "G1"))
    for _ in range(3):
        clock.advance(minutes=36)
        await service.record_location(
            RecordLocationCommand(booking_id, "G1", latitude + 0.0005, longitude + 0.0005)
        )

    booking = await service.complete_job(CompleteJobCommand(booking_id, "G1"))
    payment = await service.get_payment(booking_id)
    typer.echo(
        f"🏁 Completed after {booking.actual_hours} h, captured {payment.amount_captured} "
        f"(fee {payment.platform_fee}, payout {payment.guard_payout})"
    )
    return booking_id


def simulate(
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Policy YAML file"),
    db: Optional[Path] = typer.Option(
        None, "--db", help="Persist to this SQLite database instead of memory"
    ),
    rate: str = typer.Option("25", "--rate", help="Guard hourly rate"),
):
    """Run the reference booking scenario and print its event trail.

    Examples:
        aegis simulate
        aegis simulate --db data/db/aegis.db
    """
    policy = load_policy(config) if config else DispatchPolicy()
    clock = SimulationClock(datetime.now(timezone.utc).replace(microsecond=0))
    runtime = (
        build_sqlite(db, policy, clock=clock) if db else build_in_memory(policy, clock=clock)
    )

    async def _run() -> None:
        booking_id = await run_scenario(runtime, clock, Money.of(rate, policy.currency))
        trail = await runtime.service.event_trail(booking_id)

        typer.echo(f"\n📜 Event trail ({len(trail)} events)")
        typer.echo("=" * 80)
        for event in trail:
            typer.echo(f"{event.event_type:<24} {json.dumps(event_payload(event), sort_keys=True)}")

    asyncio.run(_run())
