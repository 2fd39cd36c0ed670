# SPDX-License-Identifier: Apache-2.0
"""Booking inspection commands."""

from __future__ import annotations

import asyncio
import json
import os
from pathlib import Path
from typing import Optional

import typer

from aegis.domain.aggregates import BookingStatus
from aegis.domain.events import event_payload
from aegis.infrastructure.repositories import (
    SqliteBookingRepository,
    SqliteEventLog,
    SqliteLocationRepository,
)
from aegis.infrastructure.repositories.sqlite_domain import DEFAULT_DB_PATH

bookings_app = typer.Typer(name="bookings", help="Booking inspection commands", add_completion=False)


def _resolve_db(db: Optional[Path]) -> Path:
    path = db or Path(os.getenv("AEGIS_DB_PATH", DEFAULT_DB_PATH))
    if not path.exists():
        typer.echo(f"❌ Database not found: {path}")
        raise typer.Exit(1)
    return path


@bookings_app.command()
def summary(
    db: Optional[Path] = typer.Option(None, "--db", help="SQLite database path"),
):
    """Print booking counts per status and the size of the event log."""
    path = _resolve_db(db)

    async def _gather():
        counts = await SqliteBookingRepository(path).count_by_status()
        return counts, await SqliteEventLog(path).count()

    counts, event_count = asyncio.run(_gather())

    typer.echo(f"\n📊 Bookings in {path}")
    typer.echo("=" * 40)
    for status in BookingStatus:
        typer.echo(f"{status.value:<16} {counts.get(status, 0):>6}")
    typer.echo("-" * 40)
    typer.echo(f"{'total':<16} {sum(counts.values()):>6}")
    typer.echo(f"{'events':<16} {event_count:>6}")


@bookings_app.command()
def events(
    booking_id: str = typer.Argument(..., help="Booking ID"),
    db: Optional[Path] = typer.Option(None, "--db", help="SQLite database path"),
):
    """Print the event trail of a booking in transition order.

    Examples:
        aegis bookings events 3f2c... --db data/db/aegis.db
    """
    trail = asyncio.run(SqliteEventLog(_resolve_db(db)).events_for(booking_id))
    if not trail:
        typer.echo(f"📭 No events for booking {booking_id}")
        return

    typer.echo(f"\n📜 Events for booking {booking_id} ({len(trail)})")
    typer.echo("=" * 80)
    for event in trail:
        typer.echo(
            f"{event.occurred_at.isoformat():<34} {event.event_type:<24} "
            f"{json.dumps(event_payload(event), sort_keys=True)}"
        )


@bookings_app.command()
def locations(
    booking_id: str = typer.Argument(..., help="Booking ID"),
    db: Optional[Path] = typer.Option(None, "--db", help="SQLite database path"),
    last: int = typer.Option(0, "--last", "-n", help="Only show the last N updates"),
):
    """Print the location history of a booking in arrival order."""
    history = asyncio.run(SqliteLocationRepository(_resolve_db(db)).history(booking_id))
    if last > 0:
        history = history[-last:]
    if not history:
        typer.echo(f"📭 No location updates for booking {booking_id}")
        return

    typer.echo(f"{'Seq':<6} {'Guard':<12} {'Latitude':>12} {'Longitude':>12}  Recorded")
    typer.echo("-" * 80)
    for update in history:
        typer.echo(
            f"{update.sequence:<6} {update.guard_id:<12} {update.location.latitude:>12.6f} "
            f"{update.location.longitude:>12.6f}  {update.recorded_at.isoformat()}"
        )
