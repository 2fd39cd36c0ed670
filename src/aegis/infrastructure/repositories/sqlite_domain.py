# SPDX-License-Identifier: Apache-2.0
"""SQLite implementations of the domain repositories.

All repositories share one database file. Money is stored as text in the
form ``"<amount> <currency>"`` and timestamps as ISO 8601 strings so values
round-trip exactly.
"""

from __future__ import annotations

import json
import logging
from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union
from uuid import UUID

import aiosqlite

from aegis.domain.aggregates import GUARD_HOLDING_STATUSES, Booking, BookingStatus
from aegis.domain.entities import (
    GuardProfile,
    LocationUpdate,
    Payment,
    PaymentFailureStage,
    PaymentStatus,
)
from aegis.domain.events import BookingEvent, IEventLog, event_from_record, event_payload
from aegis.domain.repositories import (
    ConcurrencyError,
    IBookingRepository,
    IGuardRepository,
    ILocationRepository,
    IPaymentRepository,
    RepositoryError,
)
from aegis.domain.value_objects import GeoLocation, Money, ServiceLocation
from aegis.infrastructure.sqlite_async_mixin import SqliteAsyncMixin
from aegis.migrations import apply_pending

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = "data/db/aegis.db"

PathLike = Union[str, Path]


def _money_to_db(value: Optional[Money]) -> Optional[str]:
    return str(value) if value is not None else None


def _money_from_db(value: Optional[str]) -> Optional[Money]:
    if value is None:
        return None
    amount, currency = value.split()
    return Money.of(amount, currency)


def _dt_to_db(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _dt_from_db(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value is not None else None


async def _insert_events(db: aiosqlite.Connection, events: Iterable[BookingEvent]) -> None:
    await db.executemany(
        """
        INSERT INTO domain_events (event_id, booking_id, event_type, occurred_at, payload)
        VALUES (?, ?, ?, ?, ?)
        """,
        [
            (
                str(event.event_id),
                event.booking_id,
                event.event_type,
                event.occurred_at.isoformat(),
                json.dumps(event_payload(event)),
            )
            for event in events
        ],
    )


def _row_to_event(row) -> BookingEvent:
    return event_from_record(
        event_type=row["event_type"],
        booking_id=row["booking_id"],
        occurred_at=datetime.fromisoformat(row["occurred_at"]),
        event_id=UUID(row["event_id"]),
        payload=json.loads(row["payload"]),
    )


class _SqliteRepository(SqliteAsyncMixin):
    """Common setup: resolve the database path and apply migrations."""

    def __init__(self, db_path: Optional[PathLike] = None):
        self._db_path = Path(db_path or DEFAULT_DB_PATH)
        self.db_path = str(self._db_path)  # For SqliteAsyncMixin
        apply_pending(self._db_path)


class SqliteEventLog(_SqliteRepository, IEventLog):
    """Event log backed by the ``domain_events`` table."""

    async def events_for(self, booking_id: str) -> List[BookingEvent]:
        try:
            async with self._conn() as db:
                cursor = await db.execute(
                    "SELECT * FROM domain_events WHERE booking_id = ? ORDER BY position",
                    (booking_id,),
                )
                rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            raise RepositoryError(f"Failed to read events for booking {booking_id}: {e}") from e
        return [_row_to_event(row) for row in rows]

    async def count(self) -> int:
        try:
            async with self._conn() as db:
                cursor = await db.execute("SELECT COUNT(*) FROM domain_events")
                row = await cursor.fetchone()
        except aiosqlite.Error as e:
            raise RepositoryError(f"Failed to count events: {e}") from e
        return row[0]


class SqliteBookingRepository(_SqliteRepository, IBookingRepository):
    """SQLite implementation of the booking repository.

    The booking row and the booking's uncommitted events are written in a
    single transaction.
    """

    async def get(self, booking_id: str) -> Optional[Booking]:
        try:
            async with self._conn() as db:
                cursor = await db.execute(
                    "SELECT * FROM bookings WHERE booking_id = ?", (booking_id,)
                )
                row = await cursor.fetchone()
        except aiosqlite.Error as e:
            raise RepositoryError(f"Failed to get booking {booking_id}: {e}") from e
        return self._row_to_booking(row) if row is not None else None

    async def save(self, booking: Booking) -> None:
        try:
            async with self._transaction() as db:
                new_version = await self._swap_version(
                    db, "bookings", "booking_id", booking.booking_id, booking.version
                )
                await db.execute(
                    """
                    INSERT OR REPLACE INTO bookings
                    (booking_id, customer_id, guard_id, status, latitude, longitude, address,
                     scheduled_start, scheduled_end, estimated_hours, quoted_rate, hourly_rate,
                     estimated_total, offered_guard_ids, payment_reference, actual_start,
                     actual_end, final_amount, cancellation_reason, match_attempts,
                     created_at, updated_at, version)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        booking.booking_id,
                        booking.customer_id,
                        booking.guard_id,
                        booking.status.value,
                        booking.location.latitude,
                        booking.location.longitude,
                        booking.location.address,
                        _dt_to_db(booking.scheduled_start),
                        _dt_to_db(booking.scheduled_end),
                        str(booking.estimated_hours),
                        _money_to_db(booking.quoted_rate),
                        _money_to_db(booking.hourly_rate),
                        _money_to_db(booking.estimated_total),
                        json.dumps(list(booking.offered_guard_ids)),
                        booking.payment_reference,
                        _dt_to_db(booking.actual_start),
                        _dt_to_db(booking.actual_end),
                        _money_to_db(booking.final_amount),
                        booking.cancellation_reason,
                        booking.match_attempts,
                        _dt_to_db(booking.created_at),
                        _dt_to_db(booking.updated_at),
                        new_version,
                    ),
                )
                await _insert_events(db, booking.domain_events)
        except ConcurrencyError:
            raise
        except aiosqlite.Error as e:
            raise RepositoryError(f"Failed to save booking {booking.booking_id}: {e}") from e

        booking._mark_persisted(new_version)
        logger.debug("Saved booking %s at version %d", booking.booking_id, new_version)

    async def find_by_status(self, status: BookingStatus) -> List[Booking]:
        return await self._select(
            "SELECT * FROM bookings WHERE status = ? ORDER BY created_at, booking_id",
            (status.value,),
        )

    async def find_active_for_guard(self, guard_id: str) -> List[Booking]:
        statuses = [s.value for s in GUARD_HOLDING_STATUSES]
        placeholders = ",".join("?" * len(statuses))
        return await self._select(
            f"SELECT * FROM bookings WHERE guard_id = ? AND status IN ({placeholders})",
            (guard_id, *statuses),
        )

    async def count_by_status(self) -> Dict[BookingStatus, int]:
        try:
            async with self._conn() as db:
                cursor = await db.execute(
                    "SELECT status, COUNT(*) FROM bookings GROUP BY status"
                )
                rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            raise RepositoryError(f"Failed to count bookings: {e}") from e
        return {BookingStatus(row[0]): row[1] for row in rows}

    async def _select(self, sql: str, params: tuple) -> List[Booking]:
        try:
            async with self._conn() as db:
                cursor = await db.execute(sql, params)
                rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            raise RepositoryError(f"Failed to query bookings: {e}") from e
        return [self._row_to_booking(row) for row in rows]

    @staticmethod
    def _row_to_booking(row) -> Booking:
        booking = Booking(
            booking_id=row["booking_id"],
            customer_id=row["customer_id"],
            location=ServiceLocation.at(row["latitude"], row["longitude"], row["address"]),
            scheduled_start=_dt_from_db(row["scheduled_start"]),
            scheduled_end=_dt_from_db(row["scheduled_end"]),
            estimated_hours=Decimal(row["estimated_hours"]),
            created_at=_dt_from_db(row["created_at"]),
            quoted_rate=_money_from_db(row["quoted_rate"]),
            status=BookingStatus(row["status"]),
            guard_id=row["guard_id"],
            offered_guard_ids=json.loads(row["offered_guard_ids"]),
            hourly_rate=_money_from_db(row["hourly_rate"]),
            estimated_total=_money_from_db(row["estimated_total"]),
            payment_reference=row["payment_reference"],
            actual_start=_dt_from_db(row["actual_start"]),
            actual_end=_dt_from_db(row["actual_end"]),
            final_amount=_money_from_db(row["final_amount"]),
            cancellation_reason=row["cancellation_reason"],
            match_attempts=row["match_attempts"],
            updated_at=_dt_from_db(row["updated_at"]),
        )
        booking._mark_persisted(row["version"])
        return booking


class SqlitePaymentRepository(_SqliteRepository, IPaymentRepository):
    """SQLite implementation of the payment repository."""

    async def get(self, booking_id: str) -> Optional[Payment]:
        try:
            async with self._conn() as db:
                cursor = await db.execute(
                    "SELECT * FROM payments WHERE booking_id = ?", (booking_id,)
                )
                row = await cursor.fetchone()
        except aiosqlite.Error as e:
            raise RepositoryError(f"Failed to get payment for booking {booking_id}: {e}") from e
        return self._row_to_payment(row) if row is not None else None

    async def save(self, payment: Payment) -> None:
        try:
            async with self._transaction() as db:
                new_version = await self._swap_version(
                    db, "payments", "booking_id", payment.booking_id, payment.version
                )
                await db.execute(
                    """
                    INSERT OR REPLACE INTO payments
                    (booking_id, status, amount_authorized, amount_captured, platform_fee,
                     guard_payout, platform_fee_percent, reference, failure_stage,
                     failure_reason, authorization_attempts, created_at, updated_at, version)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        payment.booking_id,
                        payment.status.value,
                        _money_to_db(payment.amount_authorized),
                        _money_to_db(payment.amount_captured),
                        _money_to_db(payment.platform_fee),
                        _money_to_db(payment.guard_payout),
                        str(payment.platform_fee_percent),
                        payment.reference,
                        payment.failure_stage.value if payment.failure_stage else None,
                        payment.failure_reason,
                        payment.authorization_attempts,
                        _dt_to_db(payment.created_at),
                        _dt_to_db(payment.updated_at),
                        new_version,
                    ),
                )
        except ConcurrencyError:
            raise
        except aiosqlite.Error as e:
            raise RepositoryError(f"Failed to save payment for booking {payment.booking_id}: {e}") from e

        payment._mark_persisted(new_version)

    async def find_by_status(self, status: PaymentStatus) -> List[Payment]:
        try:
            async with self._conn() as db:
                cursor = await db.execute(
                    "SELECT * FROM payments WHERE status = ? ORDER BY booking_id", (status.value,)
                )
                rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            raise RepositoryError(f"Failed to query payments by status {status.value}: {e}") from e
        return [self._row_to_payment(row) for row in rows]

    @staticmethod
    def _row_to_payment(row) -> Payment:
        payment = Payment(
            booking_id=row["booking_id"],
            amount_authorized=_money_from_db(row["amount_authorized"]),
            platform_fee_percent=Decimal(row["platform_fee_percent"]),
            status=PaymentStatus(row["status"]),
            created_at=_dt_from_db(row["created_at"]),
        )

        # Restore state
        payment._reference = row["reference"]
        payment._amount_captured = _money_from_db(row["amount_captured"])
        payment._platform_fee = _money_from_db(row["platform_fee"])
        payment._guard_payout = _money_from_db(row["guard_payout"])
        payment._failure_stage = (
            PaymentFailureStage(row["failure_stage"]) if row["failure_stage"] else None
        )
        payment._failure_reason = row["failure_reason"]
        payment._authorization_attempts = row["authorization_attempts"]
        payment._updated_at = _dt_from_db(row["updated_at"])
        payment._mark_persisted(row["version"])
        return payment


class SqliteGuardRepository(_SqliteRepository, IGuardRepository):
    """SQLite implementation of the guard profile repository (last writer wins)."""

    async def get(self, guard_id: str) -> Optional[GuardProfile]:
        try:
            async with self._conn() as db:
                cursor = await db.execute(
                    "SELECT * FROM guard_profiles WHERE guard_id = ?", (guard_id,)
                )
                row = await cursor.fetchone()
        except aiosqlite.Error as e:
            raise RepositoryError(f"Failed to get guard {guard_id}: {e}") from e
        return self._row_to_guard(row) if row is not None else None

    async def save(self, guard: GuardProfile) -> None:
        location = guard.last_location
        try:
            async with self._conn() as db:
                await db.execute(
                    """
                    INSERT OR REPLACE INTO guard_profiles
                    (guard_id, hourly_rate, rating, on_duty, last_latitude, last_longitude,
                     last_seen_at, version)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        guard.guard_id,
                        _money_to_db(guard.hourly_rate),
                        guard.rating,
                        int(guard.on_duty),
                        location.latitude if location else None,
                        location.longitude if location else None,
                        _dt_to_db(guard.last_seen_at),
                        guard.version + 1,
                    ),
                )
                await db.commit()
        except aiosqlite.Error as e:
            raise RepositoryError(f"Failed to save guard {guard.guard_id}: {e}") from e
        guard._mark_persisted(guard.version + 1)

    async def list_on_duty(self) -> List[GuardProfile]:
        try:
            async with self._conn() as db:
                cursor = await db.execute(
                    "SELECT * FROM guard_profiles WHERE on_duty = 1 ORDER BY guard_id"
                )
                rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            raise RepositoryError(f"Failed to list on-duty guards: {e}") from e
        return [self._row_to_guard(row) for row in rows]

    @staticmethod
    def _row_to_guard(row) -> GuardProfile:
        location = None
        if row["last_latitude"] is not None and row["last_longitude"] is not None:
            location = GeoLocation(row["last_latitude"], row["last_longitude"])
        guard = GuardProfile(
            guard_id=row["guard_id"],
            hourly_rate=_money_from_db(row["hourly_rate"]),
            rating=row["rating"],
            on_duty=bool(row["on_duty"]),
            last_location=location,
            last_seen_at=_dt_from_db(row["last_seen_at"]),
        )
        guard._mark_persisted(row["version"])
        return guard


class SqliteLocationRepository(_SqliteRepository, ILocationRepository):
    """Append-only location trail; ``sequence`` is the table's autoincrement key."""

    async def append(self, update: LocationUpdate) -> LocationUpdate:
        try:
            async with self._conn() as db:
                cursor = await db.execute(
                    """
                    INSERT INTO location_updates
                    (booking_id, guard_id, latitude, longitude, accuracy_m, recorded_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        update.booking_id,
                        update.guard_id,
                        update.location.latitude,
                        update.location.longitude,
                        update.accuracy_m,
                        update.recorded_at.isoformat(),
                    ),
                )
                sequence = cursor.lastrowid
                await db.commit()
        except aiosqlite.Error as e:
            raise RepositoryError(
                f"Failed to store location update for booking {update.booking_id}: {e}"
            ) from e

        return replace(update, sequence=sequence)

    async def history(self, booking_id: str) -> List[LocationUpdate]:
        return await self._select(
            "SELECT * FROM location_updates WHERE booking_id = ? ORDER BY sequence", booking_id
        )

    async def latest(self, booking_id: str) -> Optional[LocationUpdate]:
        rows = await self._select(
            "SELECT * FROM location_updates WHERE booking_id = ? ORDER BY sequence DESC LIMIT 1",
            booking_id,
        )
        return rows[0] if rows else None

    async def _select(self, sql: str, booking_id: str) -> List[LocationUpdate]:
        try:
            async with self._conn() as db:
                cursor = await db.execute(sql, (booking_id,))
                rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            raise RepositoryError(
                f"Failed to read location updates for booking {booking_id}: {e}"
            ) from e
        return [
            LocationUpdate(
                booking_id=row["booking_id"],
                guard_id=row["guard_id"],
                location=GeoLocation(row["latitude"], row["longitude"]),
                recorded_at=datetime.fromisoformat(row["recorded_at"]),
                accuracy_m=row["accuracy_m"],
                sequence=row["sequence"],
            )
            for row in rows
        ]
