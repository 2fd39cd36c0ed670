# SPDX-License-Identifier: Apache-2.0
"""Wiring for the dispatch core.

Builds a ``BookingLifecycleService`` together with its collaborators, either
entirely in memory (tests, simulation) or on a SQLite database. The payment
gateway and realtime broadcaster are in-memory in both cases unless the
caller passes real ones in.
"""

from __future__ import annotations

__all__ = ["DispatchRuntime", "build_in_memory", "build_sqlite"]

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Awaitable, Callable, Optional, Union

from aegis.application import BookingLifecycleService, BroadcastRelay, PaymentCoordinator
from aegis.config.policy import DispatchPolicy
from aegis.domain.events import IEventLog
from aegis.domain.gateways import IPaymentGateway, IRealtimeBroadcaster
from aegis.domain.repositories import (
    IBookingRepository,
    IGuardRepository,
    ILocationRepository,
    IPaymentRepository,
)
from aegis.domain.services import GuardRankingService, utc_now
from aegis.infrastructure.events import InMemoryEventPublisher
from aegis.infrastructure.locator import RepositoryGuardLocator
from aegis.infrastructure.monitoring.event_handlers import register
from aegis.infrastructure.payments import InMemoryPaymentGateway
from aegis.infrastructure.realtime import InMemoryBroadcaster
from aegis.infrastructure.repositories import (
    InMemoryBookingRepository,
    InMemoryGuardRepository,
    InMemoryLocationRepository,
    InMemoryPaymentRepository,
    SqliteBookingRepository,
    SqliteEventLog,
    SqliteGuardRepository,
    SqliteLocationRepository,
    SqlitePaymentRepository,
)

logger = logging.getLogger(__name__)


@dataclass
class DispatchRuntime:
    """Everything a caller may need to drive or inspect the dispatch core."""

    service: BookingLifecycleService
    policy: DispatchPolicy
    bookings: IBookingRepository
    payments: IPaymentRepository
    guards: IGuardRepository
    locations: ILocationRepository
    event_log: IEventLog
    gateway: IPaymentGateway
    broadcaster: IRealtimeBroadcaster
    publisher: InMemoryEventPublisher


def build_in_memory(
    policy: Optional[DispatchPolicy] = None,
    clock: Callable[[], datetime] = utc_now,
    gateway: Optional[IPaymentGateway] = None,
    broadcaster: Optional[IRealtimeBroadcaster] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> DispatchRuntime:
    """Wire the service on in-memory repositories."""
    bookings = InMemoryBookingRepository()
    return _build(
        policy or DispatchPolicy(),
        clock,
        bookings=bookings,
        payments=InMemoryPaymentRepository(),
        guards=InMemoryGuardRepository(),
        locations=InMemoryLocationRepository(),
        event_log=bookings.event_log,
        gateway=gateway,
        broadcaster=broadcaster,
        sleep=sleep,
    )


def build_sqlite(
    db_path: Union[str, Path],
    policy: Optional[DispatchPolicy] = None,
    clock: Callable[[], datetime] = utc_now,
    gateway: Optional[IPaymentGateway] = None,
    broadcaster: Optional[IRealtimeBroadcaster] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> DispatchRuntime:
    """Wire the service on a SQLite database, applying pending migrations."""
    logger.debug("Using SQLite database at %s", db_path)
    return _build(
        policy or DispatchPolicy(),
        clock,
        bookings=SqliteBookingRepository(db_path),
        payments=SqlitePaymentRepository(db_path),
        guards=SqliteGuardRepository(db_path),
        locations=SqliteLocationRepository(db_path),
        event_log=SqliteEventLog(db_path),
        gateway=gateway,
        broadcaster=broadcaster,
        sleep=sleep,
    )


def _build(
    policy: DispatchPolicy,
    clock: Callable[[], datetime],
    *,
    bookings: IBookingRepository,
    payments: IPaymentRepository,
    guards: IGuardRepository,
    locations: ILocationRepository,
    event_log: IEventLog,
    gateway: Optional[IPaymentGateway],
    broadcaster: Optional[IRealtimeBroadcaster],
    sleep: Callable[[float], Awaitable[None]],
) -> DispatchRuntime:
    gateway = gateway or InMemoryPaymentGateway()
    broadcaster = broadcaster or InMemoryBroadcaster()

    publisher = InMemoryEventPublisher()
    register(publisher)

    locator = RepositoryGuardLocator(
        guards,
        bookings,
        GuardRankingService(policy.average_speed_kmh),
        staleness=policy.location_staleness,
        clock=clock,
    )
    service = BookingLifecycleService(
        bookings=bookings,
        guards=guards,
        locations=locations,
        event_log=event_log,
        locator=locator,
        payments=PaymentCoordinator(gateway, payments, policy, clock=clock),
        broadcaster=BroadcastRelay(broadcaster, policy),
        event_publisher=publisher,
        policy=policy,
        clock=clock,
        sleep=sleep,
    )
    return DispatchRuntime(
        service=service,
        policy=policy,
        bookings=bookings,
        payments=payments,
        guards=guards,
        locations=locations,
        event_log=event_log,
        gateway=gateway,
        broadcaster=broadcaster,
        publisher=publisher,
    )
