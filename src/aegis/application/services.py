# SPDX-License-Identifier: Apache-2.0
"""Booking lifecycle application service.

``BookingLifecycleService`` is the only writer of booking state. Every
operation follows the same shape:

1. take the booking's lock, load it and check the transition is legal;
2. release the lock for any call to the locator or the payment gateway;
3. take the lock again, re-check the state and commit.

Committing saves the booking together with its new events, then publishes
those events. Locks are per booking (``booking:<id>``) and per guard
(``guard:<id>``); when both are needed the booking lock is taken first.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from datetime import datetime
from typing import Awaitable, Callable, List, Optional
from uuid import uuid4

from aegis.config.policy import DispatchPolicy
from aegis.domain.aggregates import Booking, BookingStatus
from aegis.domain.entities import GuardProfile, LocationUpdate, Payment, PaymentStatus
from aegis.domain.errors import (
    ActorNotAssigned,
    BookingNotFound,
    CaptureFailed,
    Conflict,
    DependencyTimeout,
    GuardUnavailable,
    InvalidTransition,
    NoGuardAvailable,
    PaymentDeclined,
)
from aegis.domain.events import BookingEvent, IEventLog, IEventPublisher
from aegis.domain.gateways import IGuardLocator
from aegis.domain.repositories import (
    ConcurrencyError,
    IBookingRepository,
    IGuardRepository,
    ILocationRepository,
)
from aegis.domain.services import GuardCandidate, utc_now
from aegis.domain.value_objects import GeoLocation, Money, ServiceLocation
from aegis.metrics import ACCEPT_CONFLICTS, LOCATION_UPDATES, MATCH_ATTEMPTS

from .broadcast import BroadcastRelay
from .commands import (
    AcceptBookingCommand,
    CancelBookingCommand,
    CompleteJobCommand,
    RecordLocationCommand,
    RegisterGuardCommand,
    RequestBookingCommand,
    StartJobCommand,
)
from .locking import KeyedLocks
from .payments import PaymentCoordinator
from .retry import call_with_retry

logger = logging.getLogger(__name__)

NO_GUARD_AVAILABLE = "no_guard_available"
PAYMENT_DECLINED = "payment_declined"
GUARD_NO_SHOW = "guard_no_show"


class BookingLifecycleService:
    """Application service driving bookings from request to completion."""

    def __init__(
        self,
        bookings: IBookingRepository,
        guards: IGuardRepository,
        locations: ILocationRepository,
        event_log: IEventLog,
        locator: IGuardLocator,
        payments: PaymentCoordinator,
        broadcaster: BroadcastRelay,
        event_publisher: IEventPublisher,
        policy: DispatchPolicy,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._bookings = bookings
        self._guards = guards
        self._locations = locations
        self._event_log = event_log
        self._locator = locator
        self._payments = payments
        self._broadcaster = broadcaster
        self._event_publisher = event_publisher
        self._policy = policy
        self._clock = clock
        self._sleep = sleep
        self._locks = KeyedLocks()

    @property
    def policy(self) -> DispatchPolicy:
        return self._policy

    # ------------------------------------------------------------------
    # Lifecycle operations
    # ------------------------------------------------------------------

    async def request_booking(self, command: RequestBookingCommand) -> Booking:
        """Create a booking in ``requested`` status.

        Raises:
            ValueError: If the request is malformed
            Conflict: If a booking with the given id already exists
        """
        if command.hourly_rate is not None:
            self._check_currency(command.hourly_rate)

        location = ServiceLocation.at(command.latitude, command.longitude, command.address)
        booking_id = command.booking_id or str(uuid4())

        async with self._booking_lock(booking_id):
            if await self._bookings.get(booking_id) is not None:
                raise Conflict(booking_id, "Booking already exists")

            booking = Booking.request(
                booking_id=booking_id,
                customer_id=command.customer_id,
                location=location,
                scheduled_start=command.scheduled_start,
                scheduled_end=command.scheduled_end,
                estimated_hours=command.estimated_hours,
                at=self._clock(),
                quoted_rate=command.hourly_rate,
            )
            await self._commit(booking)

        await self._broadcaster.status_changed(booking)
        return booking

    async def match_guard(self, booking_id: str) -> Booking:
        """Find a guard for a requested booking and hold the estimated total.

        Returns the booking unchanged if it is already matched.

        Raises:
            NoGuardAvailable: If nobody was found; ``cancelled`` tells whether the
                booking was cancelled because the match policy is exhausted
            PaymentDeclined: If the hold failed and the match was reverted
            InvalidTransition: If the booking is past matching
        """
        async with self._booking_lock(booking_id):
            booking = await self._load(booking_id)
            if booking.status == BookingStatus.MATCHED:
                return booking
            if booking.status != BookingStatus.REQUESTED:
                raise InvalidTransition(booking_id, booking.status.value, "match")
            expired = self._match_window_expired(booking)
            if expired:
                await self._cancel_locked(booking, NO_GUARD_AVAILABLE)
                MATCH_ATTEMPTS.labels(outcome="expired").inc()
            point = booking.location.point

        if expired:
            await self._broadcaster.status_changed(booking)
            raise NoGuardAvailable(booking_id, cancelled=True)

        candidates = await self._find_candidates(point)

        async with self._booking_lock(booking_id):
            booking = await self._load(booking_id)
            if booking.status != BookingStatus.REQUESTED:
                # Matched or cancelled by a concurrent caller.
                return booking

            if not candidates:
                MATCH_ATTEMPTS.labels(outcome="no_guard").inc()
                booking.record_failed_match_attempt(self._clock())
                if not self._match_exhausted(booking):
                    await self._commit(booking)
                    logger.info(
                        "No guard available for booking %s (attempt %d)",
                        booking_id,
                        booking.match_attempts,
                    )
                    raise NoGuardAvailable(booking_id)
                await self._cancel_locked(booking, NO_GUARD_AVAILABLE)
            else:
                offered = candidates[: self._policy.max_candidates]
                nearest = offered[0]
                rate = booking.quoted_rate if booking.quoted_rate is not None else nearest.hourly_rate
                self._check_currency(rate)
                booking.match(
                    guard_id=nearest.guard_id,
                    hourly_rate=rate,
                    distance_km=nearest.distance_km,
                    eta_minutes=nearest.eta_minutes,
                    offered_guard_ids=[c.guard_id for c in offered],
                    at=self._clock(),
                )
                await self._commit(booking)
                amount = booking.estimated_total

        if booking.status == BookingStatus.CANCELLED:
            await self._broadcaster.status_changed(booking)
            raise NoGuardAvailable(booking_id, cancelled=True)

        try:
            payment = await self._payments.authorize(booking_id, amount)
        except PaymentDeclined as e:
            MATCH_ATTEMPTS.labels(outcome="declined").inc()
            booking = await self._revert_match(booking_id, e.reason)
            await self._broadcaster.status_changed(booking)
            cancelled = booking.status == BookingStatus.CANCELLED
            if cancelled:
                await self._release_hold(booking_id)
            raise PaymentDeclined(booking_id, e.reason, cancelled=cancelled) from e

        release_hold = False
        async with self._booking_lock(booking_id):
            booking = await self._load(booking_id)
            if booking.status == BookingStatus.MATCHED and booking.payment_reference is None:
                booking.record_authorization(payment.reference, self._clock())
                await self._commit(booking)
                MATCH_ATTEMPTS.labels(outcome="matched").inc()
            elif booking.status == BookingStatus.CANCELLED:
                release_hold = True

        if release_hold:
            await self._release_hold(booking_id)
            return booking

        await self._broadcaster.status_changed(booking)
        return booking

    async def dispatch_until_matched(self, booking_id: str) -> Booking:
        """Retry ``match_guard`` with exponential backoff.

        Returns once the booking is matched. Gives up by raising the last
        ``NoGuardAvailable`` / ``PaymentDeclined`` once the booking has been
        cancelled for exhausting the match policy.
        """
        attempt = 0
        while True:
            try:
                return await self.match_guard(booking_id)
            except (NoGuardAvailable, PaymentDeclined) as e:
                if e.cancelled:
                    raise
                attempt += 1
                delay = self._policy.match_retry_delay(attempt)
                logger.info(
                    "Booking %s not matched (%s), retrying in %.1fs", booking_id, e.code, delay
                )
                await self._sleep(delay)

    async def accept_booking(self, command: AcceptBookingCommand) -> Booking:
        """Commit an offered guard to a matched booking.

        Exactly one acceptance wins. Repeating the winning guard's acceptance
        returns the booking unchanged.

        Raises:
            Conflict: If another guard already accepted
            GuardUnavailable: If the guard is off duty or holds another booking
            GuardNotOffered: If the booking was not offered to the guard
            InvalidTransition: If the booking is not matched or its hold is pending
        """
        booking_id, guard_id = command.booking_id, command.guard_id

        async with self._booking_lock(booking_id):
            booking = await self._load(booking_id)
            if booking.holds_guard or booking.status == BookingStatus.COMPLETED:
                if booking.guard_id == guard_id:
                    return booking
                ACCEPT_CONFLICTS.inc()
                raise Conflict(booking_id)

            async with self._guard_lock(guard_id):
                if not await self.is_guard_available(guard_id):
                    raise GuardUnavailable(booking_id, guard_id)

                booking.accept(guard_id, self._clock())
                try:
                    await self._commit(booking)
                except ConcurrencyError as e:
                    ACCEPT_CONFLICTS.inc()
                    raise Conflict(booking_id) from e

        await self._broadcaster.status_changed(booking)
        return booking

    async def start_job(self, command: StartJobCommand) -> Booking:
        """Start an accepted job.

        Raises:
            ActorNotAssigned: If the caller is not the assigned guard
            InvalidTransition: If the booking is not accepted or it is too early
        """
        async with self._booking_lock(command.booking_id):
            booking = await self._load(command.booking_id)
            if booking.status == BookingStatus.IN_PROGRESS and booking.guard_id == command.guard_id:
                return booking

            booking.start(command.guard_id, self._clock(), self._policy.start_grace)
            await self._commit(booking)

        await self._broadcaster.status_changed(booking)
        return booking

    async def complete_job(self, command: CompleteJobCommand) -> Booking:
        """Complete a job and capture the final amount.

        The booking is completed even if the capture fails; the payment is
        then left ``failed`` at the capture stage for reconciliation. Completing a completed
        booking returns it without capturing again.

        Raises:
            ActorNotAssigned: If the caller is neither the guard nor the customer
            InvalidTransition: If the job is not in progress
        """
        async with self._booking_lock(command.booking_id):
            booking = await self._load(command.booking_id)
            if booking.status == BookingStatus.COMPLETED:
                return booking
            if booking.status == BookingStatus.IN_PROGRESS and not booking.is_party(command.actor_id):
                raise ActorNotAssigned(command.booking_id, command.actor_id)

            final_amount = booking.complete(self._clock())
            await self._commit(booking)

        await self._broadcaster.status_changed(booking)
        return await self._capture(command.booking_id, final_amount)

    async def retry_capture(self, booking_id: str) -> Payment:
        """Re-attempt a failed capture for a completed booking.

        Raises:
            CaptureFailed: If the capture fails again
            InvalidTransition: If the booking is not completed
        """
        booking = await self._load(booking_id)
        if booking.status != BookingStatus.COMPLETED:
            raise InvalidTransition(booking_id, booking.status.value, "capture")

        payment = await self._payments.get(booking_id)
        if payment is not None and payment.status == PaymentStatus.CAPTURED:
            return payment

        await self._capture(booking_id, booking.final_amount)
        payment = await self._payments.get(booking_id)
        if payment.status != PaymentStatus.CAPTURED:
            raise CaptureFailed(booking_id, payment.failure_reason or "capture failed")
        return payment

    async def cancel_booking(self, command: CancelBookingCommand) -> Booking:
        """Cancel a booking that has not finished.

        Cancelling a cancelled booking returns it without releasing again.

        Raises:
            InvalidTransition: If the booking is completed
        """
        async with self._booking_lock(command.booking_id):
            booking = await self._load(command.booking_id)
            if booking.status == BookingStatus.CANCELLED:
                return booking
            await self._cancel_locked(booking, command.reason)

        await self._release_hold(command.booking_id)
        await self._broadcaster.status_changed(booking)
        return booking

    async def record_location(self, command: RecordLocationCommand) -> Optional[LocationUpdate]:
        """Store and broadcast a guard's position for an in-progress booking.

        Updates for a booking that is not in progress, or from a guard other
        than the assigned one, are dropped and ``None`` is returned.

        Raises:
            BookingNotFound: If the booking does not exist
            ValueError: If the coordinates are invalid
        """
        location = GeoLocation(command.latitude, command.longitude)

        async with self._booking_lock(command.booking_id):
            booking = await self._load(command.booking_id)
            if booking.status != BookingStatus.IN_PROGRESS or booking.guard_id != command.guard_id:
                LOCATION_UPDATES.labels(outcome="dropped").inc()
                logger.warning(
                    "Dropped location update for booking %s from %s (status %s)",
                    booking.booking_id,
                    command.guard_id,
                    booking.status.value,
                )
                return None

            now = self._clock()
            stored = await self._locations.append(
                LocationUpdate(
                    booking_id=booking.booking_id,
                    guard_id=command.guard_id,
                    location=location,
                    recorded_at=command.recorded_at or now,
                    accuracy_m=command.accuracy_m,
                )
            )
            async with self._guard_lock(command.guard_id):
                guard = await self._guards.get(command.guard_id)
                if guard is not None:
                    guard.update_location(location, now)
                    await self._guards.save(guard)

            # Published under the lock so subscribers see arrival order.
            await self._broadcaster.location_update(stored)

        LOCATION_UPDATES.labels(outcome="stored").inc()
        return stored

    async def expire_stale_bookings(self) -> List[Booking]:
        """Cancel bookings that waited too long.

        Requested or matched bookings older than the match wait window are
        cancelled with ``no_guard_available``; accepted bookings not started
        within the start wait window after their scheduled start are cancelled
        with ``guard_no_show``.
        """
        now = self._clock()
        expired: List[tuple] = []
        for status in (BookingStatus.REQUESTED, BookingStatus.MATCHED, BookingStatus.ACCEPTED):
            for booking in await self._bookings.find_by_status(status):
                try:
                    reason = self._expiry_reason(booking, now)
                except TypeError:
                    logger.exception("Cannot check expiry of booking %s", booking.booking_id)
                    continue
                if reason is not None:
                    expired.append((booking.booking_id, status, reason))

        cancelled = []
        for booking_id, expected_status, reason in expired:
            try:
                booking = await self._expire_one(booking_id, expected_status, reason)
            except Exception:
                # Each booking expires independently of the others
                logger.exception("Failed to expire booking %s", booking_id)
                continue
            if booking is not None:
                cancelled.append(booking)

        if cancelled:
            logger.info("Expired %d stale bookings", len(cancelled))
        return cancelled

    def _expiry_reason(self, booking: Booking, now: datetime) -> Optional[str]:
        if booking.status == BookingStatus.ACCEPTED:
            if now >= booking.scheduled_start + self._policy.start_wait_window:
                return GUARD_NO_SHOW
            return None
        if now - booking.created_at >= self._policy.match_wait_window:
            return NO_GUARD_AVAILABLE
        return None

    async def _expire_one(
        self, booking_id: str, expected_status: BookingStatus, reason: str
    ) -> Optional[Booking]:
        async with self._booking_lock(booking_id):
            booking = await self._load(booking_id)
            if booking.status != expected_status:
                return None
            await self._cancel_locked(booking, reason)
        await self._release_hold(booking_id)
        await self._broadcaster.status_changed(booking)
        return booking

    # ------------------------------------------------------------------
    # Guard profiles
    # ------------------------------------------------------------------

    async def register_guard(self, command: RegisterGuardCommand) -> GuardProfile:
        self._check_currency(command.hourly_rate)
        now = self._clock()
        async with self._guard_lock(command.guard_id):
            existing = await self._guards.get(command.guard_id)
            guard = GuardProfile(
                guard_id=command.guard_id,
                hourly_rate=command.hourly_rate,
                rating=command.rating,
                on_duty=command.on_duty,
                last_location=existing.last_location if existing else None,
                last_seen_at=existing.last_seen_at if existing else None,
            )
            if existing is not None:
                guard._mark_persisted(existing.version)
            if command.latitude is not None:
                guard.update_location(GeoLocation(command.latitude, command.longitude), now)
            await self._guards.save(guard)
        logger.info("Registered guard %s (on duty: %s)", guard.guard_id, guard.on_duty)
        return guard

    async def set_guard_duty(self, guard_id: str, on_duty: bool) -> GuardProfile:
        async with self._guard_lock(guard_id):
            guard = await self._load_guard(guard_id)
            if on_duty:
                guard.go_on_duty()
            else:
                guard.go_off_duty()
            await self._guards.save(guard)
        return guard

    async def update_guard_location(self, guard_id: str, latitude: float, longitude: float) -> GuardProfile:
        """Record where an idle guard is, for matching."""
        location = GeoLocation(latitude, longitude)
        async with self._guard_lock(guard_id):
            guard = await self._load_guard(guard_id)
            guard.update_location(location, self._clock())
            await self._guards.save(guard)
        return guard

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_booking(self, booking_id: str) -> Booking:
        return await self._load(booking_id)

    async def event_trail(self, booking_id: str) -> List[BookingEvent]:
        """The booking's committed events in transition order."""
        return await self._event_log.events_for(booking_id)

    async def location_history(self, booking_id: str) -> List[LocationUpdate]:
        return await self._locations.history(booking_id)

    async def latest_location(self, booking_id: str) -> Optional[LocationUpdate]:
        return await self._locations.latest(booking_id)

    async def get_payment(self, booking_id: str) -> Optional[Payment]:
        return await self._payments.get(booking_id)

    async def payments_needing_reconciliation(self) -> List[Payment]:
        return await self._payments.needing_reconciliation()

    async def is_guard_available(self, guard_id: str) -> bool:
        """A guard is available when on duty and not committed to any booking."""
        guard = await self._guards.get(guard_id)
        if guard is None or not guard.on_duty:
            return False
        return not await self._bookings.find_active_for_guard(guard_id)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _booking_lock(self, booking_id: str) -> contextlib.AbstractAsyncContextManager:
        return self._locks.hold(f"booking:{booking_id}")

    def _guard_lock(self, guard_id: str) -> contextlib.AbstractAsyncContextManager:
        return self._locks.hold(f"guard:{guard_id}")

    async def _load(self, booking_id: str) -> Booking:
        booking = await self._bookings.get(booking_id)
        if booking is None:
            raise BookingNotFound(booking_id)
        return booking

    async def _load_guard(self, guard_id: str) -> GuardProfile:
        guard = await self._guards.get(guard_id)
        if guard is None:
            raise ValueError(f"Unknown guard: {guard_id}")
        return guard

    async def _commit(self, booking: Booking) -> List[BookingEvent]:
        """Save the booking with its events, then publish them."""
        events = booking.domain_events
        await self._bookings.save(booking)
        booking.mark_events_committed()

        for event in events:
            logger.info("Booking %s: %s", booking.booking_id, event.event_type)
        await self._event_publisher.publish_many(events)
        return events

    async def _cancel_locked(self, booking: Booking, reason: str) -> None:
        booking.cancel(reason, self._clock())
        await self._commit(booking)

    async def _find_candidates(self, point: GeoLocation) -> List[GuardCandidate]:
        try:
            return await call_with_retry(
                "guard_locator",
                "find_candidates",
                lambda: self._locator.find_candidates(point, self._policy.search_radius_km),
                timeout=self._policy.locator_timeout_seconds,
                retries=self._policy.dependency_retries,
            )
        except DependencyTimeout:
            logger.warning("Guard locator timed out; treating as no guard available")
            return []

    async def _revert_match(self, booking_id: str, reason: str) -> Booking:
        """Put a matched booking back to ``requested`` after a failed hold.

        The booking is cancelled instead once the match policy is exhausted.
        """
        async with self._booking_lock(booking_id):
            booking = await self._load(booking_id)
            if booking.status != BookingStatus.MATCHED or booking.payment_reference is not None:
                return booking

            booking.revert_match(f"{PAYMENT_DECLINED}: {reason}", self._clock())
            if self._match_exhausted(booking):
                booking.cancel(PAYMENT_DECLINED, self._clock())
            await self._commit(booking)
        return booking

    async def _capture(self, booking_id: str, amount: Money) -> Booking:
        try:
            await self._payments.capture(booking_id, amount)
        except CaptureFailed as e:
            logger.error(
                "Capture of %s failed for booking %s (%s); payment needs reconciliation",
                amount,
                booking_id,
                e.reason,
            )
            async with self._booking_lock(booking_id):
                booking = await self._load(booking_id)
                booking.record_capture_failure(amount, e.reason, self._clock())
                await self._commit(booking)
            return booking

        async with self._booking_lock(booking_id):
            booking = await self._load(booking_id)
            booking.record_capture(amount, self._clock())
            await self._commit(booking)
        return booking

    async def _release_hold(self, booking_id: str) -> None:
        try:
            await self._payments.release(booking_id)
        except DependencyTimeout:
            logger.error(
                "Could not release hold for booking %s; left for reconciliation", booking_id
            )

    def _match_window_expired(self, booking: Booking) -> bool:
        return self._clock() - booking.created_at >= self._policy.match_wait_window

    def _match_exhausted(self, booking: Booking) -> bool:
        return (
            booking.match_attempts >= self._policy.max_match_attempts
            or self._match_window_expired(booking)
        )

    def _check_currency(self, amount: Money) -> None:
        if amount.currency != self._policy.currency:
            raise ValueError(
                f"Amount currency {amount.currency} does not match policy currency {self._policy.currency}"
            )
