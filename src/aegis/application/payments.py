# SPDX-License-Identifier: Apache-2.0
"""Payment coordinator.

Sits between the lifecycle service and the payment gateway. Every operation
is keyed by booking id, serialized per booking, and idempotent: calling it
again after it succeeded returns the stored payment without touching the
gateway, and the gateway call itself carries an idempotency key so a retry
after a timeout cannot move money twice.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, List, Optional

from aegis.config.policy import DispatchPolicy
from aegis.domain.entities import GATEWAY_TIMEOUT, Payment, PaymentFailureStage, PaymentStatus
from aegis.domain.errors import (
    CaptureExceedsAuthorization,
    CaptureFailed,
    DependencyTimeout,
    PaymentDeclined,
    PaymentStateError,
)
from aegis.domain.gateways import IPaymentGateway
from aegis.domain.repositories import IPaymentRepository
from aegis.domain.services import utc_now
from aegis.domain.value_objects import Money
from aegis.metrics import PAYMENT_OPERATIONS

from .locking import KeyedLocks
from .retry import call_with_retry

logger = logging.getLogger(__name__)


class PaymentCoordinator:
    """Authorize, capture and release the payment behind a booking."""

    def __init__(
        self,
        gateway: IPaymentGateway,
        payments: IPaymentRepository,
        policy: DispatchPolicy,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._gateway = gateway
        self._payments = payments
        self._policy = policy
        self._clock = clock
        self._locks = KeyedLocks()

    async def get(self, booking_id: str) -> Optional[Payment]:
        return await self._payments.get(booking_id)

    async def authorize(self, booking_id: str, amount: Money) -> Payment:
        """Hold ``amount`` for the booking.

        An existing hold (or a captured payment) is returned unchanged. A
        payment whose last authorization failed is re-attempted.

        Raises:
            PaymentDeclined: If the gateway refuses, or does not answer in time
            PaymentStateError: If the payment was already released or refunded
        """
        async with self._locks.hold(booking_id):
            now = self._clock()
            payment = await self._payments.get(booking_id)
            if payment is None:
                payment = Payment(
                    booking_id,
                    amount,
                    platform_fee_percent=self._policy.platform_fee_percent,
                    created_at=now,
                )
            elif payment.status in (PaymentStatus.AUTHORIZED, PaymentStatus.CAPTURED):
                return payment
            elif payment.can_reauthorize:
                if payment.authorization_outcome_unknown:
                    try:
                        await self._settle_unknown_authorization(payment)
                    except DependencyTimeout as e:
                        PAYMENT_OPERATIONS.labels(operation="authorize", outcome="timeout").inc()
                        raise PaymentDeclined(booking_id, GATEWAY_TIMEOUT) from e
                payment.restart_authorization(amount, now)
            else:
                raise PaymentStateError(
                    f"Cannot authorize payment for booking {booking_id} in status {payment.status.value}"
                )

            key = self._authorize_key(payment)
            try:
                reference = await self._call(
                    "authorize", lambda: self._gateway.authorize(key, amount)
                )
            except PaymentDeclined as e:
                await self._record_failure(payment, PaymentFailureStage.AUTHORIZATION, e.reason)
                PAYMENT_OPERATIONS.labels(operation="authorize", outcome="declined").inc()
                logger.warning("Authorization declined for booking %s: %s", booking_id, e.reason)
                raise PaymentDeclined(booking_id, e.reason) from e
            except DependencyTimeout as e:
                await self._record_failure(payment, PaymentFailureStage.AUTHORIZATION, GATEWAY_TIMEOUT)
                PAYMENT_OPERATIONS.labels(operation="authorize", outcome="timeout").inc()
                logger.warning("Authorization timed out for booking %s", booking_id)
                raise PaymentDeclined(booking_id, GATEWAY_TIMEOUT) from e

            payment.authorize(reference, self._clock())
            await self._payments.save(payment)
            PAYMENT_OPERATIONS.labels(operation="authorize", outcome="success").inc()
            logger.info("Authorized %s for booking %s (%s)", amount, booking_id, reference)
            return payment

    async def capture(self, booking_id: str, amount: Money) -> Payment:
        """Capture ``amount`` against the booking's hold.

        Capturing an already captured payment returns it unchanged.

        Raises:
            CaptureExceedsAuthorization: If ``amount`` is larger than the hold
            CaptureFailed: If the gateway refuses, or does not answer in time
            PaymentStateError: If there is no capturable payment
        """
        async with self._locks.hold(booking_id):
            payment = await self._payments.get(booking_id)
            if payment is None:
                raise PaymentStateError(f"No payment for booking {booking_id}")
            if payment.status == PaymentStatus.CAPTURED:
                return payment
            if amount > payment.amount_authorized:
                raise CaptureExceedsAuthorization(
                    f"Capture of {amount} exceeds authorized {payment.amount_authorized} "
                    f"for booking {booking_id}"
                )
            if not payment.can_capture:
                raise PaymentStateError(
                    f"Cannot capture payment for booking {booking_id} in status {payment.status.value}"
                )

            key = f"{booking_id}:capture"
            try:
                captured = await self._call(
                    "capture", lambda: self._gateway.capture(key, payment.reference, amount)
                )
            except CaptureFailed as e:
                await self._record_failure(payment, PaymentFailureStage.CAPTURE, e.reason)
                PAYMENT_OPERATIONS.labels(operation="capture", outcome="failed").inc()
                raise CaptureFailed(booking_id, e.reason) from e
            except DependencyTimeout as e:
                await self._record_failure(payment, PaymentFailureStage.CAPTURE, GATEWAY_TIMEOUT)
                PAYMENT_OPERATIONS.labels(operation="capture", outcome="timeout").inc()
                raise CaptureFailed(booking_id, GATEWAY_TIMEOUT) from e

            payment.capture(captured, self._clock())
            await self._payments.save(payment)
            PAYMENT_OPERATIONS.labels(operation="capture", outcome="success").inc()
            logger.info(
                "Captured %s for booking %s (fee %s, payout %s)",
                captured,
                booking_id,
                payment.platform_fee,
                payment.guard_payout,
            )
            return payment

    async def release(self, booking_id: str) -> Optional[Payment]:
        """Void an outstanding hold.

        No-op when there is no payment or it is already captured, released,
        refunded or failed. An authorization that timed out may still have
        placed a hold, so it is settled with the gateway first.

        Raises:
            DependencyTimeout: If the gateway does not answer in time
        """
        async with self._locks.hold(booking_id):
            payment = await self._payments.get(booking_id)
            if payment is None or not payment.can_release:
                return payment

            if payment.reference is not None:
                key = f"{booking_id}:void"
                await self._call("void", lambda: self._gateway.void(key, payment.reference))
            elif payment.authorization_outcome_unknown:
                await self._settle_unknown_authorization(payment)

            payment.release(self._clock())
            await self._payments.save(payment)
            PAYMENT_OPERATIONS.labels(operation="release", outcome="success").inc()
            logger.info("Released hold for booking %s", booking_id)
            return payment

    async def needing_reconciliation(self) -> List[Payment]:
        """Payments whose capture failed and has not been retried successfully."""
        failed = await self._payments.find_by_status(PaymentStatus.FAILED)
        return [p for p in failed if p.needs_reconciliation]

    async def _settle_unknown_authorization(self, payment: Payment) -> None:
        """Void the hold a timed-out authorization may have placed.

        Replaying the attempt's idempotency key returns the hold if the
        gateway made one. A decline on replay means there is nothing to void.

        Raises:
            DependencyTimeout: If the gateway still does not answer
        """
        key = self._authorize_key(payment)
        try:
            reference = await self._call(
                "authorize", lambda: self._gateway.authorize(key, payment.amount_authorized)
            )
        except PaymentDeclined:
            logger.info("No hold behind timed-out authorization %s", key)
            return
        await self._call("void", lambda: self._gateway.void(f"{key}:void", reference))
        PAYMENT_OPERATIONS.labels(operation="settle", outcome="voided").inc()
        logger.warning("Voided hold %s left by timed-out authorization %s", reference, key)

    @staticmethod
    def _authorize_key(payment: Payment) -> str:
        return f"{payment.booking_id}:authorize:{payment.authorization_attempts}"

    async def _record_failure(self, payment: Payment, stage: PaymentFailureStage, reason: str) -> None:
        payment.fail(stage, reason, self._clock())
        await self._payments.save(payment)

    async def _call(self, operation: str, call):
        return await call_with_retry(
            "payment_gateway",
            operation,
            call,
            timeout=self._policy.payment_timeout_seconds,
            retries=self._policy.dependency_retries,
        )
