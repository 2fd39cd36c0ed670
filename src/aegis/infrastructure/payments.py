# SPDX-License-Identifier: Apache-2.0
"""Sandbox payment gateway.

Behaves like a card processor's test mode: holds, captures and voids are
tracked in memory and every operation is idempotent under its key. Failure
switches let the simulator and the tests script declines, capture failures,
transient outages and slow responses.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple
from uuid import uuid4

from aegis.domain.errors import CaptureFailed, GatewayUnavailable, PaymentDeclined
from aegis.domain.gateways import IPaymentGateway
from aegis.domain.value_objects import Money

logger = logging.getLogger(__name__)


@dataclass
class Hold:
    reference: str
    amount: Money
    captured: Optional[Money] = None
    voided: bool = False


@dataclass
class GatewayCall:
    operation: str
    idempotency_key: str
    amount: Optional[Money] = None


@dataclass
class _FailurePlan:
    declines: List[str] = field(default_factory=list)
    capture_failures: List[str] = field(default_factory=list)
    transient: int = 0
    late_answers: List[float] = field(default_factory=list)


class InMemoryPaymentGateway(IPaymentGateway):
    """In-memory card processor."""

    def __init__(self, latency_seconds: float = 0.0):
        self._latency_seconds = latency_seconds
        self._holds: Dict[str, Hold] = {}
        self._results: Dict[Tuple[str, str], object] = {}
        self._plan = _FailurePlan()
        self.calls: List[GatewayCall] = []

    # Failure switches

    def decline_next(self, count: int = 1, reason: str = "card_declined") -> None:
        """Decline the next ``count`` authorizations."""
        self._plan.declines.extend([reason] * count)

    def fail_next_capture(self, count: int = 1, reason: str = "processor_error") -> None:
        self._plan.capture_failures.extend([reason] * count)

    def fail_transiently(self, count: int = 1) -> None:
        """Make the next ``count`` calls of any kind raise ``GatewayUnavailable``."""
        self._plan.transient += count

    def set_latency(self, seconds: float) -> None:
        self._latency_seconds = seconds

    def answer_late(self, seconds: float, count: int = 1) -> None:
        """Do the work of the next ``count`` calls, then take ``seconds`` to answer."""
        self._plan.late_answers.extend([seconds] * count)

    # Inspection

    def hold(self, reference: str) -> Optional[Hold]:
        return self._holds.get(reference)

    def operations(self, operation: str) -> List[GatewayCall]:
        return [c for c in self.calls if c.operation == operation]

    def open_holds(self) -> List[Hold]:
        """Holds neither captured nor voided."""
        return [h for h in self._holds.values() if h.captured is None and not h.voided]

    # IPaymentGateway

    async def authorize(self, idempotency_key: str, amount: Money) -> str:
        delay = await self._enter("authorize", idempotency_key, amount)
        key = ("authorize", idempotency_key)
        if key not in self._results:
            if self._plan.declines:
                raise PaymentDeclined(idempotency_key, self._plan.declines.pop(0))

            reference = f"auth_{uuid4().hex[:16]}"
            self._holds[reference] = Hold(reference=reference, amount=amount)
            self._results[key] = reference
            logger.debug("Sandbox hold %s for %s", reference, amount)
        await self._answer(delay)
        return self._results[key]

    async def capture(self, idempotency_key: str, reference: str, amount: Money) -> Money:
        delay = await self._enter("capture", idempotency_key, amount)
        key = ("capture", idempotency_key)
        if key in self._results:
            await self._answer(delay)
            return self._results[key]

        hold = self._holds.get(reference)
        if hold is None or hold.voided:
            raise CaptureFailed(idempotency_key, f"no open hold {reference}")
        if amount > hold.amount:
            raise CaptureFailed(idempotency_key, "amount exceeds hold")
        if self._plan.capture_failures:
            raise CaptureFailed(idempotency_key, self._plan.capture_failures.pop(0))

        hold.captured = amount
        self._results[key] = amount
        await self._answer(delay)
        return amount

    async def void(self, idempotency_key: str, reference: str) -> None:
        delay = await self._enter("void", idempotency_key)
        hold = self._holds.get(reference)
        if hold is not None and hold.captured is None:
            hold.voided = True
        await self._answer(delay)

    async def _enter(self, operation: str, idempotency_key: str, amount: Optional[Money] = None) -> float:
        """Record the call and apply the failure plan; returns the delay before answering."""
        self.calls.append(GatewayCall(operation, idempotency_key, amount))
        if self._latency_seconds:
            await asyncio.sleep(self._latency_seconds)
        if self._plan.transient:
            self._plan.transient -= 1
            raise GatewayUnavailable(f"Payment processor unavailable during {operation}")
        return self._plan.late_answers.pop(0) if self._plan.late_answers else 0.0

    @staticmethod
    async def _answer(delay: float) -> None:
        if delay:
            await asyncio.sleep(delay)
