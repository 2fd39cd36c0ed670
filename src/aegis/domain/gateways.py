# SPDX-License-Identifier: Apache-2.0
"""Contracts for the collaborators the dispatch core does not own.

The lifecycle service talks to the guard locator, the payment gateway and
the realtime broadcaster only through these interfaces. Concrete adapters
live in ``aegis.infrastructure``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, List

from .services import GuardCandidate
from .value_objects import GeoLocation, Money


class IGuardLocator(ABC):
    """Finds available guards near a service location.

    Implementations are pure queries. An empty list means nobody is
    available and is not an error.
    """

    @abstractmethod
    async def find_candidates(self, location: GeoLocation, radius_km: float) -> List[GuardCandidate]:
        """Return available guards within ``radius_km``, nearest first."""
        pass


class IPaymentGateway(ABC):
    """Card processor adapter.

    Every call carries an idempotency key; repeating a call with the same key
    must not move money twice.
    """

    @abstractmethod
    async def authorize(self, idempotency_key: str, amount: Money) -> str:
        """Place a hold for ``amount``.

        Returns:
            The processor's authorization reference

        Raises:
            PaymentDeclined: If the processor refuses the hold
            GatewayUnavailable: On a transient processor failure
        """
        pass

    @abstractmethod
    async def capture(self, idempotency_key: str, reference: str, amount: Money) -> Money:
        """Capture ``amount`` against an existing hold.

        Returns:
            The amount actually captured

        Raises:
            CaptureFailed: If the processor refuses the capture
            GatewayUnavailable: On a transient processor failure
        """
        pass

    @abstractmethod
    async def void(self, idempotency_key: str, reference: str) -> None:
        """Release an outstanding hold."""
        pass


class IRealtimeBroadcaster(ABC):
    """Pub/sub publish side. Delivery is best effort."""

    @abstractmethod
    async def publish(self, channel: str, event_type: str, payload: Dict[str, Any]) -> None:
        pass
