# SPDX-License-Identifier: Apache-2.0
"""Best-effort realtime publishing for booking channels."""

from __future__ import annotations

import logging
from typing import Any, Dict

from aegis.config.policy import DispatchPolicy
from aegis.domain.aggregates import Booking
from aegis.domain.entities import LocationUpdate
from aegis.domain.errors import DependencyTimeout
from aegis.domain.gateways import IRealtimeBroadcaster
from aegis.metrics import BROADCAST_FAILURES

from .retry import call_with_retry

logger = logging.getLogger(__name__)

STATUS_CHANGED = "status-changed"
LOCATION_UPDATE = "location-update"


def channel_for(booking_id: str) -> str:
    """Name of the realtime channel for a booking."""
    return f"bookings:{booking_id}"


def status_payload(booking: Booking) -> Dict[str, Any]:
    return {
        "booking_id": booking.booking_id,
        "status": booking.status.value,
        "guard_id": booking.guard_id,
        "updated_at": booking.updated_at.isoformat(),
    }


def location_payload(update: LocationUpdate) -> Dict[str, Any]:
    return {
        "booking_id": update.booking_id,
        "guard_id": update.guard_id,
        "latitude": update.location.latitude,
        "longitude": update.location.longitude,
        "accuracy_m": update.accuracy_m,
        "recorded_at": update.recorded_at.isoformat(),
        "sequence": update.sequence,
    }


class BroadcastRelay:
    """Publishes to booking channels without ever failing the caller.

    Each publish is bounded by the policy's broadcast timeout with one retry;
    failures are logged and counted, then dropped.
    """

    def __init__(self, broadcaster: IRealtimeBroadcaster, policy: DispatchPolicy):
        self._broadcaster = broadcaster
        self._policy = policy

    async def publish(self, booking_id: str, event_type: str, payload: Dict[str, Any]) -> bool:
        """Publish and report whether it went through."""
        channel = channel_for(booking_id)
        try:
            await call_with_retry(
                "broadcaster",
                "publish",
                lambda: self._broadcaster.publish(channel, event_type, payload),
                timeout=self._policy.broadcast_timeout_seconds,
                retries=self._policy.dependency_retries,
            )
        except DependencyTimeout:
            BROADCAST_FAILURES.labels(event_type=event_type).inc()
            logger.warning("Dropped %s on %s: broadcaster unavailable", event_type, channel)
            return False
        except Exception:
            BROADCAST_FAILURES.labels(event_type=event_type).inc()
            logger.warning("Dropped %s on %s", event_type, channel, exc_info=True)
            return False
        return True

    async def status_changed(self, booking: Booking) -> bool:
        return await self.publish(booking.booking_id, STATUS_CHANGED, status_payload(booking))

    async def location_update(self, update: LocationUpdate) -> bool:
        return await self.publish(update.booking_id, LOCATION_UPDATE, location_payload(update))
