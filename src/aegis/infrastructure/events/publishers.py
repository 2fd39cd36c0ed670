# SPDX-License-Identifier: Apache-2.0
"""Event publisher implementations for Aegis infrastructure.

This module contains concrete implementations of event publishers
that handle the technical aspects of event distribution and delivery.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Dict, List

from aegis.domain.events import BookingEvent, IEventPublisher

logger = logging.getLogger(__name__)

EventHandler = Callable[[BookingEvent], object]


class InMemoryEventPublisher(IEventPublisher):
    """
    In-process event publisher.

    Delivers committed events to handlers registered per event type, in
    publish order. A failing handler is logged and does not stop delivery to
    the remaining handlers.
    """

    def __init__(self):
        self._events: List[BookingEvent] = []
        self._handlers: Dict[str, List[EventHandler]] = {}

    async def publish(self, event: BookingEvent) -> None:
        """Publish a single domain event."""
        self._events.append(event)

        for handler in self._handlers.get(event.event_type, []) + self._handlers.get("*", []):
            try:
                if asyncio.iscoroutinefunction(handler):
                    await handler(event)
                else:
                    handler(event)
            except Exception:
                logger.exception(
                    "Event handler error for %s on booking %s", event.event_type, event.booking_id
                )

    async def publish_many(self, events: List[BookingEvent]) -> None:
        """Publish multiple domain events."""
        for event in events:
            await self.publish(event)

    def register_handler(self, event_type: str, handler: EventHandler) -> None:
        """Register an event handler for an event type, or ``"*"`` for all types."""
        self._handlers.setdefault(event_type, []).append(handler)

    def get_published_events(self) -> List[BookingEvent]:
        """Get all published events (useful for testing)."""
        return self._events.copy()

    def clear_events(self) -> None:
        """Clear all stored events (useful for testing)."""
        self._events.clear()
