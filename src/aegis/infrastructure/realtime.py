# SPDX-License-Identifier: Apache-2.0
"""In-process realtime broadcaster.

Fans messages out to ``asyncio.Queue`` subscribers per channel. Stands in
for a hosted pub/sub service in the simulator and in tests.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List

from aegis.domain.errors import GatewayUnavailable
from aegis.domain.gateways import IRealtimeBroadcaster

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RealtimeMessage:
    channel: str
    event_type: str
    payload: Dict[str, Any]


class InMemoryBroadcaster(IRealtimeBroadcaster):
    """Channel fan-out over bounded queues.

    A full subscriber queue drops the message for that subscriber only.
    """

    def __init__(self, queue_size: int = 100):
        self._queue_size = queue_size
        self._subscribers: Dict[str, List[asyncio.Queue]] = {}
        self._fail_next = 0
        self._latency_seconds = 0.0
        self.published: List[RealtimeMessage] = []

    def subscribe(self, channel: str) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_size)
        self._subscribers.setdefault(channel, []).append(queue)
        return queue

    def unsubscribe(self, channel: str, queue: asyncio.Queue) -> None:
        queues = self._subscribers.get(channel, [])
        if queue in queues:
            queues.remove(queue)

    def fail_next(self, count: int = 1) -> None:
        self._fail_next += count

    def set_latency(self, seconds: float) -> None:
        self._latency_seconds = seconds

    def messages(self, channel: str) -> List[RealtimeMessage]:
        return [m for m in self.published if m.channel == channel]

    async def publish(self, channel: str, event_type: str, payload: Dict[str, Any]) -> None:
        if self._latency_seconds:
            await asyncio.sleep(self._latency_seconds)
        if self._fail_next:
            self._fail_next -= 1
            raise GatewayUnavailable(f"Realtime service unavailable for {channel}")

        message = RealtimeMessage(channel, event_type, dict(payload))
        self.published.append(message)
        for queue in self._subscribers.get(channel, []):
            try:
                queue.put_nowait(message)
            except asyncio.QueueFull:
                logger.warning("Subscriber queue full on %s, dropping %s", channel, event_type)
