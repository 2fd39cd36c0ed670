# SPDX-License-Identifier: Apache-2.0
"""Unit tests for BroadcastRelay."""

from __future__ import annotations

import pytest
from prometheus_client import REGISTRY

from aegis.application import BroadcastRelay, channel_for
from aegis.application.broadcast import LOCATION_UPDATE, STATUS_CHANGED
from aegis.config import DispatchPolicy
from aegis.infrastructure.realtime import InMemoryBroadcaster


def failures(event_type: str) -> float:
    return (
        REGISTRY.get_sample_value("aegis_broadcast_failures_total", {"event_type": event_type})
        or 0.0
    )


@pytest.fixture
def broadcaster():
    return InMemoryBroadcaster()


@pytest.fixture
def relay(broadcaster):
    return BroadcastRelay(broadcaster, DispatchPolicy(broadcast_timeout_seconds=0.05))


class TestBroadcastRelay:
    def test_channel_name(self):
        assert channel_for("abc") == "bookings:abc"

    @pytest.mark.asyncio
    async def test_publish_reaches_subscribers(self, relay, broadcaster):
        queue = broadcaster.subscribe("bookings:B1")

        assert await relay.publish("B1", STATUS_CHANGED, {"status": "matched"})

        message = queue.get_nowait()
        assert message.event_type == STATUS_CHANGED
        assert message.payload == {"status": "matched"}

    @pytest.mark.asyncio
    async def test_single_failure_is_retried(self, relay, broadcaster):
        broadcaster.fail_next(1)
        assert await relay.publish("B1", LOCATION_UPDATE, {"sequence": 1})
        assert len(broadcaster.messages("bookings:B1")) == 1

    @pytest.mark.asyncio
    async def test_persistent_failure_is_dropped_and_counted(self, relay, broadcaster):
        before = failures(LOCATION_UPDATE)
        broadcaster.fail_next(2)

        assert not await relay.publish("B1", LOCATION_UPDATE, {"sequence": 1})

        assert broadcaster.messages("bookings:B1") == []
        assert failures(LOCATION_UPDATE) == before + 1

    @pytest.mark.asyncio
    async def test_slow_broadcaster_is_dropped(self, relay, broadcaster):
        broadcaster.set_latency(1.0)
        assert not await relay.publish("B1", STATUS_CHANGED, {"status": "accepted"})

    @pytest.mark.asyncio
    async def test_full_subscriber_queue_does_not_fail_publish(self, broadcaster):
        small = InMemoryBroadcaster(queue_size=1)
        relay = BroadcastRelay(small, DispatchPolicy())
        queue = small.subscribe("bookings:B1")

        assert await relay.publish("B1", STATUS_CHANGED, {"n": 1})
        assert await relay.publish("B1", STATUS_CHANGED, {"n": 2})

        assert queue.qsize() == 1
        assert len(small.messages("bookings:B1")) == 2
