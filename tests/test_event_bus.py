from __future__ import annotations

import pytest

from crypto_signals.events.bus import EventBus, EventType


@pytest.mark.asyncio
async def test_failing_handler_does_not_block_others():
    bus = EventBus()
    received = []

    def broken(event):
        raise RuntimeError("boom")

    async def recorder(event):
        received.append(event)

    bus.subscribe(EventType.SIGNAL_GENERATED, broken)
    bus.subscribe(EventType.SIGNAL_GENERATED, recorder)
    event = await bus.publish(EventType.SIGNAL_GENERATED, {"pair": "BTC/USDT"}, source="test")

    assert received == [event]
    assert event.type == "signal.generated"
    assert event.payload == {"pair": "BTC/USDT"}
    metrics = bus.metrics()
    assert metrics.total_published == 1
    assert metrics.total_handled == 1
    assert metrics.error_count == 1
    assert metrics.events_by_type == {"signal.generated": 1}
    assert metrics.last_event_at == event.timestamp


@pytest.mark.asyncio
async def test_publish_without_handlers_is_counted():
    bus = EventBus()
    await bus.publish("custom.event")
    await bus.publish("custom.event")
    metrics = bus.metrics()
    assert metrics.events_by_type == {"custom.event": 2}
    assert metrics.total_handled == 0


@pytest.mark.asyncio
async def test_subscribe_is_idempotent_and_unsubscribe_reports():
    bus = EventBus()
    calls = []
    handler = calls.append

    bus.subscribe(EventType.MONITORING_ERROR, handler)
    bus.subscribe(EventType.MONITORING_ERROR, handler)
    assert bus.metrics().handlers_by_type == {"monitoring.error": 1}

    await bus.publish(EventType.MONITORING_ERROR)
    assert len(calls) == 1

    assert bus.unsubscribe(EventType.MONITORING_ERROR, handler)
    assert not bus.unsubscribe(EventType.MONITORING_ERROR, handler)
    assert bus.metrics().handlers_by_type == {}
    await bus.publish(EventType.MONITORING_ERROR)
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_metrics_are_a_snapshot():
    bus = EventBus()
    snapshot = bus.metrics()
    await bus.publish(EventType.PAIR_DEACTIVATED)
    assert snapshot.total_published == 0
    assert bus.metrics().total_published == 1
