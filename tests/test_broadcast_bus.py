from __future__ import annotations

import asyncio

import pytest

from wash_drafts.events.bus import BroadcastBus, BusEvent, SubscriptionClosed


def _event(index: int) -> BusEvent:
    return BusEvent(type="content-updated", key="tab", payload={"index": index})


async def test_events_reach_every_subscriber_in_order() -> None:
    bus = BroadcastBus()
    first = bus.subscribe()
    second = bus.subscribe()

    for index in range(3):
        assert bus.publish(_event(index)) == 2

    assert [(await first.get()).payload["index"] for _ in range(3)] == [0, 1, 2]
    assert [(await second.get()).payload["index"] for _ in range(3)] == [0, 1, 2]


async def test_late_subscriber_gets_no_history() -> None:
    bus = BroadcastBus()
    bus.publish(_event(0))

    late = bus.subscribe()

    assert late.pending() == 0


async def test_failing_callback_is_dropped_without_affecting_others() -> None:
    bus = BroadcastBus()
    received: list[BusEvent] = []

    def broken(event: BusEvent) -> None:
        raise RuntimeError("listener gone")

    bus.subscribe(broken)
    bus.subscribe(received.append)

    assert bus.publish(_event(1)) == 1
    assert bus.subscriber_count == 1
    assert bus.publish(_event(2)) == 1
    assert [event.payload["index"] for event in received] == [1, 2]


async def test_full_queue_drops_the_slow_subscriber() -> None:
    bus = BroadcastBus(max_queue=1)
    slow = bus.subscribe()

    bus.publish(_event(1))
    assert bus.publish(_event(2)) == 0

    assert slow.closed
    assert bus.subscriber_count == 0


async def test_close_releases_a_blocked_consumer() -> None:
    bus = BroadcastBus()
    subscription = bus.subscribe()

    async def consume() -> list[BusEvent]:
        return [event async for event in subscription]

    consumer = asyncio.ensure_future(consume())
    bus.publish(_event(1))
    await asyncio.sleep(0)
    subscription.close()

    events = await asyncio.wait_for(consumer, timeout=1)
    assert [event.payload["index"] for event in events] == [1]
    assert bus.subscriber_count == 0
    with pytest.raises(SubscriptionClosed):
        await subscription.get()
