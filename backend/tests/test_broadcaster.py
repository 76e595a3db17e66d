"""Tests for the live event hub."""

import orjson
import pytest

from app.core.broadcaster import CLOSE, QUEUE_SIZE, Broadcaster


def drain(sub) -> list:
    messages = []
    while not sub.queue.empty():
        item = sub.queue.get_nowait()
        messages.append(CLOSE if item is CLOSE else orjson.loads(item))
    return messages


@pytest.fixture
def hub():
    return Broadcaster()


@pytest.mark.anyio
async def test_register_greets_client(hub):
    sub = hub.register()
    [hello] = drain(sub)
    assert hello["type"] == "connected"
    assert hello["clientId"] == sub.id
    assert hub.subscriber_count == 1


@pytest.mark.anyio
async def test_subscribe_and_unsubscribe(hub):
    sub = hub.register()
    drain(sub)

    hub.on_message(sub.id, {"type": "subscribe", "topics": ["vehicle:BUS002", "stop:S1"]})
    hub.on_message(sub.id, {"type": "unsubscribe", "topics": ["stop:S1"]})

    assert drain(sub) == [
        {"type": "subscribed", "topics": ["stop:S1", "vehicle:BUS002"]},
        {"type": "unsubscribed", "topics": ["vehicle:BUS002"]},
    ]
    assert sub.topics == {"vehicle:BUS002"}


@pytest.mark.anyio
async def test_topic_routing(hub):
    bus1, bus2, everything = hub.register(), hub.register(), hub.register()
    hub.on_message(bus1.id, {"type": "subscribe", "topics": ["vehicle:BUS001"]})
    hub.on_message(bus2.id, {"type": "subscribe", "topics": ["vehicle:BUS002"]})
    hub.on_message(everything.id, {"type": "subscribe", "topics": ["vehicle:*"]})
    for sub in (bus1, bus2, everything):
        drain(sub)

    delivered = await hub.broadcast("position_update", {"vehicle_id": "BUS001"}, topic="vehicle:BUS001")

    assert delivered == 2
    [event] = drain(bus1)
    assert event["type"] == "position_update"
    assert event["data"] == {"vehicle_id": "BUS001"}
    assert "timestamp" in event
    assert drain(bus2) == []
    assert len(drain(everything)) == 1


@pytest.mark.anyio
async def test_broadcast_without_topic_reaches_everyone(hub):
    subs = [hub.register() for _ in range(3)]
    assert await hub.broadcast("notice", {"text": "service change"}) == 3
    assert all(drain(s)[-1]["type"] == "notice" for s in subs)


@pytest.mark.anyio
async def test_slow_client_is_disconnected(hub):
    slow, fast = hub.register(), hub.register()
    hub.on_message(slow.id, {"type": "subscribe", "topics": ["vehicle:*"]})
    hub.on_message(fast.id, {"type": "subscribe", "topics": ["vehicle:*"]})

    for i in range(QUEUE_SIZE + 5):
        await hub.broadcast("position_update", {"seq": i}, topic="vehicle:BUS001")
        drain(fast)

    assert hub.get(slow.id) is None
    assert hub.get(fast.id) is not None
    assert drain(slow)[-1] is CLOSE


@pytest.mark.anyio
async def test_control_message_errors(hub):
    sub = hub.register()
    drain(sub)

    hub.on_message(sub.id, ["subscribe"])
    hub.on_message(sub.id, {"type": "subscribe", "topics": "vehicle:BUS001"})
    hub.on_message(sub.id, {"type": "subscribe", "topics": [1, 2]})
    hub.on_message(sub.id, {"type": "dance"})

    messages = drain(sub)
    assert [m["type"] for m in messages] == ["error", "error", "error"]
    assert messages[0]["message"] == "Invalid message format"
    assert sub.topics == set()


@pytest.mark.anyio
async def test_ping(hub):
    sub = hub.register()
    drain(sub)
    hub.on_message(sub.id, {"type": "ping"})
    assert drain(sub)[0]["type"] == "pong"


@pytest.mark.anyio
async def test_unregister_is_idempotent(hub):
    sub = hub.register()
    hub.unregister(sub.id)
    hub.unregister(sub.id)
    hub.on_message(sub.id, {"type": "ping"})
    assert hub.subscriber_count == 0


@pytest.mark.anyio
async def test_close_hangs_up_everyone(hub):
    subs = [hub.register() for _ in range(2)]
    await hub.close()
    assert all(drain(s)[-1] is CLOSE for s in subs)
