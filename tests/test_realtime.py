"""
Tests for the realtime hub, its Redis relay and the websocket event pump.
"""

import asyncio
import gc
import json
from datetime import datetime, timedelta

import pytest
import redis
from fastapi import WebSocketDisconnect

from guardcrm.domain.notifications.router import pump_events
from guardcrm.services import realtime
from guardcrm.services.realtime import RealtimeHub, board_channel, relay_from_redis, user_channel


@pytest.fixture
def hub():
    return RealtimeHub()


@pytest.mark.unit
class TestPubSub:
    def test_channel_names(self):
        assert board_channel(3, "shifts") == "org:3:shifts"
        assert user_channel(9) == "user:9"

    def test_publish_reaches_subscribers(self, hub):
        queue = hub.subscribe("org:1:shifts")

        event = hub.publish("org:1:shifts", "shift_updated", {"id": 1})

        assert queue.get_nowait() == event
        assert event["type"] == "shift_updated"
        assert hub.recent_events("org:1:shifts") == [event]

    def test_unsubscribed_queue_gets_nothing(self, hub):
        queue = hub.subscribe("org:1:shifts")
        hub.unsubscribe("org:1:shifts", queue)

        hub.publish("org:1:shifts", "shift_updated", {})

        assert queue.empty()

    def test_full_queue_drops_event(self, hub):
        queue = hub.subscribe("c", asyncio.Queue(maxsize=1))

        hub.publish("c", "a", {})
        hub.publish("c", "b", {})

        assert queue.qsize() == 1
        assert len(hub.recent_events("c")) == 2


@pytest.mark.unit
class TestPresence:
    def test_join_announces_once(self, hub):
        now = datetime(2024, 6, 1, 12, 0)

        hub.join("board", 1, "Pat", now)
        members = hub.join("board", 1, "Pat", now + timedelta(seconds=5))

        assert [m["userId"] for m in members] == [1]
        assert [e["type"] for e in hub.recent_events("board")] == ["user_joined"]

    def test_stale_members_expire(self, hub):
        start = datetime(2024, 6, 1, 12, 0)
        hub.join("board", 1, "Pat", start)
        hub.join("board", 2, "Sam", start)
        assert hub.heartbeat("board", 2, start + timedelta(seconds=50)) is True

        members = hub.list_presence("board", start + timedelta(seconds=70))

        assert [m["userId"] for m in members] == [2]
        assert hub.recent_events("board")[-1]["payload"]["expired"] is True

    def test_leave(self, hub):
        hub.join("board", 1, "Pat")
        hub.leave("board", 1)

        assert hub.list_presence("board") == []
        assert hub.heartbeat("board", 1) is False
        assert hub.recent_events("board")[-1]["type"] == "user_left"

    def test_reset(self, hub):
        hub.join("board", 1, "Pat")
        hub.reset()

        assert hub.recent_events("board") == []


def relayed(event, origin="other-process"):
    return json.dumps({"origin": origin, "event": event})


class RecordingRedis:
    def __init__(self):
        self.published = []

    def publish(self, channel, message):
        self.published.append((channel, message))


class FakePubSub:
    def __init__(self, messages, error=None):
        self.messages = messages
        self.error = error
        self.channels = []
        self.closed = False

    async def subscribe(self, *channels):
        if self.error:
            raise self.error
        self.channels.extend(channels)

    async def listen(self):
        for message in self.messages:
            yield message

    async def aclose(self):
        self.closed = True


class FakeAsyncRedis:
    def __init__(self, pubsub):
        self._pubsub = pubsub
        self.closed = False

    def pubsub(self, **kwargs):
        return self._pubsub

    async def aclose(self):
        self.closed = True


@pytest.mark.unit
class TestRedisRelay:
    def test_publish_sends_envelope_to_relay_channel(self, hub, monkeypatch):
        client = RecordingRedis()
        monkeypatch.setattr(realtime, "get_redis_client", lambda: client)

        event = hub.publish("user:7", "notification", {"id": 3})

        channel, message = client.published[0]
        assert channel == realtime.RELAY_CHANNEL
        assert json.loads(message) == {"origin": realtime.INSTANCE_ID, "event": event}

    def test_foreign_event_is_delivered(self, hub):
        queue = hub.subscribe("user:7")
        event = {"type": "notification", "channel": "user:7", "payload": {"id": 3}, "timestamp": "t"}

        assert hub.relay_message(relayed(event)) is True
        assert queue.get_nowait() == event
        assert hub.recent_events("user:7") == [event]

    def test_own_event_is_not_delivered_twice(self, hub):
        queue = hub.subscribe("user:7")
        event = {"type": "notification", "channel": "user:7", "payload": {}}

        assert hub.relay_message(relayed(event, origin=realtime.INSTANCE_ID)) is False
        assert queue.empty()

    def test_malformed_messages_are_ignored(self, hub):
        assert hub.relay_message("not json") is False
        assert hub.relay_message(None) is False
        assert hub.relay_message(json.dumps(["origin", "event"])) is False
        assert hub.relay_message(json.dumps({"origin": "x"})) is False
        assert hub.relay_message(json.dumps({"origin": "x", "event": "user:7"})) is False
        assert hub.relay_message(json.dumps({"origin": "x", "event": {"type": "ping"}})) is False

    def test_listener_feeds_hub(self, hub, monkeypatch):
        queue = hub.subscribe("org:1:shifts")
        event = {"type": "shift_updated", "channel": "org:1:shifts", "payload": {"id": 5}}
        pubsub = FakePubSub(
            [
                {"type": "subscribe", "data": 1},
                {"type": "message", "data": relayed(event)},
            ]
        )
        client = FakeAsyncRedis(pubsub)
        monkeypatch.setattr(realtime.aioredis, "from_url", lambda url, **kwargs: client)

        asyncio.run(relay_from_redis(hub, "redis://relay.test"))

        assert pubsub.channels == [realtime.RELAY_CHANNEL]
        assert queue.get_nowait() == event
        assert pubsub.closed and client.closed

    def test_listener_reconnects_after_connection_error(self, hub, monkeypatch):
        event = {"type": "shift_updated", "channel": "org:1:shifts", "payload": {}}
        broken = FakeAsyncRedis(FakePubSub([], error=redis.ConnectionError("connection reset")))
        healthy = FakeAsyncRedis(FakePubSub([{"type": "message", "data": relayed(event)}]))
        clients = iter([broken, healthy])
        monkeypatch.setattr(realtime.aioredis, "from_url", lambda url, **kwargs: next(clients))
        monkeypatch.setattr(realtime, "RELAY_RETRY_SECONDS", 0)

        asyncio.run(relay_from_redis(hub, "redis://relay.test"))

        assert broken.closed
        assert hub.recent_events("org:1:shifts") == [event]


def run_pump(queue, receive_text):
    """Run pump_events and report what was sent plus any unhandled task errors"""
    sent = []
    loop_errors = []

    async def send_json(data):
        sent.append(data)

    async def scenario():
        asyncio.get_running_loop().set_exception_handler(lambda loop, context: loop_errors.append(context))
        await pump_events(queue, receive_text, send_json)
        gc.collect()
        await asyncio.sleep(0)
        return [t for t in asyncio.all_tasks() if t is not asyncio.current_task()]

    leftover = asyncio.run(scenario())
    return sent, loop_errors, leftover


@pytest.mark.unit
class TestEventPump:
    def test_forwards_events_until_client_disconnects(self):
        event = {"type": "notification", "channel": "user:7", "payload": {"id": 1}}
        queue = asyncio.Queue()
        queue.put_nowait(event)

        async def receive_text():
            await asyncio.sleep(0.01)
            raise WebSocketDisconnect(code=1000)

        sent, loop_errors, leftover = run_pump(queue, receive_text)

        assert sent == [event]
        assert loop_errors == []
        assert leftover == []

    def test_idle_disconnect_cleans_up_tasks(self):
        async def receive_text():
            raise WebSocketDisconnect(code=1001)

        sent, loop_errors, leftover = run_pump(asyncio.Queue(), receive_text)

        assert sent == []
        assert loop_errors == []
        assert leftover == []
