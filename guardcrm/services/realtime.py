"""
Real-time fan-out hub

In-process publish/subscribe for board and user channels plus presence
tracking for collaborative boards. When Redis is configured every event is
also published on one relay channel, wrapped with the publishing process id;
relay_from_redis feeds events from other API processes back into the local
hub and drops the ones this process sent itself.
"""

import asyncio
import json
import logging
import uuid
from collections import defaultdict, deque
from datetime import datetime, timedelta
from threading import Lock
from typing import Optional

import redis
import redis.asyncio as aioredis

from ..config import REDIS_URL
from ..rate_limiter import get_redis_client

logger = logging.getLogger(__name__)

PRESENCE_TTL_SECONDS = 60
RECENT_EVENT_LIMIT = 50
SUBSCRIBER_QUEUE_SIZE = 100
RELAY_CHANNEL = "guardcrm:realtime"
RELAY_RETRY_SECONDS = 5
INSTANCE_ID = uuid.uuid4().hex


def board_channel(organization_id: int, board: str) -> str:
    return f"org:{organization_id}:{board}"


def user_channel(user_id: int) -> str:
    return f"user:{user_id}"


class RealtimeHub:
    def __init__(self):
        self._lock = Lock()
        self._subscribers: dict[str, list[asyncio.Queue]] = defaultdict(list)
        self._recent: dict[str, deque] = defaultdict(lambda: deque(maxlen=RECENT_EVENT_LIMIT))
        # {channel: {user_id: {"userId", "name", "joinedAt", "lastSeen"}}}
        self._presence: dict[str, dict[int, dict]] = defaultdict(dict)

    # ------------------------------------------------------------------
    # Pub/sub
    # ------------------------------------------------------------------

    def subscribe(self, channel: str, queue: Optional[asyncio.Queue] = None) -> asyncio.Queue:
        """Register a queue for a channel; one queue may listen on several channels"""
        if queue is None:
            queue = asyncio.Queue(maxsize=SUBSCRIBER_QUEUE_SIZE)
        with self._lock:
            self._subscribers[channel].append(queue)
        return queue

    def unsubscribe(self, channel: str, queue: asyncio.Queue) -> None:
        with self._lock:
            if queue in self._subscribers.get(channel, []):
                self._subscribers[channel].remove(queue)

    def publish(self, channel: str, event_type: str, payload: dict) -> dict:
        """Fan an event out to local subscribers and the Redis relay. Never raises."""
        event = {
            "type": event_type,
            "channel": channel,
            "payload": payload,
            "timestamp": datetime.utcnow().isoformat(),
        }
        self.deliver(event)

        client = get_redis_client()
        if client is not None:
            try:
                client.publish(RELAY_CHANNEL, json.dumps({"origin": INSTANCE_ID, "event": event}, default=str))
            except Exception as e:
                logger.warning(f"⚠️ Redis publish failed for {channel}: {e}")

        return event

    def deliver(self, event: dict) -> None:
        """Local fan-out only"""
        channel = event["channel"]
        with self._lock:
            self._recent[channel].append(event)
            queues = list(self._subscribers.get(channel, []))

        for queue in queues:
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning(f"⚠️ Dropping {event.get('type')} event for slow subscriber on {channel}")

    def relay_message(self, raw) -> bool:
        """Deliver an event relayed from another process; True when it was delivered"""
        try:
            envelope = json.loads(raw)
            origin = envelope["origin"]
            event = envelope["event"]
        except (TypeError, ValueError, KeyError) as e:
            logger.warning(f"⚠️ Ignoring malformed relay message: {e}")
            return False
        if not isinstance(event, dict) or not isinstance(event.get("channel"), str):
            logger.warning("⚠️ Ignoring relay message without a channel")
            return False

        if origin == INSTANCE_ID:
            return False
        self.deliver(event)
        return True

    def recent_events(self, channel: str) -> list[dict]:
        with self._lock:
            return list(self._recent.get(channel, []))

    # ------------------------------------------------------------------
    # Presence
    # ------------------------------------------------------------------

    def join(self, channel: str, user_id: int, name: str, now: Optional[datetime] = None) -> list[dict]:
        now = now or datetime.utcnow()
        with self._lock:
            existing = self._presence[channel].get(user_id)
            self._presence[channel][user_id] = {
                "userId": user_id,
                "name": name,
                "joinedAt": existing["joinedAt"] if existing else now.isoformat(),
                "lastSeen": now,
            }
        if not existing:
            self.publish(channel, "user_joined", {"userId": user_id, "name": name})
        return self.list_presence(channel, now)

    def heartbeat(self, channel: str, user_id: int, now: Optional[datetime] = None) -> bool:
        now = now or datetime.utcnow()
        with self._lock:
            entry = self._presence.get(channel, {}).get(user_id)
            if not entry:
                return False
            entry["lastSeen"] = now
            return True

    def leave(self, channel: str, user_id: int) -> None:
        with self._lock:
            entry = self._presence.get(channel, {}).pop(user_id, None)
        if entry:
            self.publish(channel, "user_left", {"userId": user_id, "name": entry["name"]})

    def list_presence(self, channel: str, now: Optional[datetime] = None) -> list[dict]:
        """Active viewers; entries without a heartbeat for 60s are dropped"""
        now = now or datetime.utcnow()
        cutoff = now - timedelta(seconds=PRESENCE_TTL_SECONDS)
        expired = []
        with self._lock:
            members = self._presence.get(channel, {})
            for user_id, entry in list(members.items()):
                if entry["lastSeen"] < cutoff:
                    expired.append(members.pop(user_id))
            active = [
                {**entry, "lastSeen": entry["lastSeen"].isoformat()} for entry in members.values()
            ]

        for entry in expired:
            self.publish(channel, "user_left", {"userId": entry["userId"], "name": entry["name"], "expired": True})

        return sorted(active, key=lambda e: e["joinedAt"])

    def reset(self) -> None:
        with self._lock:
            self._subscribers.clear()
            self._recent.clear()
            self._presence.clear()


hub = RealtimeHub()


async def relay_from_redis(target: Optional[RealtimeHub] = None, url: Optional[str] = None) -> None:
    """
    Feed events published by other API processes into the local hub.

    Runs until cancelled or until Redis closes the subscription. Lost
    connections are retried every RELAY_RETRY_SECONDS.
    """
    target = target or hub
    url = url or REDIS_URL

    while True:
        client = aioredis.from_url(url, decode_responses=True)
        pubsub = client.pubsub(ignore_subscribe_messages=True)
        try:
            await pubsub.subscribe(RELAY_CHANNEL)
            logger.info(f"📡 Realtime relay subscribed to {RELAY_CHANNEL}")
            async for message in pubsub.listen():
                if message.get("type") == "message":
                    target.relay_message(message.get("data"))
            logger.info("Realtime relay subscription closed")
            return
        except redis.RedisError as e:
            logger.error(f"❌ Realtime relay lost Redis: {e} - retrying in {RELAY_RETRY_SECONDS}s")
        finally:
            await pubsub.aclose()
            await client.aclose()

        await asyncio.sleep(RELAY_RETRY_SECONDS)
