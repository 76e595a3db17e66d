"""Live event hub: subscriber registry, topic subscriptions and fan-out.

Each subscriber owns a bounded outbound queue drained by its WebSocket
task. Fan-out never awaits a socket, so one slow client cannot hold up
the rest; a client whose queue overflows is disconnected.
"""

import asyncio
import datetime
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any

import orjson
import redis.asyncio as aioredis

from app.core.noncritical import noncritical

logger = logging.getLogger(__name__)

CHANNEL = "transit:events"
QUEUE_SIZE = 64

# Queued in place of a message to tell the writer task to hang up
CLOSE = None


def _now_iso() -> str:
    return datetime.datetime.now(datetime.timezone.utc).isoformat()


@dataclass
class Subscriber:
    id: str
    queue: asyncio.Queue = field(default_factory=lambda: asyncio.Queue(maxsize=QUEUE_SIZE))
    topics: set[str] = field(default_factory=set)
    healthy: bool = True

    def wants(self, topic: str) -> bool:
        if topic in self.topics:
            return True
        prefix, sep, _ = topic.partition(":")
        return bool(sep) and f"{prefix}:*" in self.topics


class Broadcaster:
    """Registry of live subscribers. Optionally mirrors events to a Redis channel."""

    def __init__(self, redis_url: str | None = None) -> None:
        self._redis_url = redis_url
        self._redis: aioredis.Redis | None = None
        self._subscribers: dict[str, Subscriber] = {}

    async def connect(self) -> None:
        if self._redis_url:
            self._redis = aioredis.from_url(self._redis_url, decode_responses=False)

    async def close(self) -> None:
        for sub in list(self._subscribers.values()):
            self._hang_up(sub)
        if self._redis:
            await self._redis.aclose()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def get(self, subscriber_id: str) -> Subscriber | None:
        return self._subscribers.get(subscriber_id)

    def register(self) -> Subscriber:
        sub = Subscriber(id=uuid.uuid4().hex)
        self._subscribers[sub.id] = sub
        self._send(sub, {"type": "connected", "clientId": sub.id, "timestamp": _now_iso()})
        logger.info("WebSocket client connected: %s", sub.id)
        return sub

    def unregister(self, subscriber_id: str) -> None:
        if self._subscribers.pop(subscriber_id, None) is not None:
            logger.info("WebSocket client disconnected: %s", subscriber_id)

    def on_message(self, subscriber_id: str, message: Any) -> None:
        """Apply a client control message to that client's own subscription set."""
        sub = self._subscribers.get(subscriber_id)
        if sub is None:
            return
        if not isinstance(message, dict):
            self.send_error(subscriber_id, "Invalid message format")
            return

        kind = message.get("type")
        if kind in ("subscribe", "unsubscribe"):
            topics = message.get("topics")
            if not isinstance(topics, list) or not all(isinstance(t, str) for t in topics):
                self.send_error(subscriber_id, "topics must be a list of strings")
                return
            if kind == "subscribe":
                sub.topics.update(topics)
            else:
                sub.topics.difference_update(topics)
            self._send(sub, {"type": f"{kind}d", "topics": sorted(sub.topics)})
        elif kind == "ping":
            self._send(sub, {"type": "pong", "timestamp": _now_iso()})
        else:
            logger.warning("Unknown message type from %s: %r", subscriber_id, kind)

    def send_error(self, subscriber_id: str, text: str) -> None:
        sub = self._subscribers.get(subscriber_id)
        if sub is not None:
            self._send(sub, {"type": "error", "message": text, "timestamp": _now_iso()})

    async def broadcast(self, event_type: str, data: Any, topic: str | None = None) -> int:
        """Deliver an event to topic subscribers (or everyone). Returns the delivery count."""
        message = {"type": event_type, "data": data, "timestamp": _now_iso()}
        payload = orjson.dumps(message)

        delivered = 0
        for sub in list(self._subscribers.values()):
            if topic is not None and not sub.wants(topic):
                continue
            if self._deliver(sub, payload):
                delivered += 1

        if delivered:
            logger.debug("Broadcast %s to %d clients", event_type, delivered)

        if self._redis:
            await noncritical(f"Redis publish {event_type}", self._redis.publish(CHANNEL, payload))
        return delivered

    def _send(self, sub: Subscriber, message: dict) -> None:
        self._deliver(sub, orjson.dumps(message))

    def _deliver(self, sub: Subscriber, payload: bytes) -> bool:
        if not sub.healthy:
            return False
        try:
            sub.queue.put_nowait(payload)
            return True
        except asyncio.QueueFull:
            logger.warning("Subscriber %s is not keeping up, disconnecting", sub.id)
            self._hang_up(sub)
            self.unregister(sub.id)
            return False

    @staticmethod
    def _hang_up(sub: Subscriber) -> None:
        sub.healthy = False
        # Make room so the close marker is always the last thing the writer sees.
        while True:
            try:
                sub.queue.put_nowait(CLOSE)
                return
            except asyncio.QueueFull:
                sub.queue.get_nowait()
