"""
Out-of-band event feed.

The pipeline publishes row inserts and safety broadcasts here; clients
subscribe per channel and feed the events into the reconciliation engine.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

logger = logging.getLogger(__name__)

INSERT_EVENT = "INSERT"
SAFETY_EVENT = "safety-message"


def room_channel(room_id: str) -> str:
    return f"room-{room_id}"


def safety_channel(author_id: str) -> str:
    return f"safety-alert-{author_id}"


@dataclass
class RealtimeEvent:
    channel: str
    event: str
    payload: dict[str, Any] = field(default_factory=dict)


class RealtimeFeed(Protocol):
    async def publish(self, channel: str, event: str, payload: dict[str, Any]) -> None: ...


class InMemoryFeed:
    """Fan-out of published events to per-channel asyncio queues."""

    def __init__(self) -> None:
        self._subscribers: dict[str, list[asyncio.Queue[RealtimeEvent]]] = {}
        self.history: list[RealtimeEvent] = []

    def subscribe(self, channel: str) -> "asyncio.Queue[RealtimeEvent]":
        queue: asyncio.Queue[RealtimeEvent] = asyncio.Queue()
        self._subscribers.setdefault(channel, []).append(queue)
        return queue

    def unsubscribe(self, channel: str, queue: "asyncio.Queue[RealtimeEvent]") -> None:
        queues = self._subscribers.get(channel, [])
        if queue in queues:
            queues.remove(queue)

    async def publish(self, channel: str, event: str, payload: dict[str, Any]) -> None:
        message = RealtimeEvent(channel=channel, event=event, payload=dict(payload))
        self.history.append(message)
        queues = self._subscribers.get(channel, [])
        logger.debug(f"Publishing {event} on {channel} to {len(queues)} subscriber(s)")
        for queue in queues:
            queue.put_nowait(message)
