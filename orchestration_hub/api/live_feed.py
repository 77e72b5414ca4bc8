#!/usr/bin/env python3
"""
Orchestration Hub - Live Feed
Fans bus events out to WebSocket clients.

Each connection gets its own bounded queue. The first message is always a full
status snapshot; after that every health change produces a fresh snapshot and
every alert, decision or action outcome is forwarded as an "event" message.
"""

import asyncio
from datetime import datetime
from typing import Any, Dict, List, Optional

import structlog

from ..core.event_bus import EventBus, Subscription
from ..core.models import Event, EventType, to_jsonable
from ..core.poller import ProjectMonitor

logger = structlog.get_logger()

FORWARDED_EVENTS = (
    EventType.PROJECT_DOWN,
    EventType.PROJECT_DEGRADED,
    EventType.PROJECT_RECOVERED,
    EventType.ANOMALY_DETECTED,
    EventType.AI_DECISION,
    EventType.ACTION_TRIGGERED,
    EventType.ACTION_COMPLETED,
    EventType.ACTION_FAILED,
    EventType.ACTION_EXECUTED,
)


def status_message(monitor: ProjectMonitor) -> Dict[str, Any]:
    return {
        "type": "status-update",
        "data": to_jsonable(monitor.get_status()),
        "timestamp": datetime.utcnow().isoformat(),
    }


def event_message(event: Event) -> Dict[str, Any]:
    return {
        "type": "event",
        "data": {
            "id": event.id,
            "event_type": event.type.value,
            "source": event.source,
            "project_name": event.project_name,
            "payload": to_jsonable(event.payload),
        },
        "timestamp": event.timestamp.isoformat(),
    }


class FeedConnection:
    """
    One subscriber's view of the feed.

    The connect-time snapshot is held apart from the bounded queue, so it is
    always the first message read and is never evicted.
    """

    def __init__(self, feed: "LiveFeed", max_queue: int, snapshot: Dict[str, Any]):
        self.feed = feed
        self.snapshot: Optional[Dict[str, Any]] = snapshot
        self.queue: "asyncio.Queue[Dict[str, Any]]" = asyncio.Queue(maxsize=max_queue)
        self.subscriptions: List[Subscription] = []
        self.dropped = 0
        self.closed = False

    def push(self, message: Dict[str, Any]) -> None:
        # A slow client loses its oldest queued messages, never blocks the publisher
        if self.queue.full():
            self.queue.get_nowait()
            self.dropped += 1
        self.queue.put_nowait(message)

    async def next_message(self, timeout: Optional[float] = None) -> Dict[str, Any]:
        if self.snapshot is not None:
            message, self.snapshot = self.snapshot, None
            return message
        if timeout is None:
            return await self.queue.get()
        return await asyncio.wait_for(self.queue.get(), timeout)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        for subscription in self.subscriptions:
            subscription.cancel()
        self.subscriptions.clear()
        self.feed.connections.discard(self)
        if self.dropped:
            logger.warning("live_feed_messages_dropped", dropped=self.dropped)


class LiveFeed:
    """Creates per-client connections bound to the event bus."""

    def __init__(self, event_bus: EventBus, monitor: ProjectMonitor, max_queue: int = 100):
        self.event_bus = event_bus
        self.monitor = monitor
        self.max_queue = max_queue
        self.connections = set()

    def connect(self) -> FeedConnection:
        connection = FeedConnection(self, self.max_queue, status_message(self.monitor))

        def on_health_change(event: Event) -> None:
            connection.push(status_message(self.monitor))

        def on_event(event: Event) -> None:
            connection.push(event_message(event))

        connection.subscriptions.append(
            self.event_bus.subscribe(EventType.PROJECT_HEALTH_CHANGED, on_health_change)
        )
        for event_type in FORWARDED_EVENTS:
            connection.subscriptions.append(self.event_bus.subscribe(event_type, on_event))

        self.connections.add(connection)
        logger.info("live_feed_client_connected", clients=len(self.connections))
        return connection

    def close_all(self) -> None:
        for connection in list(self.connections):
            connection.close()
