#!/usr/bin/env python3
"""
Orchestration Hub - Event Bus
In-process typed publish/subscribe with best-effort durable audit logging.

Events are dispatched from one FIFO queue per bus, so every subscriber sees
events in publication order. Each event reaches the subscribers of its type and
the wildcard subscribers together, in registration order. A publish made from
inside a handler is queued behind the event being dispatched and delivered once
that dispatch finishes; the outermost publish returns only after the whole
cascade it started has been delivered.

The audit write is scheduled at publish time, in publication order, as a
background task so a slow or failing store never blocks the publisher.
"""

import asyncio
import collections
import contextvars
import inspect
import itertools
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Set, Tuple, Union

import structlog

from .models import EVENT_PAYLOAD_TYPES, Event, EventPayload, EventType
from .storage import StatusStore

logger = structlog.get_logger()

EventHandler = Callable[[Event], Union[None, Awaitable[None]]]

# Registry key for handlers that receive every event
WILDCARD = "*"


class Subscription:
    """Cancellation token returned by EventBus.subscribe."""

    def __init__(self, bus: "EventBus", key: Union[EventType, str], handler: EventHandler,
                 seq: int = 0):
        self._bus = bus
        self.seq = seq
        self.key = key
        self.handler = handler
        self.active = True

    def cancel(self) -> None:
        """Remove the handler from the bus. Safe to call more than once."""
        if self.active:
            self._bus._remove(self)
            self.active = False


class _Cascade:
    """An outer publish plus everything its handlers published in turn."""

    def __init__(self, bus: "EventBus"):
        self.bus = bus
        self.pending = 0
        self.done = asyncio.get_running_loop().create_future()

    def add(self) -> None:
        self.pending += 1

    def finish_one(self) -> None:
        self.pending -= 1
        if self.pending <= 0 and not self.done.done():
            self.done.set_result(None)


# Cascade whose event is being dispatched in the current context
_active_cascade: "contextvars.ContextVar[Optional[_Cascade]]" = contextvars.ContextVar(
    "active_cascade", default=None
)


class EventBus:
    """
    Typed in-memory event bus.

    Delivery is at-most-once per live subscriber and does not survive a process
    restart; durability is the audit store's job alone.
    """

    def __init__(self, store: Optional[StatusStore] = None, debug: bool = False):
        self.store = store
        self.debug = debug
        self.logger = structlog.get_logger().bind(component="event_bus")
        self._subscribers: Dict[Union[EventType, str], List[Subscription]] = {}
        self._pending_writes: Set[asyncio.Task] = set()
        self._sequence = itertools.count()
        self._queue: Deque[Tuple[Event, _Cascade]] = collections.deque()
        self._dispatcher: Optional[asyncio.Task] = None
        self.published_count = 0
        self.persist_failures = 0

    # -------------------------------------------------------------------------
    # SUBSCRIPTION
    # -------------------------------------------------------------------------

    def subscribe(self, event_type: EventType, handler: EventHandler) -> Subscription:
        """Register a handler for exactly one event type."""
        if not isinstance(event_type, EventType):
            raise TypeError(f"Unknown event type: {event_type!r}")
        return self._add(event_type, handler)

    def subscribe_all(self, handler: EventHandler) -> Subscription:
        """Register a handler that receives every published event."""
        return self._add(WILDCARD, handler)

    def subscriber_count(self, event_type: Optional[EventType] = None) -> int:
        if event_type is None:
            return sum(len(subs) for subs in self._subscribers.values())
        return len(self._subscribers.get(event_type, []))

    def _add(self, key: Union[EventType, str], handler: EventHandler) -> Subscription:
        subscription = Subscription(self, key, handler, next(self._sequence))
        self._subscribers.setdefault(key, []).append(subscription)
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        subs = self._subscribers.get(subscription.key, [])
        if subscription in subs:
            subs.remove(subscription)

    # -------------------------------------------------------------------------
    # PUBLISHING
    # -------------------------------------------------------------------------

    async def publish(self, event_type: EventType, source: str, payload: EventPayload,
                      metadata: Optional[Dict[str, Any]] = None) -> Event:
        """
        Publish an event and dispatch it to subscribers.

        Called from a handler, the event is queued and this returns at once;
        otherwise it returns after the event and every event its handlers
        published have been delivered.

        Args:
            event_type: One of the closed EventType values
            source: Name of the publishing component
            payload: Payload instance matching the event type
            metadata: Optional free-form context

        Returns:
            Event: The published (immutable) event

        Raises:
            TypeError: If the payload class does not match the event type
        """
        expected = EVENT_PAYLOAD_TYPES.get(event_type)
        if expected is None:
            raise TypeError(f"Unknown event type: {event_type!r}")
        if not isinstance(payload, expected):
            raise TypeError(
                f"{event_type.value} expects {expected.__name__}, got {type(payload).__name__}"
            )

        event = Event(type=event_type, source=source, payload=payload, metadata=metadata)
        self.published_count += 1

        if self.debug:
            self.logger.debug("event_published", event_type=event_type.value, source=source,
                              event_id=event.id)

        if self.store is not None:
            task = asyncio.create_task(self._persist(event))
            self._pending_writes.add(task)
            task.add_done_callback(self._pending_writes.discard)

        current = _active_cascade.get()
        if current is not None and current.bus is self and not current.done.done():
            current.add()
            self._enqueue(event, current)
            return event

        cascade = _Cascade(self)
        cascade.add()
        self._enqueue(event, cascade)
        # Shielded: a cancelled publisher must not abort delivery to others
        await asyncio.shield(cascade.done)
        return event

    def _enqueue(self, event: Event, cascade: _Cascade) -> None:
        self._queue.append((event, cascade))
        if self._dispatcher is None or self._dispatcher.done():
            self._dispatcher = asyncio.create_task(self._run_dispatch())

    async def _run_dispatch(self) -> None:
        try:
            while self._queue:
                event, cascade = self._queue.popleft()
                token = _active_cascade.set(cascade)
                try:
                    await self._dispatch(event)
                finally:
                    _active_cascade.reset(token)
                    cascade.finish_one()
        finally:
            # Only reached with items left when the dispatcher was cancelled
            while self._queue:
                _, cascade = self._queue.popleft()
                cascade.finish_one()

    async def _dispatch(self, event: Event) -> None:
        # Snapshot the lists so handlers subscribing or cancelling mid-dispatch
        # only affect later events
        typed = list(self._subscribers.get(event.type, []))
        wildcard = list(self._subscribers.get(WILDCARD, []))
        for subscription in sorted(typed + wildcard, key=lambda s: s.seq):
            if subscription.active:
                await self._deliver(subscription, event)

    async def _deliver(self, subscription: Subscription, event: Event) -> None:
        try:
            result = subscription.handler(event)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            self.logger.error("event_handler_error",
                              event_type=event.type.value,
                              handler=getattr(subscription.handler, "__qualname__",
                                              str(subscription.handler)),
                              error=str(e))

    async def _persist(self, event: Event) -> None:
        try:
            await self.store.record_event(event)
        except Exception as e:
            self.persist_failures += 1
            self.logger.warning("event_persist_failed",
                                event_type=event.type.value,
                                event_id=event.id,
                                error=str(e))

    # -------------------------------------------------------------------------
    # TEARDOWN
    # -------------------------------------------------------------------------

    async def drain(self) -> None:
        """Wait for queued deliveries and outstanding audit writes to finish."""
        while (self._dispatcher is not None and not self._dispatcher.done()) \
                or self._pending_writes:
            if self._dispatcher is not None and not self._dispatcher.done():
                await asyncio.gather(self._dispatcher, return_exceptions=True)
            if self._pending_writes:
                await asyncio.gather(*list(self._pending_writes), return_exceptions=True)

    async def close(self) -> None:
        """Drop every subscription and flush pending audit writes."""
        for subs in self._subscribers.values():
            for subscription in subs:
                subscription.active = False
        self._subscribers.clear()
        await self.drain()
