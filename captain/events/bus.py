"""
Event bus for the Captain event system.

Topic based publish/subscribe with one delivery worker per subscription,
so a slow handler only delays its own queue. Every subscriber sees the
events of its topic in publication order. Handler failures are logged
and isolated from the publisher and from other subscribers.

The bus is constructed explicitly and handed to every component; its
lifetime is that of one orchestrator.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from typing import Any, Callable, Mapping, Optional, Union

from captain.events.types import Event, Topic
from captain.events.validation import validate_payload

logger = logging.getLogger(__name__)

EventHandler = Callable[[Event], None]

_STOP = object()


class Subscription:
    """
    A live registration of a handler on a topic (or on every topic).

    Owns a FIFO queue and a daemon worker thread that drains it.
    """

    def __init__(
        self,
        bus: EventBus,
        topic: Optional[Topic],
        handler: EventHandler,
        name: str = "",
    ) -> None:
        self.topic = topic
        self.handler = handler
        self.name = name or getattr(handler, "__name__", "handler")
        self.failures = 0
        self._bus = bus
        self._queue: queue.Queue = queue.Queue()
        self._active = True
        label = topic.value if topic else "*"
        self._thread = threading.Thread(
            target=self._run,
            name=f"captain-bus[{label}:{self.name}]",
            daemon=True,
        )
        self._thread.start()

    @property
    def active(self) -> bool:
        return self._active

    def _enqueue(self, event: Event) -> None:
        self._queue.put(event)

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            if item is _STOP:
                return
            try:
                self.handler(item)
            except Exception:
                self.failures += 1
                logger.exception(
                    "Subscriber %s failed on %s (correlation=%s)",
                    self.name, item.topic.value, item.correlation_id,
                )
            finally:
                self._bus._delivery_done()

    def unsubscribe(self) -> None:
        """Stop receiving new events. Events already queued are still delivered."""
        if self._active:
            self._bus._remove(self)

    def _stop(self, timeout: Optional[float] = None) -> None:
        self._active = False
        self._queue.put(_STOP)
        if threading.current_thread() is not self._thread:
            self._thread.join(timeout)


class EventBus:
    """Live broadcast bus routing events to per-topic subscribers and observers."""

    def __init__(self) -> None:
        self._subscriptions: dict[Topic, list[Subscription]] = {}
        self._observers: list[Subscription] = []
        self._lock = threading.Lock()
        self._idle = threading.Condition()
        self._pending = 0
        self._closed = False

    def subscribe(
        self,
        topic: Union[Topic, str],
        handler: EventHandler,
        name: str = "",
    ) -> Subscription:
        """Subscribe to a specific topic."""
        topic = Topic.parse(topic)
        with self._lock:
            self._ensure_open()
            subscription = Subscription(self, topic, handler, name)
            self._subscriptions.setdefault(topic, []).append(subscription)
        return subscription

    def subscribe_all(self, handler: EventHandler, name: str = "") -> Subscription:
        """Subscribe to every topic (for audit, status, metrics)."""
        with self._lock:
            self._ensure_open()
            subscription = Subscription(self, None, handler, name)
            self._observers.append(subscription)
        return subscription

    def publish(
        self,
        topic: Union[Topic, str],
        payload: Optional[Mapping[str, Any]] = None,
        correlation_id: Optional[str] = None,
        source: str = "",
    ) -> str:
        """
        Publish an event to all current subscribers of its topic.

        Validates the payload before any delivery. Invalid payloads are
        never queued.

        Returns:
            The event's correlation id.

        Raises:
            PayloadValidationError: If the payload violates the topic schema.
            ValueError: If the topic is outside the vocabulary.
        """
        topic = Topic.parse(topic)
        payload = dict(payload or {})
        validate_payload(topic, payload)

        kwargs: dict[str, Any] = {"topic": topic, "payload": payload, "source": source}
        if correlation_id:
            kwargs["correlation_id"] = correlation_id
        event = Event(**kwargs)

        # Enqueue under the lock so concurrent publishers interleave whole
        # events and every subscriber sees the same order.
        with self._lock:
            self._ensure_open()
            targets = list(self._observers) + list(self._subscriptions.get(topic, []))
            with self._idle:
                self._pending += len(targets)
            for subscription in targets:
                subscription._enqueue(event)

        return event.correlation_id

    def flush(self, timeout: Optional[float] = None) -> bool:
        """
        Wait until every queued delivery has been handled.

        Returns:
            True if the bus drained, False if the timeout expired first.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._idle:
            while self._pending > 0:
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    return False
                self._idle.wait(remaining)
        return True

    def subscriber_count(self, topic: Union[Topic, str]) -> int:
        """Number of active subscribers for a topic, observers excluded."""
        topic = Topic.parse(topic)
        with self._lock:
            return len(self._subscriptions.get(topic, []))

    def close(self, timeout: Optional[float] = 5.0) -> None:
        """Stop all delivery workers after they drain their queues."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            subscriptions = list(self._observers)
            for subs in self._subscriptions.values():
                subscriptions.extend(subs)
            self._observers.clear()
            self._subscriptions.clear()
        for subscription in subscriptions:
            subscription._stop(timeout)

    @property
    def closed(self) -> bool:
        return self._closed

    def _ensure_open(self) -> None:
        if self._closed:
            raise RuntimeError("Event bus is closed")

    def _remove(self, subscription: Subscription) -> None:
        with self._lock:
            if subscription.topic is None:
                if subscription in self._observers:
                    self._observers.remove(subscription)
            else:
                subs = self._subscriptions.get(subscription.topic, [])
                if subscription in subs:
                    subs.remove(subscription)
        subscription._stop(timeout=0)

    def _delivery_done(self) -> None:
        with self._idle:
            self._pending -= 1
            if self._pending <= 0:
                self._pending = 0
                self._idle.notify_all()
