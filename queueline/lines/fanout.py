"""Partition-scoped delivery of line events to connected observers."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from threading import Lock
from typing import Any, Iterable

from queueline.metrics import MetricsRegistry, metrics_registry
from queueline.metrics.definitions import FANOUT_DROPPED_TOTAL, FANOUT_SUBSCRIBERS

from .models import LineEvent, LineKey

logger = logging.getLogger(__name__)

ALL_LINES_CHANNEL = "lines:all"


class Subscriber:
    """Bounded outbox for one observer connection.

    The transport drains it with :meth:`get`; ``None`` marks the end of the
    stream once the subscriber has been closed.
    """

    def __init__(self, name: str, *, maxsize: int = 100) -> None:
        self.name = name
        self._queue: asyncio.Queue[dict[str, Any] | None] = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def offer(self, payload: dict[str, Any]) -> bool:
        if self._closed:
            return False
        try:
            self._queue.put_nowait(payload)
        except asyncio.QueueFull:
            return False
        return True

    async def get(self) -> dict[str, Any] | None:
        return await self._queue.get()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(None)

    def __repr__(self) -> str:
        return f"Subscriber({self.name!r})"


class EventFanout:
    """Registry of subscribers grouped by channel.

    Line channels carry one ``(service, date)`` line each; the
    ``lines:all`` channel receives every line's events and is meant for
    staff dashboards. ``publish`` never awaits: a subscriber whose outbox
    is full is dropped rather than slowing the publisher down.
    """

    def __init__(self, registry: MetricsRegistry | None = None) -> None:
        self._channels: dict[str, set[Subscriber]] = defaultdict(set)
        self._lock = Lock()
        registry = registry or metrics_registry
        self._dropped = registry.counter(FANOUT_DROPPED_TOTAL)
        self._gauge = registry.gauge(FANOUT_SUBSCRIBERS, label_names=("tier",))

    def subscribe(self, subscriber: Subscriber, channel: str) -> None:
        with self._lock:
            self._channels[channel].add(subscriber)
            self._update_gauge()
        logger.debug("%r joined %s", subscriber, channel)

    def unsubscribe(self, subscriber: Subscriber, channel: str | None = None) -> None:
        with self._lock:
            channels = [channel] if channel is not None else list(self._channels)
            for name in channels:
                members = self._channels.get(name)
                if not members:
                    continue
                members.discard(subscriber)
                if not members:
                    del self._channels[name]
            self._update_gauge()

    def subscribers(self, channel: str) -> tuple[Subscriber, ...]:
        with self._lock:
            return tuple(self._channels.get(channel, ()))

    def send(self, subscriber: Subscriber, event: LineEvent) -> bool:
        """Deliver ``event`` to one subscriber only."""

        return self._deliver([subscriber], event.to_payload()) == 1

    def publish(self, key: LineKey, event: LineEvent) -> int:
        """Deliver ``event`` to the line's channel and the all-lines channel."""

        with self._lock:
            targets = set(self._channels.get(key.channel, ()))
            targets.update(self._channels.get(ALL_LINES_CHANNEL, ()))
        delivered = self._deliver(targets, event.to_payload())
        logger.debug("Published %s on %s to %d subscriber(s)", event.event, key, delivered)
        return delivered

    def _deliver(self, targets: Iterable[Subscriber], payload: dict[str, Any]) -> int:
        delivered = 0
        for subscriber in targets:
            if subscriber.offer(payload):
                delivered += 1
                continue
            if not subscriber.closed:
                logger.warning("Dropping slow subscriber %r", subscriber)
                self._dropped.inc()
            self.unsubscribe(subscriber)
            subscriber.close()
        return delivered

    def _update_gauge(self) -> None:
        line_total = sum(len(members) for name, members in self._channels.items() if name != ALL_LINES_CHANNEL)
        self._gauge.set(line_total, labels={"tier": "line"})
        self._gauge.set(len(self._channels.get(ALL_LINES_CHANNEL, ())), labels={"tier": "all"})
