"""In-process change notifications scoped by table + column filters.

Publishers run on worker threads (sync routes); subscribers are asyncio
consumers. Each subscription remembers its event loop and receives changes via
``call_soon_threadsafe``. A change is only a signal: subscribers re-fetch the
affected rows themselves.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from gamefeed.core.settings import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Change:
    table: str
    op: str  # insert | update | delete
    key: dict[str, Any]
    fields: dict[str, Any] = field(default_factory=dict)

    def to_message(self) -> dict[str, Any]:
        return {
            "type": "change",
            "table": self.table,
            "op": self.op,
            "key": dict(self.key),
            "fields": {
                k: sorted(v) if isinstance(v, (set, frozenset)) else v for k, v in self.fields.items()
            },
        }


@dataclass(frozen=True)
class Topic:
    table: str
    filters: tuple[tuple[str, str], ...] = ()

    @classmethod
    def of(cls, table: str, **filters: Any) -> "Topic":
        return cls(table, tuple(sorted((k, str(v)) for k, v in filters.items())))

    def matches(self, change: Change) -> bool:
        if change.table != self.table:
            return False
        for name, wanted in self.filters:
            value = change.fields.get(name)
            if isinstance(value, (set, frozenset)):
                if wanted not in {str(v) for v in value}:
                    return False
            elif value is None or str(value) != wanted:
                return False
        return True


class Subscription:
    def __init__(self, notifier: "Notifier", topic: Topic, loop: asyncio.AbstractEventLoop, maxsize: int):
        self.notifier = notifier
        self.topic = topic
        self.closed = False
        self._loop = loop
        self._queue: asyncio.Queue[Change | None] = asyncio.Queue(maxsize=maxsize + 1)
        self._maxsize = maxsize

    def _offer(self, change: Change | None) -> None:
        if self.closed and change is not None:
            return
        if change is not None and self._queue.qsize() >= self._maxsize:
            # Slow consumer: drop it rather than buffer without bound.
            logger.warning("Dropping realtime subscriber on %s (queue full)", self.topic.table)
            self.notifier.unsubscribe(self)
            return
        self._queue.put_nowait(change)

    def deliver(self, change: Change | None) -> None:
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            self._offer(change)
            return
        try:
            self._loop.call_soon_threadsafe(self._offer, change)
        except RuntimeError:
            # Subscriber's loop is gone.
            self.notifier.unsubscribe(self)

    async def get(self, timeout: float | None = None) -> Change | None:
        """Next change, or None once the subscription is closed."""
        if self.closed and self._queue.empty():
            return None
        if timeout is None:
            return await self._queue.get()
        return await asyncio.wait_for(self._queue.get(), timeout)

    def close(self) -> None:
        self.notifier.unsubscribe(self)


class Notifier:
    def __init__(self, queue_size: int | None = None):
        self.queue_size = queue_size or settings.REALTIME_QUEUE_SIZE
        self._subs: list[Subscription] = []
        self._lock = threading.Lock()

    def subscribe(self, topic: Topic) -> Subscription:
        sub = Subscription(self, topic, asyncio.get_running_loop(), self.queue_size)
        with self._lock:
            self._subs.append(sub)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        with self._lock:
            if sub in self._subs:
                self._subs.remove(sub)
        if not sub.closed:
            sub.closed = True
            sub.deliver(None)

    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subs)

    def publish(self, changes: Iterable[Change]) -> None:
        changes = list(changes)
        if not changes:
            return
        with self._lock:
            subs = list(self._subs)
        for sub in subs:
            for change in changes:
                if sub.topic.matches(change):
                    sub.deliver(change)


notifier = Notifier()
