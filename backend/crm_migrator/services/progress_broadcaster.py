"""Fan-out of migration events to live progress observers.

Delivery contract:

- at most once, best effort; each observer owns a bounded outbound queue
- an event is only ever delivered to observers registered before it was
  published, in publish order
- a delivery that cannot be queued (observer closed or its queue full)
  deregisters that observer; nothing is buffered or redelivered for it
- every observer gets a ``connected`` event on registration and its own
  periodic ``ping``
"""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, AsyncIterator

from crm_migrator.core.settings import settings

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    CONNECTED = "connected"
    PROGRESS = "progress"
    SHEET_STARTED = "sheet-started"
    SHEET_COMPLETED = "sheet-completed"
    PING = "ping"
    ERROR = "error"
    DONE = "done"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ProgressEvent:
    kind: EventKind
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utcnow)

    def data(self) -> dict[str, Any]:
        return {**self.payload, "timestamp": self.timestamp.isoformat()}

    def to_json(self) -> str:
        return json.dumps(self.data(), default=str)


class Observer:
    def __init__(self, observer_id: int, queue_size: int) -> None:
        self.id = observer_id
        self.closed = False
        self._queue: asyncio.Queue[ProgressEvent | None] = asyncio.Queue(maxsize=queue_size)
        self._ping_task: asyncio.Task | None = None

    def offer(self, event: ProgressEvent) -> bool:
        if self.closed:
            return False
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            return False
        return True

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        if self._ping_task is not None:
            self._ping_task.cancel()
            self._ping_task = None
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(None)

    async def events(self) -> AsyncIterator[ProgressEvent]:
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event


class ProgressBroadcaster:
    def __init__(self, *, ping_interval_s: float | None = None, queue_size: int | None = None) -> None:
        self.ping_interval_s = ping_interval_s if ping_interval_s is not None else settings.progress_ping_interval_s
        self.queue_size = queue_size if queue_size is not None else settings.observer_queue_size
        self._observers: dict[int, Observer] = {}
        self._ids = itertools.count(1)

    @property
    def observer_count(self) -> int:
        return len(self._observers)

    def register(self) -> Observer:
        """Attach a new observer. Must be called from the event loop."""
        observer = Observer(next(self._ids), self.queue_size)
        self._observers[observer.id] = observer
        observer.offer(ProgressEvent(EventKind.CONNECTED, {"message": "Connected to migration progress"}))
        observer._ping_task = asyncio.create_task(self._ping_loop(observer))
        logger.info("progress.observer.register id=%s observers=%s", observer.id, len(self._observers))
        return observer

    def deregister(self, observer: Observer) -> None:
        removed = self._observers.pop(observer.id, None)
        observer.close()
        if removed is not None:
            logger.info("progress.observer.deregister id=%s observers=%s", observer.id, len(self._observers))

    def publish(self, kind: EventKind, payload: dict[str, Any] | None = None) -> int:
        """Queue one event for every registered observer. Never blocks; returns the delivered count."""
        event = ProgressEvent(kind, dict(payload or {}))
        delivered = 0
        for observer in list(self._observers.values()):
            if observer.offer(event):
                delivered += 1
            else:
                logger.warning("progress.observer.drop id=%s kind=%s", observer.id, kind.value)
                self.deregister(observer)
        return delivered

    def close_all(self) -> None:
        for observer in list(self._observers.values()):
            self.deregister(observer)

    async def _ping_loop(self, observer: Observer) -> None:
        while not observer.closed:
            await asyncio.sleep(self.ping_interval_s)
            if observer.closed:
                return
            if not observer.offer(ProgressEvent(EventKind.PING)):
                self.deregister(observer)
                return
