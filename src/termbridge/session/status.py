"""Command status — which command is running in each session, and who is watching.

The tracker is the single source of truth for the active command of every
session key.  State changes are broadcast to all subscribers of that key;
a subscriber that joins while a command is running gets a synthetic start
event first, so late viewers never miss the running state.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable

logger = logging.getLogger(__name__)

HEARTBEAT_INTERVAL = 30.0


class StatusType(enum.Enum):
    COMMAND_START = "command-start"
    COMMAND_END = "command-end"
    HEARTBEAT = "heartbeat"


@dataclass(frozen=True)
class StatusEvent:
    """An event on the command status stream."""

    type: StatusType
    command: str | None = None
    start_time: int | None = None  # epoch milliseconds

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": self.type.value}
        if self.type == StatusType.COMMAND_START:
            data["command"] = self.command
            data["startTime"] = self.start_time
        return data


HEARTBEAT = StatusEvent(type=StatusType.HEARTBEAT)


@dataclass(frozen=True)
class ActiveCommand:
    command: str
    start_time: int

    def start_event(self) -> StatusEvent:
        return StatusEvent(
            type=StatusType.COMMAND_START,
            command=self.command,
            start_time=self.start_time,
        )


class CommandTracker:
    """Active-command table plus per-key status broadcast.

    Multi-producer (human input, agent executor, session cleanup),
    multi-consumer (status stream viewers).  Each subscriber is a bounded
    queue; a subscriber that cannot accept an event is dropped without
    affecting delivery to the others.
    """

    def __init__(self, max_queue: int = 256) -> None:
        self._active: dict[str, ActiveCommand] = {}
        self._subscribers: dict[str, set[asyncio.Queue[StatusEvent | None]]] = {}
        self._lock = threading.Lock()
        self._max_queue = max_queue

    def record_start(self, key: str, command: str) -> None:
        """Mark ``command`` as running in ``key`` and broadcast a start event."""
        active = ActiveCommand(command=command, start_time=int(time.time() * 1000))
        with self._lock:
            self._active[key] = active
            self._broadcast(key, active.start_event())

    def record_end(self, key: str) -> None:
        """Clear the active command of ``key`` and broadcast an end event.

        Safe to call with no command running; the end event still goes out
        so viewers holding stale state converge.
        """
        with self._lock:
            self._active.pop(key, None)
            self._broadcast(key, StatusEvent(type=StatusType.COMMAND_END))

    def get_active(self, key: str) -> ActiveCommand | None:
        with self._lock:
            return self._active.get(key)

    def _broadcast(self, key: str, event: StatusEvent) -> None:
        # Called with the lock held so per-key ordering matches record order.
        for q in list(self._subscribers.get(key, ())):
            try:
                q.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning("Status subscriber for %s is not draining, dropping it", key)
                self._remove(key, q)
            except Exception:
                logger.exception("Error delivering status event for %s", key)
                self._remove(key, q)

    def subscribe(
        self, key: str
    ) -> tuple[asyncio.Queue[StatusEvent | None], Callable[[], None]]:
        """Register a subscriber for ``key``.

        Returns the event queue and an unsubscribe function.  If a command
        is already running, its start event is queued before this returns.
        A ``None`` on the queue means the tracker was closed.
        """
        q: asyncio.Queue[StatusEvent | None] = asyncio.Queue(maxsize=self._max_queue)
        with self._lock:
            self._subscribers.setdefault(key, set()).add(q)
            active = self._active.get(key)
            if active is not None:
                q.put_nowait(active.start_event())

        def unsubscribe() -> None:
            with self._lock:
                self._remove(key, q)

        return q, unsubscribe

    def _remove(self, key: str, q: asyncio.Queue) -> None:
        clients = self._subscribers.get(key)
        if clients is None:
            return
        clients.discard(q)
        if not clients:
            del self._subscribers[key]

    def subscriber_count(self, key: str) -> int:
        with self._lock:
            return len(self._subscribers.get(key, ()))

    async def stream(
        self, key: str, heartbeat_interval: float = HEARTBEAT_INTERVAL
    ) -> AsyncIterator[StatusEvent]:
        """Yield status events for ``key`` with periodic heartbeats.

        The subscription is released when the consumer stops iterating,
        including when sending a heartbeat downstream fails.
        """
        q, unsubscribe = self.subscribe(key)
        loop = asyncio.get_running_loop()
        next_beat = loop.time() + heartbeat_interval
        try:
            while True:
                remaining = next_beat - loop.time()
                try:
                    event = await asyncio.wait_for(q.get(), timeout=max(remaining, 0))
                except asyncio.TimeoutError:
                    next_beat += heartbeat_interval
                    yield HEARTBEAT
                    continue
                if event is None:
                    return
                yield event
        finally:
            unsubscribe()

    def close(self) -> None:
        """End every status stream.  Called on shutdown."""
        with self._lock:
            subscribers = [q for qs in self._subscribers.values() for q in qs]
            self._subscribers.clear()
            self._active.clear()
        for q in subscribers:
            if q.full():
                q.get_nowait()
            q.put_nowait(None)
