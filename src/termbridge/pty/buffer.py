"""Rolling scroll buffer for PTY sessions."""

from __future__ import annotations

import asyncio
import threading
from collections import deque


class RollingBuffer:
    """Thread-safe rolling buffer of cleaned terminal output.

    Complete lines are kept in a bounded deque; the trailing unterminated
    line (typically a shell prompt) is held separately in ``partial`` until
    a newline arrives, so reads never see a prompt split in two.

    An ``asyncio.Event`` is set whenever new data arrives, allowing
    consumers to ``await`` instead of polling.  Call ``attach_loop()``
    once from the asyncio thread to enable this.
    """

    def __init__(self, max_lines: int = 5_000) -> None:
        self._lines: deque[str] = deque(maxlen=max_lines)
        self._partial: str = ""
        self._lock = threading.Lock()
        self._data_event: asyncio.Event | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    def attach_loop(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        """Attach an asyncio event loop so appends can signal waiters."""
        self._loop = loop or asyncio.get_running_loop()
        self._data_event = asyncio.Event()

    def append_text(self, text: str) -> None:
        """Append a chunk of text, which need not end on a line boundary."""
        with self._lock:
            pieces = (self._partial + text).split("\n")
            self._partial = pieces.pop()
            self._lines.extend(pieces)
        if self._data_event is not None and self._loop is not None:
            self._loop.call_soon_threadsafe(self._data_event.set)

    async def wait_for_data(self, timeout: float | None = None) -> bool:
        """Wait until new data is appended (or timeout).

        Returns True if data arrived, False on timeout.
        """
        if self._data_event is None:
            await asyncio.sleep(0.05)
            return True
        try:
            await asyncio.wait_for(self._data_event.wait(), timeout=timeout)
            self._data_event.clear()
            return True
        except asyncio.TimeoutError:
            return False

    def read_all(self) -> str:
        """Read all buffered content, including the unterminated tail."""
        with self._lock:
            return "\n".join([*self._lines, self._partial])

    def read_tail(self, n: int = 100) -> list[str]:
        """Read the last N lines; a non-empty partial line counts as one."""
        with self._lock:
            lines = list(self._lines)
            if self._partial:
                lines.append(self._partial)
        return lines[-n:] if len(lines) > n else lines

    @property
    def line_count(self) -> int:
        """Number of complete lines in the buffer."""
        with self._lock:
            return len(self._lines)

    @property
    def partial(self) -> str:
        with self._lock:
            return self._partial

    def clear(self) -> None:
        """Clear the buffer."""
        with self._lock:
            self._lines.clear()
            self._partial = ""
