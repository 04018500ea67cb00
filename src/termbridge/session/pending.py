"""Counting wait-group for commands that have started but not settled."""

from __future__ import annotations

import asyncio
import logging

logger = logging.getLogger(__name__)


class PendingCommands:
    """Tracks in-flight command executions.

    Callers that must not finish a larger unit of work (e.g. persisting a
    conversation turn) while commands are running call ``wait()``; every
    ``start()`` is paired with exactly one ``done()`` by the executor.
    """

    def __init__(self) -> None:
        self._count = 0
        self._idle = asyncio.Event()
        self._idle.set()

    def start(self) -> None:
        self._count += 1
        self._idle.clear()
        logger.debug("Command started. Pending commands: %d", self._count)

    def done(self) -> None:
        if self._count == 0:
            logger.warning("PendingCommands.done() called with nothing pending")
            return
        self._count -= 1
        logger.debug("Command completed. Pending commands: %d", self._count)
        if self._count == 0:
            self._idle.set()

    @property
    def count(self) -> int:
        return self._count

    async def wait(self, timeout: float | None = None) -> bool:
        """Wait until no commands are pending.

        Returns True once idle, False if ``timeout`` elapsed first.
        """
        try:
            await asyncio.wait_for(self._idle.wait(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            return False
