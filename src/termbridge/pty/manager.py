"""Session registry — one PTY session per conversation key."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable

from termbridge.errors import ConfigurationError, SpawnError
from termbridge.pty.session import ProcessExit, PTYSession, SpawnSpec
from termbridge.session.status import CommandTracker

logger = logging.getLogger(__name__)

NO_TARGET_MESSAGE = "No shell session running and no container specified."


class SessionRegistry:
    """Owns the mapping from session key to live PTY session.

    The registry ensures:
    - At most one session per key; a session created over a live one
      displaces and kills it, so no process is ever orphaned
    - Concurrent ``ensure()`` calls for the same key share one spawn
    - A session is unmapped as soon as its process exits, so nothing
      writes to a dead handle through the registry
    - Human-typed command starts/ends reach the command tracker
    """

    def __init__(
        self,
        tracker: CommandTracker,
        prompt_timeout: float = 5.0,
        session_factory: Callable[[str, SpawnSpec], PTYSession] = PTYSession.from_spec,
    ) -> None:
        self._sessions: dict[str, PTYSession] = {}
        self._spawning: dict[str, asyncio.Task[PTYSession]] = {}
        self._lock = asyncio.Lock()
        self._tracker = tracker
        self._prompt_timeout = prompt_timeout
        self._session_factory = session_factory

    def get(self, key: str) -> PTYSession | None:
        """Get the live session for a key."""
        return self._sessions.get(key)

    async def create(self, key: str, spec: SpawnSpec) -> PTYSession:
        """Spawn a session for ``key`` and map it.

        Raises:
            SpawnError: if the process could not start, or died before
                showing a prompt.  Nothing is mapped in that case.
        """
        session = self._session_factory(key, spec)
        self._wire(session)
        await session.start()

        try:
            prompted = await session.wait_for_prompt(self._prompt_timeout)
        except BaseException:
            session.kill()
            raise
        if not prompted and not session.alive:
            tail = "\n".join(session.buffer.read_tail(3)).strip()
            raise SpawnError(
                session.command,
                RuntimeError(tail or "process exited before showing a prompt"),
            )

        async with self._lock:
            previous = self._sessions.get(key)
            self._sessions[key] = session

        if previous is not None:
            logger.warning("Session %s replaced without cleanup, killing previous", key)
            busy = previous.in_command
            previous.kill()
            if busy:
                self._tracker.record_end(key)
        return session

    async def ensure(self, key: str, spec: SpawnSpec | None) -> PTYSession:
        """Return the live session for ``key``, spawning it if needed.

        Raises:
            ConfigurationError: no session exists and ``spec`` is None.
            SpawnError: the spawn failed.
        """
        async with self._lock:
            session = self._sessions.get(key)
            if session is not None and session.alive:
                return session
            task = self._spawning.get(key)
            if task is None:
                if spec is None:
                    raise ConfigurationError(NO_TARGET_MESSAGE)
                task = asyncio.create_task(self.create(key, spec))
                self._spawning[key] = task
                task.add_done_callback(lambda t: self._forget_spawn(key, t))
        return await asyncio.shield(task)

    def _forget_spawn(self, key: str, task: asyncio.Task) -> None:
        if self._spawning.get(key) is task:
            del self._spawning[key]

    async def remove(self, key: str) -> PTYSession | None:
        """Unmap a session without killing it."""
        async with self._lock:
            return self._sessions.pop(key, None)

    async def cleanup(self, key: str) -> None:
        """Kill and unmap the session for ``key``.  Safe to repeat."""
        session = await self.remove(key)
        if session is None:
            return
        session.kill()
        self._tracker.record_end(key)
        logger.info("Cleaned up session %s", key)

    async def cleanup_all(self) -> None:
        """Kill all sessions.  Called on shutdown."""
        for key in list(self._sessions.keys()):
            await self.cleanup(key)
        logger.info("All PTY sessions cleaned up")

    def _wire(self, session: PTYSession) -> None:
        tracker = self._tracker
        session.set_callbacks(
            on_exit=self._on_exit,
            on_command_start=lambda s, command: tracker.record_start(s.key, command),
            on_command_end=lambda s: tracker.record_end(s.key),
        )

    def _on_exit(self, session: PTYSession, exit_event: ProcessExit) -> None:
        # Only the currently mapped session owns the key; a displaced or
        # already cleaned-up one must not clear its successor's state.
        if self._sessions.get(session.key) is not session:
            return
        del self._sessions[session.key]
        if session.in_command:
            self._tracker.record_end(session.key)
        logger.info(
            "Session %s ended with code %s, unmapped", session.key, exit_event.exit_code
        )

    def list_sessions(self) -> list[dict[str, Any]]:
        """List all mapped sessions."""
        return [
            {
                "key": s.key,
                "pid": s.pid,
                "alive": s.alive,
                "status": s.status.value,
                "in_command": s.in_command,
                "cols": s.cols,
                "rows": s.rows,
            }
            for s in self._sessions.values()
        ]

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, key: str) -> bool:
        return key in self._sessions
