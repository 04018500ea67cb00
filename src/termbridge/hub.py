"""Terminal hub — the process-wide store behind every boundary operation.

One ``TerminalHub`` is constructed at startup and handed to whatever
transport serves the UI and the agent runtime.  It owns the session
registry and the command tracker; nothing in termbridge keeps module-level
state.
"""

from __future__ import annotations

import logging
from typing import AsyncIterator

from pydantic import ValidationError

from termbridge.config import TermbridgeConfig
from termbridge.errors import ConfigurationError, SessionNotFoundError
from termbridge.pty.manager import NO_TARGET_MESSAGE, SessionRegistry
from termbridge.pty.session import OutputChunk, ProcessExit, PTYSession, SpawnSpec
from termbridge.session.pending import PendingCommands
from termbridge.session.status import CommandTracker, StatusEvent
from termbridge.tool.base import CommandResult
from termbridge.tool.builtin.execute_command import ExecuteCommandTool

logger = logging.getLogger(__name__)


class TerminalHub:
    """Session lifecycle, live streams and agent execution for all keys."""

    def __init__(
        self,
        config: TermbridgeConfig | None = None,
        tracker: CommandTracker | None = None,
        registry: SessionRegistry | None = None,
    ) -> None:
        self.config = config or TermbridgeConfig()
        self.tracker = tracker or CommandTracker()
        self.registry = registry or SessionRegistry(
            self.tracker, prompt_timeout=self.config.executor.prompt_timeout
        )

    def spawn_spec(self, **overrides) -> SpawnSpec | None:
        """Spawn spec for the configured target, or None if there is none."""
        if not self.config.target.container:
            return None
        return SpawnSpec.from_target(self.config.target, **overrides)

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    async def attach(self, key: str, spec: SpawnSpec | None = None) -> PTYSession:
        """Start a fresh session for ``key``, replacing any existing one.

        Raises:
            ConfigurationError: no spec given and no target configured.
            SpawnError: the shell could not be started.
        """
        spec = spec or self.spawn_spec()
        if spec is None:
            raise ConfigurationError(NO_TARGET_MESSAGE)
        await self.registry.cleanup(key)
        return await self.registry.create(key, spec)

    def write(self, key: str, data: str | bytes) -> bool:
        session = self.registry.get(key)
        if session is None:
            logger.warning("Write for unknown session %s dropped", key)
            return False
        return session.write(data)

    def resize(self, key: str, cols: int, rows: int) -> bool:
        session = self.registry.get(key)
        if session is None:
            return False
        return session.resize(cols, rows)

    def terminate(self, key: str) -> bool:
        """Interrupt the running command.  Returns whether a signal was sent."""
        session = self.registry.get(key)
        if session is None:
            return False
        return session.terminate()

    async def cleanup(self, key: str) -> None:
        await self.registry.cleanup(key)

    async def shutdown(self) -> None:
        await self.registry.cleanup_all()
        self.tracker.close()

    # ------------------------------------------------------------------
    # Streams
    # ------------------------------------------------------------------

    async def stream_output(self, key: str) -> AsyncIterator[str]:
        """Yield raw output chunks of ``key`` until its process exits.

        A viewer that falls too far behind is dropped and its stream ends.

        Raises:
            SessionNotFoundError: no session exists for ``key``.
        """
        session = self.registry.get(key)
        if session is None:
            raise SessionNotFoundError(key)
        queue = session.subscribe()
        try:
            while True:
                event = await queue.get()
                if event is None or isinstance(event, ProcessExit):
                    return
                if isinstance(event, OutputChunk):
                    yield event.data
        finally:
            session.unsubscribe(queue)

    def stream_status(self, key: str) -> AsyncIterator[StatusEvent]:
        """Command status events for ``key``, with keep-alive heartbeats.

        Raises:
            SessionNotFoundError: no session exists for ``key``.
        """
        if self.registry.get(key) is None:
            raise SessionNotFoundError(key)
        return self.tracker.stream(
            key, heartbeat_interval=self.config.status.heartbeat_interval
        )

    # ------------------------------------------------------------------
    # Agent execution
    # ------------------------------------------------------------------

    def command_tool(
        self, key: str, pending: PendingCommands | None = None
    ) -> ExecuteCommandTool:
        """The agent tool bound to one conversation's terminal."""
        return ExecuteCommandTool(
            session_key=key,
            registry=self.registry,
            spec_factory=self.spawn_spec,
            pending=pending,
            max_lines=self.config.executor.max_lines,
            max_chars=self.config.executor.max_chars,
        )

    async def execute(
        self,
        key: str,
        command: str,
        timeout_ms: int | None = None,
        pending: PendingCommands | None = None,
    ) -> CommandResult:
        """Run ``command`` in the session of ``key`` and return its result."""
        tool = self.command_tool(key, pending)
        try:
            params = tool.param_model.model_validate(
                {"command": command, "timeout": timeout_ms or self.config.executor.timeout_ms}
            )
        except ValidationError as e:
            return CommandResult.failed(command, f"Invalid parameters: {e}")
        return await tool.execute(params)
