"""Execute-command tool — run a command in the conversation's terminal.

The agent shares the terminal with the human viewing it: commands are
typed into the same session the UI displays, and the status stream shows
them running just like hand-typed ones.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable, ClassVar

from pydantic import BaseModel, Field

from termbridge.errors import ConfigurationError, SpawnError
from termbridge.tool.base import BaseTool, CommandResult
from termbridge.tool.capture import DEFAULT_TIMEOUT_MS, capture_command
from termbridge.tool.truncation import MAX_CHARS, MAX_LINES

if TYPE_CHECKING:
    from termbridge.pty.manager import SessionRegistry
    from termbridge.pty.session import SpawnSpec
    from termbridge.session.pending import PendingCommands

logger = logging.getLogger(__name__)


class ExecuteCommandParams(BaseModel):
    command: str = Field(description="The command to execute in the terminal.")
    timeout: int = Field(
        default=DEFAULT_TIMEOUT_MS,
        gt=0,
        description="Timeout in milliseconds (default: 30000).",
    )


class ExecuteCommandTool(BaseTool[ExecuteCommandParams]):
    """Run commands in the persistent terminal session of one conversation.

    The first call spawns the session against the configured target if no
    session exists yet; later calls reuse it, so ``cd`` and environment
    changes persist.  The command shows as running on the status stream
    from dispatch until its prompt returns or the session ends, which for
    a timed-out command is after this call has returned.  Each call is
    paired with exactly one start and one done on ``pending``.
    """

    name: ClassVar[str] = "execute_command"
    description: ClassVar[str] = (
        "Execute a command based on user requirements in the terminal and "
        "return the result. The terminal is shared with the user and keeps "
        "state (working directory, environment) between calls. Long output "
        "is shortened to its beginning and end. If a command is still "
        "running when the timeout expires, it keeps running in the terminal."
    )
    param_model: ClassVar[type[BaseModel]] = ExecuteCommandParams

    def __init__(
        self,
        session_key: str,
        registry: SessionRegistry,
        spec_factory: Callable[[], SpawnSpec | None],
        pending: PendingCommands | None = None,
        max_lines: int = MAX_LINES,
        max_chars: int = MAX_CHARS,
    ) -> None:
        self._key = session_key
        self._registry = registry
        self._spec_factory = spec_factory
        self._pending = pending
        self._max_lines = max_lines
        self._max_chars = max_chars

    async def execute(self, params: ExecuteCommandParams) -> CommandResult:
        command = params.command
        if self._pending is not None:
            self._pending.start()
        try:
            return await self._execute(command, params.timeout)
        except (ConfigurationError, SpawnError) as e:
            logger.warning("Cannot run %r in session %s: %s", command, self._key, e)
            return CommandResult.failed(command, str(e))
        except Exception as e:
            logger.error(
                "Command %r failed in session %s: %s", command, self._key, e, exc_info=True
            )
            return CommandResult.failed(command, str(e) or "Unknown error occurred")
        finally:
            if self._pending is not None:
                self._pending.done()

    async def _execute(self, command: str, timeout_ms: int) -> CommandResult:
        session = self._registry.get(self._key)
        if session is None or not session.alive:
            session = await self._registry.ensure(self._key, self._spec_factory())

        logger.info("Running %r in session %s", command, self._key)
        result = await capture_command(
            session,
            command,
            timeout_ms=timeout_ms,
            max_lines=self._max_lines,
            max_chars=self._max_chars,
        )
        logger.debug("Command %r result: success=%s", command, result.success)
        return result
