"""Output capture — one bounded result for one command in a live terminal.

The session's output is an unframed stream shared with human viewers.  To
get a result for a single agent command, the capture subscribes to the
stream before writing the command and consumes it until the first of:

* a chunk containing the prompt sentinel (command finished),
* the process exiting,
* the timeout.

A single coroutine drains the subscription and returns on the first of
those, so the result is produced exactly once; the subscription is
released in ``finally`` whichever path wins.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from termbridge.pty.session import ProcessExit
from termbridge.tool.base import CommandResult
from termbridge.tool.truncation import (
    MAX_CHARS,
    MAX_LINES,
    clean_terminal_text,
    truncate_lines,
)

if TYPE_CHECKING:
    from termbridge.pty.session import PTYSession

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 30_000
PROCESSING_FAILED = (
    "Command executed, but output processing failed. See terminal for results."
)


def still_running_message(command: str) -> str:
    return (
        f'Command "{command}" is still running in the terminal. '
        "Check the command status indicator to monitor or terminate it."
    )


def extract_output(
    raw: str,
    command: str,
    sentinel: str,
    max_lines: int = MAX_LINES,
    max_chars: int = MAX_CHARS,
) -> str:
    """Turn captured terminal output into the text returned to the caller.

    Drops the echoed command (first line) and the next prompt (last line),
    one line each, then applies the head/tail size bound.
    """
    lines = clean_terminal_text(raw).split("\n")

    if len(lines) > 1 and lines[0].rstrip().endswith(command.strip()):
        lines.pop(0)

    if len(lines) > 1 and lines[-1].rstrip().endswith(sentinel):
        lines.pop()

    return truncate_lines(lines, max_lines=max_lines, max_chars=max_chars)


async def capture_command(
    session: PTYSession,
    command: str,
    timeout_ms: int = DEFAULT_TIMEOUT_MS,
    max_lines: int = MAX_LINES,
    max_chars: int = MAX_CHARS,
) -> CommandResult:
    """Run ``command`` in ``session`` and wait for its bounded result.

    The session marks the command as running before it is written.  The
    prompt sentinel or the process exit ends it; a timeout does not.  A
    timeout is reported as success with a still-running note: the command
    keeps running, shown as active, in the terminal where viewers can watch
    or interrupt it.
    """
    session.clear()
    # Drained continuously until the deadline, so it is left unbounded.
    queue = session.subscribe(maxsize=0)
    chunks: list[str] = []

    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout_ms / 1000

    try:
        session.begin_command(command)
        if not session.write(f"{command}\n", track=False):
            session.finish_command()
            return CommandResult.failed(
                command, "Failed to write the command to the terminal session."
            )

        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                return CommandResult.ok(command, still_running_message(command))
            try:
                event = await asyncio.wait_for(queue.get(), timeout=remaining)
            except asyncio.TimeoutError:
                return CommandResult.ok(command, still_running_message(command))

            if isinstance(event, ProcessExit):
                logger.debug(
                    "Session %s exited during %r (code=%s)",
                    session.key,
                    command,
                    event.exit_code,
                )
                if event.exit_code != 0:
                    return CommandResult.failed(
                        command, f"Command exited with code {event.exit_code}"
                    )
                return _finish(session, command, chunks, max_lines, max_chars)

            chunks.append(event.data)
            if session.sentinel in event.data:
                return _finish(session, command, chunks, max_lines, max_chars)
    finally:
        session.unsubscribe(queue)


def _finish(
    session: PTYSession,
    command: str,
    chunks: list[str],
    max_lines: int,
    max_chars: int,
) -> CommandResult:
    try:
        output = extract_output(
            "".join(chunks),
            command,
            session.sentinel,
            max_lines=max_lines,
            max_chars=max_chars,
        )
    except Exception:
        logger.exception("Error processing output of %r", command)
        return CommandResult.ok(command, PROCESSING_FAILED)
    return CommandResult.ok(command, output)
