"""CLI entry point for termbridge."""

from __future__ import annotations

import asyncio
import json
import logging
import sys

import typer

from termbridge.config import TermbridgeConfig
from termbridge.errors import TermbridgeError
from termbridge.hub import TerminalHub
from termbridge.session.sse import encode_status_frame
from termbridge.tool.base import CommandResult

app = typer.Typer(
    name="termbridge",
    help="Shared interactive shell sessions for humans and agents.",
    no_args_is_help=True,
)


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


@app.command(name="exec")
def exec_command(
    key: str = typer.Argument(help="Session key (one shell per key)."),
    command: str = typer.Argument(help="Command to run in the session."),
    timeout: int | None = typer.Option(
        None, "--timeout", "-t", help="Timeout in milliseconds (default: from config)."
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug logging."
    ),
    config_file: str | None = typer.Option(
        None, "--config", "-c", help="Config file path."
    ),
) -> None:
    """Run one command the way an agent tool call would and print the result."""
    setup_logging(verbose)
    config = TermbridgeConfig.load(config_file)

    result = asyncio.run(_run_exec(config, key, command, timeout))
    typer.echo(json.dumps(result.to_dict(), indent=2))
    if not result.success:
        raise typer.Exit(1)


async def _run_exec(
    config: TermbridgeConfig, key: str, command: str, timeout: int | None
) -> CommandResult:
    hub = TerminalHub(config)
    try:
        return await hub.execute(key, command, timeout_ms=timeout)
    finally:
        await hub.shutdown()


@app.command()
def watch(
    key: str = typer.Argument(help="Session key (one shell per key)."),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug logging."
    ),
    config_file: str | None = typer.Option(
        None, "--config", "-c", help="Config file path."
    ),
) -> None:
    """Attach to a session: stdin lines go in, output goes to stdout.

    Command status frames are printed to stderr as they would be sent to a
    browser.
    """
    setup_logging(verbose)
    config = TermbridgeConfig.load(config_file)

    code = asyncio.run(_run_watch(config, key))
    if code:
        raise typer.Exit(code)


async def _run_watch(config: TermbridgeConfig, key: str) -> int:
    hub = TerminalHub(config)
    try:
        await hub.attach(key)
    except TermbridgeError as e:
        typer.echo(f"Error: {e}", err=True)
        return 1

    loop = asyncio.get_running_loop()
    lines: asyncio.Queue[str] = asyncio.Queue()
    stdin_fd = sys.stdin.fileno()
    loop.add_reader(stdin_fd, lambda: lines.put_nowait(sys.stdin.readline()))

    async def pump_output() -> None:
        async for chunk in hub.stream_output(key):
            sys.stdout.write(chunk)
            sys.stdout.flush()

    async def pump_status() -> None:
        async for event in hub.stream_status(key):
            sys.stderr.write(encode_status_frame(event))
            sys.stderr.flush()

    async def pump_input() -> None:
        while True:
            line = await lines.get()
            if not line:
                return
            hub.write(key, line)

    tasks = [
        asyncio.create_task(pump_output()),
        asyncio.create_task(pump_status()),
        asyncio.create_task(pump_input()),
    ]
    try:
        await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
    finally:
        loop.remove_reader(stdin_fd)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await hub.shutdown()
    return 0


if __name__ == "__main__":
    app()
