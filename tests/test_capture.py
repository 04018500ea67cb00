"""Tests for termbridge.tool.capture."""

from __future__ import annotations

import asyncio

import pytest

from termbridge.pty.session import ProcessExit, PTYStatus
from termbridge.session.status import StatusType
from termbridge.tool.base import CommandResult
from termbridge.tool.capture import (
    PROCESSING_FAILED,
    capture_command,
    extract_output,
    still_running_message,
)
from termbridge.tool.truncation import EMPTY_OUTPUT


class TestExtractOutput:
    def test_strips_echo_and_prompt(self) -> None:
        raw = "echo hi\r\nhi\r\n/root # "
        assert extract_output(raw, "echo hi", "#") == "hi"

    def test_colored_prompt(self) -> None:
        raw = "pwd\r\n/workspace\r\n\x1b[34m/workspace\x1b[0m \x1b[32mdocker-terminal\x1b[0m "
        assert extract_output(raw, "pwd", "docker-terminal") == "/workspace"

    def test_only_one_echo_line_dropped(self) -> None:
        raw = "echo x\r\necho x\r\n/root # "
        assert extract_output(raw, "echo x", "#") == "echo x"

    def test_single_line_kept(self) -> None:
        assert extract_output("/root # ", "true", "#") == "/root #"

    def test_no_output(self) -> None:
        assert extract_output("true\r\n/root # ", "true", "#") == EMPTY_OUTPUT

    def test_echo_after_stale_prompt(self) -> None:
        raw = "/root # ls\r\nREADME\r\n/root # "
        assert extract_output(raw, "ls", "#") == "README"


class TestCaptureCommand:
    async def test_echo(self, make_session) -> None:
        session = make_session(script={"echo hi": ["echo hi\r\nhi\r\n/root # "]})
        result = await capture_command(session, "echo hi")
        assert result.success is True
        assert result.output == "hi"
        assert result.command == "echo hi"
        assert session.writes == ["echo hi\n"]

    async def test_output_split_across_chunks(self, make_session) -> None:
        session = make_session(script={"ls": ["ls\r\n", "a  b\r\n", "/root # "]})
        result = await capture_command(session, "ls")
        assert result.output == "a  b"

    async def test_long_output_shortened(self, make_session) -> None:
        body = "".join(f"ln{i:03d}\r\n" for i in range(50))
        session = make_session(script={"seq 50": [f"seq 50\r\n{body}/root # "]})
        result = await capture_command(session, "seq 50")
        lines = result.output.split("\n")
        assert lines[:15] == [f"ln{i:03d}" for i in range(15)]
        assert lines[15] == "[... 20 more lines hidden ...]"
        assert lines[16:] == [f"ln{i:03d}" for i in range(35, 50)]

    async def test_timeout_reports_still_running(self, make_session) -> None:
        session = make_session(script={"sleep 5": ["sleep 5\r\n"]})
        result = await capture_command(session, "sleep 5", timeout_ms=100)
        assert result.success is True
        assert result.output == still_running_message("sleep 5")
        assert result.output.startswith('Command "sleep 5" is still running')

    async def test_nonzero_exit(self, make_session) -> None:
        session = make_session(script={"exit 1": ["exit 1\r\n", ProcessExit(exit_code=1)]})
        result = await capture_command(session, "exit 1")
        assert result.success is False
        assert result.error == "Command exited with code 1"

    async def test_zero_exit_returns_collected_output(self, make_session) -> None:
        session = make_session(
            script={"./run": ["./run\r\n", "done\r\n", ProcessExit(exit_code=0)]}
        )
        result = await capture_command(session, "./run")
        assert result.success is True
        assert result.output == "done"

    async def test_prompt_then_exit_resolves_once_with_output(self, make_session) -> None:
        session = make_session(
            script={"make": ["make\r\nok\r\n/root # ", ProcessExit(exit_code=2)]}
        )
        result = await capture_command(session, "make")
        assert result.success is True
        assert result.output == "ok"

    async def test_exit_then_prompt_resolves_once_with_failure(self, make_session) -> None:
        session = make_session(
            script={"make": [ProcessExit(exit_code=2), "make\r\nok\r\n/root # "]}
        )
        result = await capture_command(session, "make")
        assert result.success is False
        assert result.error == "Command exited with code 2"

    async def test_write_failure(self, make_session) -> None:
        session = make_session()
        session._status = PTYStatus.KILLED
        result = await capture_command(session, "ls")
        assert result.success is False
        assert "Failed to write" in result.error

    async def test_subscription_released(self, make_session) -> None:
        session = make_session(script={"echo hi": ["echo hi\r\nhi\r\n/root # "]})
        await capture_command(session, "echo hi")
        await capture_command(session, "sleep 1", timeout_ms=20)
        assert session._subscribers == []

    async def test_clears_scroll_buffer_first(self, make_session) -> None:
        session = make_session(script={"echo hi": ["echo hi\r\nhi\r\n/root # "]})
        session.feed_output("old output\r\n")
        await capture_command(session, "echo hi")
        assert "old output" not in session.buffer.read_all()

    async def test_start_and_end_reported_once(self, make_session) -> None:
        starts, ends = [], []
        session = make_session(script={"echo hi": ["echo hi\r\nhi\r\n/root # "]})
        session.set_callbacks(
            on_command_start=lambda s, cmd: starts.append(cmd),
            on_command_end=lambda s: ends.append(s.key),
        )
        await capture_command(session, "echo hi")
        assert starts == ["echo hi"]
        assert ends == ["chat-1"]
        assert session.in_command is False

    async def test_timeout_leaves_command_running(self, make_session) -> None:
        ends = []
        session = make_session(script={"sleep 5": ["sleep 5\r\n"]})
        session.set_callbacks(on_command_end=lambda s: ends.append(s.key))
        await capture_command(session, "sleep 5", timeout_ms=50)
        assert session.in_command is True
        assert ends == []
        session.feed_output("/root # ")
        assert session.in_command is False
        assert ends == ["chat-1"]

    async def test_write_failure_ends_command(self, make_session) -> None:
        ends = []
        session = make_session()
        session.set_callbacks(on_command_end=lambda s: ends.append(s.key))
        session._status = PTYStatus.KILLED
        await capture_command(session, "ls")
        assert session.in_command is False
        assert ends == ["chat-1"]

    async def test_processing_failure(self, make_session, monkeypatch) -> None:
        def broken(*args, **kwargs):
            raise ValueError("bad output")

        monkeypatch.setattr("termbridge.tool.capture.extract_output", broken)
        session = make_session(script={"ls": ["ls\r\n/root # "]})
        result = await capture_command(session, "ls")
        assert result.success is True
        assert result.output == PROCESSING_FAILED


class TestResolutionRace:
    @pytest.mark.parametrize("delay", [0.045, 0.05, 0.055])
    @pytest.mark.parametrize("exit_first", [False, True])
    async def test_prompt_exit_and_timeout_together(
        self, registry, tracker, spec, delay, exit_first
    ) -> None:
        session = await registry.create("chat-1", spec)
        q, _ = tracker.subscribe("chat-1")
        loop = asyncio.get_running_loop()
        events = ["x\r\nout\r\n/root # ", ProcessExit(exit_code=1)]
        if exit_first:
            events.reverse()
        for event in events:
            loop.call_later(delay, session.emit, event)

        result = await capture_command(session, "x", timeout_ms=50)
        await asyncio.sleep(0.05)

        assert result in (
            CommandResult.ok("x", "out"),
            CommandResult.ok("x", still_running_message("x")),
            CommandResult.failed("x", "Command exited with code 1"),
        )
        assert session._subscribers == []
        assert session.in_command is False
        statuses = []
        while not q.empty():
            statuses.append(q.get_nowait().type)
        assert statuses == [StatusType.COMMAND_START, StatusType.COMMAND_END]
