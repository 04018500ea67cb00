"""Tests for termbridge.hub.TerminalHub."""

from __future__ import annotations

import asyncio

import pytest

from termbridge.config import StatusConfig, TargetConfig, TermbridgeConfig
from termbridge.errors import ConfigurationError, SessionNotFoundError
from termbridge.hub import TerminalHub
from termbridge.pty.manager import NO_TARGET_MESSAGE
from termbridge.pty.session import OUTPUT_QUEUE_SIZE, ProcessExit, PTYStatus
from termbridge.session.status import HEARTBEAT, StatusType


@pytest.fixture
def config() -> TermbridgeConfig:
    return TermbridgeConfig(
        target=TargetConfig(container="sandbox", container_name="#", forward_env=[])
    )


@pytest.fixture
def hub(config, tracker, registry) -> TerminalHub:
    return TerminalHub(config, tracker=tracker, registry=registry)


class TestLifecycle:
    def test_spawn_spec(self, hub) -> None:
        spec = hub.spawn_spec(cols=120)
        assert spec.container == "sandbox"
        assert spec.sentinel == "#"
        assert spec.cols == 120

    def test_spawn_spec_without_target(self) -> None:
        assert TerminalHub().spawn_spec() is None

    async def test_attach_without_target(self, tracker, registry) -> None:
        hub = TerminalHub(tracker=tracker, registry=registry)
        with pytest.raises(ConfigurationError, match=NO_TARGET_MESSAGE):
            await hub.attach("chat-1")

    async def test_attach_replaces_session(self, hub, sessions) -> None:
        first = await hub.attach("chat-1")
        second = await hub.attach("chat-1")
        assert first.status == PTYStatus.KILLED
        assert hub.registry.get("chat-1") is second
        assert len(sessions) == 2

    async def test_write_resize_terminate_unknown_key(self, hub) -> None:
        assert hub.write("nobody", "ls\n") is False
        assert hub.resize("nobody", 80, 24) is False
        assert hub.terminate("nobody") is False

    async def test_write_reaches_session(self, hub) -> None:
        session = await hub.attach("chat-1")
        assert hub.write("chat-1", "ls\n") is True
        assert session.writes == ["ls\n"]
        assert hub.tracker.get_active("chat-1").command == "ls"

    async def test_terminate_reaches_session(self, hub) -> None:
        session = await hub.attach("chat-1")
        assert hub.terminate("chat-1") is True
        assert session.writes == ["\x03"]

    async def test_shutdown(self, hub, sessions) -> None:
        await hub.attach("chat-1")
        await hub.attach("chat-2")
        await hub.shutdown()
        assert len(hub.registry) == 0
        assert all(not s.alive for s in sessions)


class TestStreams:
    async def test_stream_output_until_exit(self, hub) -> None:
        session = await hub.attach("chat-1")
        received: list[str] = []

        async def consume() -> None:
            async for chunk in hub.stream_output("chat-1"):
                received.append(chunk)

        task = asyncio.create_task(consume())
        await asyncio.sleep(0)
        session.feed_output("hello\r\n")
        session.feed_output("/root # ")
        session.emit(ProcessExit(exit_code=0))
        await asyncio.wait_for(task, timeout=1)
        assert received == ["hello\r\n", "/root # "]
        assert session._subscribers == []

    async def test_lagging_viewer_stream_ends(self, hub) -> None:
        session = await hub.attach("chat-1")
        received: list[str] = []

        async def consume() -> None:
            async for chunk in hub.stream_output("chat-1"):
                received.append(chunk)

        task = asyncio.create_task(consume())
        await asyncio.sleep(0)
        for i in range(OUTPUT_QUEUE_SIZE + 1):
            session.feed_output(f"line {i}\r\n")
        await asyncio.wait_for(task, timeout=1)
        assert received == []
        assert session._subscribers == []
        assert session.alive

    async def test_stream_output_unknown_key(self, hub) -> None:
        with pytest.raises(SessionNotFoundError):
            await hub.stream_output("nobody").__anext__()

    async def test_stream_status_unknown_key(self, hub) -> None:
        with pytest.raises(SessionNotFoundError):
            hub.stream_status("nobody")

    async def test_stream_status(self, tracker, registry) -> None:
        config = TermbridgeConfig(
            target=TargetConfig(container="sandbox", container_name="#", forward_env=[]),
            status=StatusConfig(heartbeat_interval=0.02),
        )
        hub = TerminalHub(config, tracker=tracker, registry=registry)
        await hub.attach("chat-1")
        stream = hub.stream_status("chat-1")
        assert await stream.__anext__() is HEARTBEAT
        hub.write("chat-1", "top\n")
        event = await stream.__anext__()
        assert event.type == StatusType.COMMAND_START
        assert event.command == "top"
        await stream.aclose()


class TestExecute:
    async def test_execute(self, hub) -> None:
        session = await hub.attach("chat-1")
        session.script = {"whoami": ["whoami\r\nroot\r\n/root # "]}
        result = await hub.execute("chat-1", "whoami")
        assert result.success is True
        assert result.output == "root"

    async def test_execute_spawns(self, hub, sessions) -> None:
        result = await hub.execute("chat-1", "sleep 9", timeout_ms=20)
        assert result.success is True
        assert len(sessions) == 1

    async def test_execute_without_target(self, tracker, registry) -> None:
        hub = TerminalHub(tracker=tracker, registry=registry)
        result = await hub.execute("chat-1", "ls")
        assert result.success is False
        assert result.error == NO_TARGET_MESSAGE

    async def test_execute_invalid_timeout(self, hub, sessions) -> None:
        result = await hub.execute("chat-1", "ls", timeout_ms=-5)
        assert result.success is False
        assert result.error.startswith("Invalid parameters")
        assert sessions == []
