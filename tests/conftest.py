"""Shared fixtures: PTY sessions with scripted output instead of a process."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Callable

import pytest

from termbridge.pty.manager import SessionRegistry
from termbridge.pty.session import ProcessExit, PTYSession, PTYStatus, SpawnSpec
from termbridge.session.status import CommandTracker


@dataclass
class ScriptedSession(PTYSession):
    """A PTYSession whose process is replaced by a script.

    Writes are recorded; a written line found in ``script`` replays its
    events (output strings or ``ProcessExit``) on the next loop iterations.
    """

    script: dict[str, list[str | ProcessExit]] = field(default_factory=dict)
    writes: list[str] = field(default_factory=list)
    start_error: Exception | None = None
    show_prompt: bool = True

    async def start(self) -> None:
        if self.start_error is not None:
            raise self.start_error
        if self.show_prompt:
            self.feed_output(f"/root {self.sentinel} ")

    def write(self, data: str | bytes, track: bool = True) -> bool:
        if not self.alive:
            return False
        text = data.decode() if isinstance(data, bytes) else data
        self.writes.append(text)
        if track:
            self._track_input(text)
        loop = asyncio.get_running_loop()
        for event in self.script.get(text.rstrip("\n"), []):
            loop.call_soon(self.emit, event)
        return True

    def emit(self, event: str | ProcessExit) -> None:
        if isinstance(event, ProcessExit):
            if self.alive:
                self._status = PTYStatus.EXITED
                self._deliver_exit(event)
        else:
            self.feed_output(event)


@pytest.fixture
def tracker() -> CommandTracker:
    return CommandTracker()


@pytest.fixture
def spec() -> SpawnSpec:
    return SpawnSpec(container="sandbox", sentinel="#")


@pytest.fixture
def sessions() -> list[ScriptedSession]:
    """Every session created by the ``registry`` fixture, in order."""
    return []


@pytest.fixture
def session_factory(
    sessions: list[ScriptedSession],
) -> Callable[[str, SpawnSpec], ScriptedSession]:
    def factory(key: str, spec: SpawnSpec) -> ScriptedSession:
        session = ScriptedSession(key=key, sentinel=spec.sentinel, command=["fake"])
        sessions.append(session)
        return session

    return factory


@pytest.fixture
def registry(
    tracker: CommandTracker, session_factory: Callable[[str, SpawnSpec], ScriptedSession]
) -> SessionRegistry:
    return SessionRegistry(tracker, prompt_timeout=0.2, session_factory=session_factory)


@pytest.fixture
def make_session() -> Callable[..., ScriptedSession]:
    """Build a started-looking ScriptedSession: ``make_session(script=...)``."""

    def make(key: str = "chat-1", sentinel: str = "#", **kwargs) -> ScriptedSession:
        return ScriptedSession(key=key, sentinel=sentinel, command=["fake"], **kwargs)

    return make
