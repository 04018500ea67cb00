"""PTY process management — one managed shell per conversation.

Sessions run in their own process group, fan their raw output out to any
number of consumers, and detect command boundaries heuristically from the
input they receive and the prompt sentinel in their output.
"""

from termbridge.pty.buffer import RollingBuffer
from termbridge.pty.manager import SessionRegistry
from termbridge.pty.session import (
    OutputChunk,
    ProcessExit,
    PTYSession,
    PTYStatus,
    SpawnSpec,
)

__all__ = [
    "OutputChunk",
    "ProcessExit",
    "PTYSession",
    "PTYStatus",
    "RollingBuffer",
    "SessionRegistry",
    "SpawnSpec",
]
