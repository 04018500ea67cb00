"""Command status tracking, pending-command accounting and stream framing."""

from termbridge.session.pending import PendingCommands
from termbridge.session.status import (
    HEARTBEAT,
    ActiveCommand,
    CommandTracker,
    StatusEvent,
    StatusType,
)

__all__ = [
    "HEARTBEAT",
    "ActiveCommand",
    "CommandTracker",
    "PendingCommands",
    "StatusEvent",
    "StatusType",
]
