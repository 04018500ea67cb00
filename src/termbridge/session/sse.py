"""Server-sent-event framing for the live output and command status streams.

SSE is line oriented, so raw terminal chunks have their line terminators
escaped; clients reverse it with ``decode_output_frame``.
"""

from __future__ import annotations

import json

from termbridge.session.status import StatusEvent, StatusType

HEARTBEAT_FRAME = ": ping\n\n"

_ESCAPES = {"\\": "\\\\", "\n": "\\n", "\r": "\\r"}
_UNESCAPES = {"\\": "\\", "n": "\n", "r": "\r"}


def encode_output_frame(chunk: str) -> str:
    escaped = "".join(_ESCAPES.get(ch, ch) for ch in chunk)
    return f"data: {escaped}\n\n"


def decode_output_frame(frame: str) -> str:
    """Recover the raw chunk from an output frame."""
    payload = frame.removeprefix("data: ").removesuffix("\n\n")
    out: list[str] = []
    chars = iter(payload)
    for ch in chars:
        if ch == "\\":
            nxt = next(chars, "")
            out.append(_UNESCAPES.get(nxt, "\\" + nxt))
        else:
            out.append(ch)
    return "".join(out)


def encode_status_frame(event: StatusEvent) -> str:
    if event.type == StatusType.HEARTBEAT:
        return HEARTBEAT_FRAME
    return f"data: {json.dumps(event.to_dict())}\n\n"
