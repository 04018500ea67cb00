"""Output truncation — bound command output before it reaches the agent."""

from __future__ import annotations

import re

MAX_LINES = 30
MAX_CHARS = 1000
EMPTY_OUTPUT = "Command executed successfully."
CONTENT_TRUNCATED = "[... content truncated ...]"

# CSI (including private "?" modes), OSC terminated by BEL or ST, and
# two-byte escapes such as charset selection.
_ANSI_RE = re.compile(
    r"\x1b\[[0-9;?]*[a-zA-Z]"
    r"|\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)"
    r"|\x1b[()][A-Za-z0-9]"
    r"|\x1b[=>]"
)


def hidden_lines_marker(count: int) -> str:
    return f"[... {count} more lines hidden ...]"


def truncate_lines(
    lines: list[str],
    max_lines: int = MAX_LINES,
    max_chars: int = MAX_CHARS,
) -> str:
    """Join command output lines, keeping the head and tail when too large.

    Output over ``max_lines`` lines keeps the first and last ``max_lines // 2``
    lines around a marker line counting the hidden ones.  Output within the
    line limit but over ``max_chars`` characters keeps the first and last
    ``max_chars // 2`` characters around a truncation marker.  Output within
    both limits is returned trimmed, with a placeholder when it is empty.
    """
    content = "\n".join(lines)

    if len(lines) > max_lines:
        keep = max_lines // 2
        kept = [
            *lines[:keep],
            hidden_lines_marker(len(lines) - 2 * keep),
            *lines[-keep:],
        ]
        return "\n".join(kept).strip()

    if len(content) > max_chars:
        half = max_chars // 2
        return f"{content[:half]}\n{CONTENT_TRUNCATED}\n{content[-half:]}".strip()

    return content.strip() or EMPTY_OUTPUT


def normalize_newlines(text: str) -> str:
    """Convert terminal CRLF / bare CR line endings to LF."""
    return text.replace("\r\n", "\n").replace("\r", "\n")


def strip_ansi(text: str) -> str:
    """Strip ANSI escape sequences from text."""
    return _ANSI_RE.sub("", text)


def sanitize_binary_output(text: str) -> str:
    """Remove binary garbage from output.

    Keeps printable chars, tabs, newlines, and carriage returns.
    Strips everything else (control chars, undefined code points, format chars).
    """
    cleaned = []
    for ch in text:
        cp = ord(ch)
        if ch in ("\t", "\n", "\r"):
            cleaned.append(ch)
        elif cp >= 32 and cp not in range(0x7F, 0xA0):
            if cp not in range(0xFFF9, 0xFFFC):
                cleaned.append(ch)
    return "".join(cleaned)


def clean_terminal_text(text: str) -> str:
    """Strip escapes and control bytes and normalize line endings."""
    return sanitize_binary_output(normalize_newlines(strip_ansi(text)))
