"""Tool system — base classes and output truncation."""

from termbridge.tool.base import BaseTool, CommandResult
from termbridge.tool.truncation import truncate_lines

__all__ = [
    "BaseTool",
    "CommandResult",
    "truncate_lines",
]
