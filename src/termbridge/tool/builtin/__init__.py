"""Built-in agent tools."""

from termbridge.tool.builtin.execute_command import ExecuteCommandTool

__all__ = [
    "ExecuteCommandTool",
]
