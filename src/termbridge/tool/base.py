"""Base tool classes with Pydantic parameter validation."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, ClassVar, Generic, TypeVar

from pydantic import BaseModel

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


@dataclass(frozen=True)
class CommandResult:
    """Outcome of one command execution, returned once to the caller."""

    success: bool
    command: str
    output: str | None = None
    error: str | None = None

    @classmethod
    def ok(cls, command: str, output: str) -> CommandResult:
        return cls(success=True, command=command, output=output)

    @classmethod
    def failed(cls, command: str, error: str) -> CommandResult:
        return cls(success=False, command=command, error=error)

    def to_dict(self) -> dict[str, Any]:
        """Serializable form for tool-call results; unset fields are omitted."""
        data: dict[str, Any] = {"success": self.success}
        if self.output is not None:
            data["output"] = self.output
        if self.error is not None:
            data["error"] = self.error
        data["command"] = self.command
        return data


class BaseTool(ABC, Generic[T]):
    """Base class for agent-callable tools.

    Each tool declares its parameters as a Pydantic model (the type
    parameter T) and always answers with a ``CommandResult``.

    Usage:
        class MyParams(BaseModel):
            command: str

        class MyTool(BaseTool[MyParams]):
            name = "my_tool"
            description = "Does something useful"
            param_model = MyParams

            async def execute(self, params: MyParams) -> CommandResult:
                return CommandResult.ok(params.command, "done")
    """

    name: ClassVar[str]
    description: ClassVar[str]
    param_model: ClassVar[type[BaseModel]]

    async def __call__(self, arguments: dict[str, Any]) -> dict[str, Any]:
        """Validate arguments and execute.

        Never raises: invalid arguments and execution errors come back as
        failed results, ready to hand to the agent runtime.
        """
        command = str(arguments.get("command", ""))
        try:
            params = self.param_model.model_validate(arguments)
        except Exception as e:
            return CommandResult.failed(command, f"Invalid parameters: {e}").to_dict()

        try:
            result = await self.execute(params)  # type: ignore[arg-type]
        except Exception as e:
            logger.error("Tool %s execution error: %s", self.name, e, exc_info=True)
            result = CommandResult.failed(command, f"Error executing {self.name}: {e}")

        return result.to_dict()

    @abstractmethod
    async def execute(self, params: T) -> CommandResult:
        """Execute the tool with validated parameters."""
        ...

    def to_openai_spec(self) -> dict[str, Any]:
        """Convert to OpenAI function tool specification."""
        schema = self.param_model.model_json_schema()
        schema.pop("title", None)
        schema.pop("$defs", None)

        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": schema,
            },
        }
