"""Mock tool implementations for testing."""

import asyncio

from miniagent.tools.base import Tool
from miniagent.types import ToolResult


class EchoTool(Tool):
    @property
    def name(self) -> str:
        return "echo"

    @property
    def description(self) -> str:
        return "Echoes the input message back."

    @property
    def parameters(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "message": {"type": "string", "description": "Message to echo"},
            },
            "required": ["message"],
            "additionalProperties": False,
        }

    async def execute(self, **kwargs) -> ToolResult:
        msg = kwargs.get("message", "")
        return ToolResult(success=True, content=msg)


class WriteTool(Tool):
    def __init__(self) -> None:
        self.writes: list[tuple[str, str]] = []

    @property
    def name(self) -> str:
        return "write_file"

    @property
    def description(self) -> str:
        return "Writes content to a file path."

    @property
    def parameters(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "File path to write"},
                "content": {"type": "string", "description": "Content to write"},
            },
            "required": ["path", "content"],
        }

    async def execute(self, **kwargs) -> ToolResult:
        self.writes.append((kwargs["path"], kwargs["content"]))
        return ToolResult(
            success=True,
            content=f"Wrote to {kwargs.get('path', '')}",
        )


class FailingTool(Tool):
    """Reports failure through the result, without raising."""

    @property
    def name(self) -> str:
        return "fail"

    @property
    def description(self) -> str:
        return "Always fails."

    @property
    def parameters(self) -> dict:
        return {"type": "object", "properties": {}}

    async def execute(self, **kwargs) -> ToolResult:
        return ToolResult(success=False, content="", error="disk full")


class RaisingTool(Tool):
    @property
    def name(self) -> str:
        return "explode"

    @property
    def description(self) -> str:
        return "Raises an exception."

    @property
    def parameters(self) -> dict:
        return {"type": "object", "properties": {}}

    async def execute(self, **kwargs) -> ToolResult:
        raise RuntimeError("boom")


class SlowTool(Tool):
    """Sleeps for ``delay`` seconds, recording start and finish order."""

    def __init__(self, name: str = "slow", log: list[str] | None = None) -> None:
        self._name = name
        self.log = log if log is not None else []

    @property
    def name(self) -> str:
        return self._name

    @property
    def description(self) -> str:
        return "Sleeps, then returns."

    @property
    def parameters(self) -> dict:
        return {
            "type": "object",
            "properties": {"delay": {"type": "number"}},
            "required": ["delay"],
        }

    async def execute(self, **kwargs) -> ToolResult:
        self.log.append(f"start:{self._name}")
        await asyncio.sleep(kwargs["delay"])
        self.log.append(f"end:{self._name}")
        return ToolResult(success=True, content=f"{self._name} slept {kwargs['delay']}")


class ExtraKeysTool(Tool):
    @property
    def name(self) -> str:
        return "extra_keys"

    @property
    def description(self) -> str:
        return "Accepts arbitrary extra keys."

    @property
    def parameters(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "base_param": {"type": "string"},
            },
            "required": ["base_param"],
            "additionalProperties": True,
        }

    async def execute(self, **kwargs) -> ToolResult:
        return ToolResult(success=True, content=str(sorted(kwargs)))
