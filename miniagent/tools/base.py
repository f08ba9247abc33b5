from abc import ABC, abstractmethod

from miniagent.types import ToolResult


def normalize_schema(schema: dict) -> dict:
    s = dict(schema or {})
    s.setdefault("type", "object")
    s.setdefault("properties", {})
    return s


class Tool(ABC):
    """
    A capability the model can invoke.

    The agent only relies on the catalog entry (name, description, JSON-Schema
    parameters) and on ``execute`` returning a ``ToolResult``.  Failures are
    reported through ``ToolResult.success``; exceptions raised by ``execute``
    are caught by the agent and reported the same way.
    """

    @property
    @abstractmethod
    def name(self) -> str: ...

    @property
    @abstractmethod
    def description(self) -> str: ...

    @property
    @abstractmethod
    def parameters(self) -> dict: ...

    @abstractmethod
    async def execute(self, **kwargs) -> ToolResult: ...

    def to_schema(self) -> dict:
        return {
            "name": self.name,
            "description": self.description,
            "parameters": normalize_schema(self.parameters),
        }
