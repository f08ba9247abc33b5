"""Tool contract, catalog and argument validation."""

from miniagent.tools.base import Tool, normalize_schema
from miniagent.tools.registry import ToolRegistry
from miniagent.tools.validation import ToolValidator

__all__ = [
    "Tool",
    "ToolRegistry",
    "ToolValidator",
    "normalize_schema",
]
