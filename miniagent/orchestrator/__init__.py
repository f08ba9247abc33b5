"""Agent loop."""

from miniagent.orchestrator.core import Agent, build_system_prompt, format_tool_result

__all__ = ["Agent", "build_system_prompt", "format_tool_result"]
