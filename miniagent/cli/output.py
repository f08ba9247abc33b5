"""Output formatting utilities for the CLI."""

from __future__ import annotations

import json
from typing import Any

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.syntax import Syntax

from miniagent.llm.types import StreamChunk, ToolCall
from miniagent.types import ToolResult


class OutputFormatter:
    """Rich-based rendering of a streaming agent run."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()
        self._in_thinking = False

    async def on_chunk(self, chunk: StreamChunk) -> None:
        """Stream callback: print thinking dimmed, then answer text."""
        if chunk.thinking:
            if not self._in_thinking:
                self.console.print("[dim]thinking>[/dim] ", end="")
                self._in_thinking = True
            self.console.print(chunk.thinking, style="dim", end="", markup=False)
        if chunk.content:
            if self._in_thinking:
                self.console.print()
                self._in_thinking = False
            self.console.print(chunk.content, end="", markup=False, highlight=False)
        if chunk.done:
            self._in_thinking = False
            self.console.print()
            for tc in chunk.tool_calls or ():
                self.format_tool_call(tc)

    async def on_tool_result(self, tool_call: ToolCall, result: ToolResult) -> None:
        self.format_tool_result(tool_call.name, result)

    def format_tool_call(self, tool_call: ToolCall) -> None:
        args = json.dumps(tool_call.arguments, ensure_ascii=False)
        self.console.print(f"  [cyan]->[/cyan] [bold]{escape(tool_call.name)}[/bold] {escape(args[:200])}")

    def format_tool_result(self, tool_name: str, result: ToolResult) -> None:
        status = "[green]OK[/green]" if result.success else "[red]FAILED[/red]"
        text = result.content if result.success else (result.error or result.content)
        self.console.print(f"  {escape(f'[{tool_name}]')} {status}: {escape(text[:200])}")

    def format_config(self, data: dict[str, Any]) -> None:
        self.console.print(Panel(
            Syntax(json.dumps(data, indent=2), "json", theme="monokai"),
            title="Effective config",
        ))
