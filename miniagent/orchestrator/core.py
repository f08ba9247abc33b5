"""
Agent loop -- the ReAct cycle that ties the client and the tools together.

The agent:
1. Owns the conversation history (system message first, append-only)
2. Sends the history and the tool catalog to the LLM client
3. Streams the model turn, forwarding text/thinking to an observer
4. Appends the assistant turn to history
5. Executes requested tools concurrently and appends their results
6. Loops until a turn has no tool calls, or the step ceiling is reached
"""

from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path
from typing import Awaitable, Callable, Iterable, Sequence

from miniagent.llm.client import LLMClient
from miniagent.llm.context import ContextWindow
from miniagent.llm.token_counter import TokenCounter
from miniagent.llm.types import (
    AssistantMessage,
    ContentSegment,
    Message,
    StreamChunk,
    SystemMessage,
    ToolCall,
    ToolMessage,
    UserMessage,
)
from miniagent.tools.base import Tool
from miniagent.tools.registry import ToolRegistry
from miniagent.tools.validation import ToolValidator
from miniagent.types import ErrorCode, ToolResult

logger = logging.getLogger(__name__)

StreamCallback = Callable[[StreamChunk], Awaitable[None]]
ToolResultCallback = Callable[[ToolCall, ToolResult], Awaitable[None]]


def build_system_prompt(base_prompt: str, workspace_dir: Path | None) -> str:
    """Append a workspace section to *base_prompt* unless it has one."""
    if workspace_dir is None or "Current Workspace" in base_prompt:
        return base_prompt
    return (
        f"{base_prompt}\n\n"
        "## Current Workspace\n"
        f"You are currently working in: `{workspace_dir}`\n"
        "All relative paths will be resolved relative to this directory."
    )


def format_tool_result(result: ToolResult) -> str:
    """Text the model sees for a tool result, success or failure."""
    if result.success:
        return result.content
    return f"Error: {result.error or result.content}"


class Agent:
    """
    Multi-step tool-using agent.

    Parameters
    ----------
    llm_client : LLMClient
        Client used for every model call.
    system_prompt : str
        Instruction text; becomes the first history entry.
    tools : ToolRegistry or iterable of Tool
        Tool catalog passed unchanged to every model call.
    max_steps : int
        Maximum number of model calls per ``run()``.
    workspace_dir : str or Path, optional
        Working directory for tools.  Created if missing and described in
        the system prompt.
    token_limit : int
        Budget for the request window; older turns beyond it are not sent
        (they stay in history).
    tool_timeout : float
        Max seconds for a single tool execution.
    stream_callback : callable
        Async observer receiving every ``StreamChunk`` as it arrives.
    tool_result_callback : callable
        Async observer receiving ``(tool_call, result)`` after each tool runs.
    """

    CEILING_MESSAGE = "Task couldn't be completed after {max_steps} steps."

    def __init__(
        self,
        llm_client: LLMClient,
        system_prompt: str,
        tools: ToolRegistry | Iterable[Tool] | None = None,
        max_steps: int = 50,
        workspace_dir: str | Path | None = None,
        token_limit: int = 80_000,
        tool_timeout: float = 120.0,
        stream_callback: StreamCallback | None = None,
        tool_result_callback: ToolResultCallback | None = None,
        token_counter: TokenCounter | None = None,
    ) -> None:
        self.llm_client = llm_client
        self.registry = tools if isinstance(tools, ToolRegistry) else ToolRegistry(tools)
        self.max_steps = max_steps
        self.tool_timeout = tool_timeout
        self.stream_callback = stream_callback
        self.tool_result_callback = tool_result_callback

        self.workspace_dir: Path | None = None
        if workspace_dir is not None:
            self.workspace_dir = Path(workspace_dir).expanduser().resolve()
            self.workspace_dir.mkdir(parents=True, exist_ok=True)

        self.system_prompt = build_system_prompt(system_prompt, self.workspace_dir)
        self.window = ContextWindow(
            token_counter or TokenCounter(llm_client.model), token_limit
        )
        self._messages: list[Message] = [SystemMessage(content=self.system_prompt)]

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    @property
    def history(self) -> tuple[Message, ...]:
        """Snapshot of the conversation history."""
        return tuple(self._messages)

    def add_user_message(self, content: str | Sequence[ContentSegment]) -> None:
        if not isinstance(content, str):
            content = tuple(content)
        self._messages.append(UserMessage(content=content))

    def clear_history_keep_system(self) -> int:
        """Reset history to the system message.  Returns the number removed."""
        removed = len(self._messages) - 1
        self._messages = [self._messages[0]]
        return removed

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def run(self) -> str:
        """
        Drive the conversation until the model stops calling tools.

        Returns the final assistant text, or the ceiling message when
        ``max_steps`` model calls all requested tools.  Errors from the
        model call propagate; history keeps everything appended before it.
        """
        tools = self.registry.list()
        tool_schemas = self.registry.to_schema()

        for step in range(self.max_steps):
            request, _report = self.window.select(self._messages, tool_schemas)
            logger.debug("Step %d/%d: sending %d messages", step + 1, self.max_steps, len(request))

            assistant = await self._stream_turn(request, tools)
            self._messages.append(assistant)

            if not assistant.tool_calls:
                return assistant.content or ""

            # Full join: every result is appended before the next model call,
            # in the order the calls were emitted.
            results = await asyncio.gather(
                *(self._execute_tool_call(tc) for tc in assistant.tool_calls)
            )
            for tc, result in zip(assistant.tool_calls, results):
                self._messages.append(
                    ToolMessage(
                        content=format_tool_result(result),
                        tool_call_id=tc.id,
                        name=tc.name,
                    )
                )

        logger.warning("Step ceiling reached (%d steps)", self.max_steps)
        return self.CEILING_MESSAGE.format(max_steps=self.max_steps)

    async def _stream_turn(
        self, messages: Sequence[Message], tools: Sequence[Tool]
    ) -> AssistantMessage:
        """Consume one streamed model turn into an ``AssistantMessage``."""
        content_parts: list[str] = []
        thinking_parts: list[str] = []
        tool_calls: list[ToolCall] = []

        stream = self.llm_client.generate_stream(messages, tools or None)
        try:
            async for chunk in stream:
                if chunk.content:
                    content_parts.append(chunk.content)
                if chunk.thinking:
                    thinking_parts.append(chunk.thinking)
                if chunk.tool_calls:
                    tool_calls.extend(chunk.tool_calls)
                if self.stream_callback is not None:
                    await self.stream_callback(chunk)
                if chunk.done:
                    break
        finally:
            await stream.aclose()

        return AssistantMessage(
            content="".join(content_parts) or None,
            thinking="".join(thinking_parts) or None,
            tool_calls=tuple(tool_calls) or None,
        )

    # ------------------------------------------------------------------
    # Tool execution
    # ------------------------------------------------------------------

    async def _execute_tool_call(self, tool_call: ToolCall) -> ToolResult:
        """
        Execute a single tool call.  Never raises.

        Steps:
        1. Registry lookup
        2. Validate args
        3. Execute with timeout
        4. Notify the observer
        """
        result = await self._run_tool(tool_call)
        if result.success:
            logger.info("Tool %s (%s) succeeded", tool_call.name, tool_call.id)
        else:
            logger.info(
                "Tool %s (%s) failed: [%s] %s",
                tool_call.name,
                tool_call.id,
                result.error_code,
                result.error,
            )
        if self.tool_result_callback is not None:
            try:
                await self.tool_result_callback(tool_call, result)
            except Exception:
                logger.exception("tool_result_callback failed for %s", tool_call.name)
        return result

    async def _run_tool(self, tool_call: ToolCall) -> ToolResult:
        # 1. Registry lookup
        tool = self.registry.get(tool_call.name)
        if tool is None:
            return ToolResult(
                success=False,
                content=f"Unknown tool: {tool_call.name}",
                error=f"Unknown tool: {tool_call.name}",
                error_code=ErrorCode.UNKNOWN_TOOL,
            )

        # 2. Validate args
        valid, error_msg = ToolValidator.validate(tool, tool_call.arguments)
        if not valid:
            return ToolResult(
                success=False,
                content=f"Validation error: {error_msg}",
                error=f"Validation error: {error_msg}",
                error_code=ErrorCode.VALIDATION_ERROR,
            )

        # 3. Execute with timeout
        start = time.monotonic()
        try:
            result = await asyncio.wait_for(
                tool.execute(**tool_call.arguments),
                timeout=self.tool_timeout,
            )
        except asyncio.TimeoutError:
            return ToolResult(
                success=False,
                content=f"Tool timed out after {self.tool_timeout}s",
                error=f"Timeout after {self.tool_timeout}s",
                error_code=ErrorCode.TIMEOUT,
            )
        except Exception as e:
            logger.exception("Tool %s raised", tool_call.name)
            return ToolResult(
                success=False,
                content=f"Tool exception: {e}",
                error=f"{type(e).__name__}: {e}",
                error_code=ErrorCode.TOOL_EXCEPTION,
            )

        logger.debug(
            "Tool %s finished in %d ms",
            tool_call.name,
            int((time.monotonic() - start) * 1000),
        )
        return result
