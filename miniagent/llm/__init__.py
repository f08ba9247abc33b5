"""LLM subsystem -- conversation model, providers, and streaming tool-call assembly."""

from miniagent.llm.client import LLMClient, LLMProvider
from miniagent.llm.context import ContextWindow
from miniagent.llm.token_counter import TokenCounter
from miniagent.llm.tool_call_assembler import ToolCallAssembler
from miniagent.llm.types import (
    AssistantMessage,
    ContentSegment,
    ImageSegment,
    Message,
    RawToolDelta,
    RetryConfig,
    StreamChunk,
    SystemMessage,
    TextSegment,
    ToolCall,
    ToolMessage,
    UserMessage,
)

__all__ = [
    "AssistantMessage",
    "ContentSegment",
    "ContextWindow",
    "ImageSegment",
    "LLMClient",
    "LLMProvider",
    "Message",
    "RawToolDelta",
    "RetryConfig",
    "StreamChunk",
    "SystemMessage",
    "TextSegment",
    "TokenCounter",
    "ToolCall",
    "ToolCallAssembler",
    "ToolMessage",
    "UserMessage",
]
