"""Core types for the LLM subsystem."""

from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar, Union


# ---------------------------------------------------------------------------
# User content segments
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TextSegment:
    text: str
    type: ClassVar[str] = "text"


@dataclass(frozen=True)
class ImageSegment:
    """Base64-encoded image data attached to a user turn."""

    media_type: str
    data: str
    type: ClassVar[str] = "image"


ContentSegment = Union[TextSegment, ImageSegment]


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ToolCall:
    """A resolved tool call with parsed arguments."""

    id: str
    name: str
    arguments: dict


@dataclass(frozen=True)
class SystemMessage:
    content: str
    role: ClassVar[str] = "system"


@dataclass(frozen=True)
class UserMessage:
    content: str | tuple[ContentSegment, ...]
    role: ClassVar[str] = "user"


@dataclass(frozen=True)
class AssistantMessage:
    """
    One model turn.

    At least one of *content*, *thinking* or *tool_calls* should be set for
    the turn to carry anything; adapters drop empty turns where the wire
    protocol rejects them.
    """

    content: str | None = None
    thinking: str | None = None
    tool_calls: tuple[ToolCall, ...] | None = None
    role: ClassVar[str] = "assistant"

    @property
    def is_empty(self) -> bool:
        return not (self.content or self.thinking or self.tool_calls)


@dataclass(frozen=True)
class ToolMessage:
    """The result of one tool call, tied back to it by *tool_call_id*."""

    content: str
    tool_call_id: str
    name: str | None = None
    role: ClassVar[str] = "tool"


Message = Union[SystemMessage, UserMessage, AssistantMessage, ToolMessage]


# ---------------------------------------------------------------------------
# Streaming
# ---------------------------------------------------------------------------

@dataclass
class RawToolDelta:
    """
    An incremental fragment of a streaming tool call.

    Providers produce these as tool-call fragments arrive.  The
    ToolCallAssembler accumulates them and produces finished ToolCall objects.
    """

    call_index: int
    id: str | None = None
    name_delta: str = ""
    args_delta: str = ""
    done: bool = False


@dataclass
class StreamChunk:
    """
    A single chunk yielded while streaming a model turn.

    *content* and *thinking* carry new text as it arrives.
    *tool_calls* carries fully-assembled tool calls and is only ever set on
    the final chunk.
    *done* is ``True`` on the final chunk; nothing follows it.
    """

    content: str | None = None
    thinking: str | None = None
    tool_calls: list[ToolCall] | None = None
    done: bool = False
    finish_reason: str | None = None


@dataclass(frozen=True)
class RetryConfig:
    """Transport retry policy copied into each provider."""

    enabled: bool = True
    max_retries: int = 3
    initial_delay: float = 1.0
    max_delay: float = 60.0
    exponential_base: float = 2.0

    @property
    def attempts(self) -> int:
        """Total number of requests allowed, the first one included."""
        return 1 + (self.max_retries if self.enabled else 0)

    def delay_for(self, retry: int) -> float:
        """Backoff before retry number *retry* (0-based)."""
        delay = self.initial_delay * (self.exponential_base ** retry)
        return min(delay, self.max_delay)
