"""
OpenAI-compatible chat-completion provider.

Works with any endpoint that speaks the OpenAI ``/chat/completions`` wire
protocol -- OpenAI itself, Azure OpenAI, vLLM, LM Studio, OpenRouter, etc.

Dependencies: ``httpx`` (async HTTP client).  No ``openai`` SDK needed.
"""

from __future__ import annotations

import json
import logging
from typing import AsyncIterator, Sequence

from miniagent.errors import ProviderStreamError
from miniagent.llm.providers.base import Provider
from miniagent.llm.tool_call_assembler import ToolCallAssembler
from miniagent.llm.types import (
    AssistantMessage,
    ContentSegment,
    ImageSegment,
    Message,
    RawToolDelta,
    StreamChunk,
    SystemMessage,
    TextSegment,
    ToolMessage,
    UserMessage,
)
from miniagent.tools.base import Tool

logger = logging.getLogger(__name__)

# Delta fields different backends use for reasoning text.
_REASONING_FIELDS = ("reasoning_content", "reasoning")


class OpenAIProvider(Provider):
    """
    Stream-capable provider for any OpenAI-API-compatible endpoint.

    The system prompt stays inline as the first message.  Tool calls stream
    as index-keyed fragments and are assembled until the choice reports a
    ``finish_reason``.
    """

    @property
    def name(self) -> str:
        return "openai"

    @property
    def endpoint(self) -> str:
        return f"{self.api_base}/chat/completions"

    # ------------------------------------------------------------------
    # Request building
    # ------------------------------------------------------------------

    def convert_messages(
        self, messages: Sequence[Message]
    ) -> tuple[str | None, list[dict]]:
        wire_messages: list[dict] = []
        for msg in messages:
            if isinstance(msg, SystemMessage):
                wire_messages.append({"role": "system", "content": msg.content})
            elif isinstance(msg, UserMessage):
                wire_messages.append(
                    {"role": "user", "content": _user_content(msg.content)}
                )
            elif isinstance(msg, AssistantMessage):
                if msg.is_empty:
                    continue
                m: dict = {"role": "assistant", "content": msg.content or None}
                if msg.tool_calls:
                    m["tool_calls"] = [
                        {
                            "id": tc.id,
                            "type": "function",
                            "function": {
                                "name": tc.name,
                                "arguments": json.dumps(tc.arguments),
                            },
                        }
                        for tc in msg.tool_calls
                    ]
                elif m["content"] is None:
                    m["content"] = ""
                if msg.thinking:
                    m["reasoning_details"] = [{"text": msg.thinking}]
                wire_messages.append(m)
            elif isinstance(msg, ToolMessage):
                m = {
                    "role": "tool",
                    "content": msg.content,
                    "tool_call_id": msg.tool_call_id,
                }
                if msg.name:
                    m["name"] = msg.name
                wire_messages.append(m)
            else:
                raise TypeError(f"Unsupported message type: {type(msg).__name__}")

        # The system prompt travels inline.
        return None, wire_messages

    def convert_tools(self, tools: Sequence[Tool]) -> list[dict]:
        return [{"type": "function", "function": t.to_schema()} for t in tools]

    def prepare_request(
        self,
        messages: Sequence[Message],
        tools: Sequence[Tool] | None = None,
    ) -> dict:
        _, wire_messages = self.convert_messages(messages)
        body: dict = {
            "model": self.model,
            "messages": wire_messages,
            "stream": True,
        }
        if tools:
            body["tools"] = self.convert_tools(tools)
            body["tool_choice"] = "auto"
        return body

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    async def generate_stream(
        self,
        messages: Sequence[Message],
        tools: Sequence[Tool] | None = None,
    ) -> AsyncIterator[StreamChunk]:
        body = self.prepare_request(messages, tools)
        logger.info(
            "REQUEST: provider=openai model=%s tools=%d messages=%d",
            self.model,
            len(body.get("tools", [])),
            len(body["messages"]),
        )

        assembler = ToolCallAssembler()
        content_len = thinking_len = event_count = 0

        events = self._stream_events(body)
        try:
            async for event in events:
                data_str = event.data.strip()
                if data_str == "[DONE]":
                    break

                try:
                    data = json.loads(data_str)
                except json.JSONDecodeError:
                    logger.warning("Failed to parse SSE data: %s", data_str[:200])
                    continue
                if not isinstance(data, dict):
                    logger.debug("Skipping non-object SSE payload: %s", data_str[:200])
                    continue

                event_count += 1
                if data.get("error") and not data.get("choices"):
                    error = data["error"]
                    if isinstance(error, dict):
                        raise ProviderStreamError(
                            error.get("message", str(error)), error.get("type")
                        )
                    raise ProviderStreamError(str(error))

                choices = data.get("choices")
                if not choices:
                    continue

                choice = choices[0]
                delta = choice.get("delta") or {}
                text = delta.get("content") or None
                thinking = _reasoning_from_delta(delta)
                content_len += len(text or "")
                thinking_len += len(thinking or "")

                for raw_tc in delta.get("tool_calls") or []:
                    func = raw_tc.get("function") or {}
                    assembler.feed(
                        RawToolDelta(
                            call_index=raw_tc.get("index", 0),
                            id=raw_tc.get("id"),
                            name_delta=func.get("name") or "",
                            args_delta=func.get("arguments") or "",
                        )
                    )

                finish_reason = choice.get("finish_reason")
                if finish_reason:
                    calls = assembler.flush()
                    logger.debug(
                        "RESPONSE: events=%d content_chars=%d thinking_chars=%d "
                        "tool_calls=%d finish_reason=%s",
                        event_count,
                        content_len,
                        thinking_len,
                        len(calls),
                        finish_reason,
                    )
                    yield StreamChunk(
                        content=text,
                        thinking=thinking,
                        tool_calls=calls or None,
                        done=True,
                        finish_reason=finish_reason,
                    )
                    return

                if text or thinking:
                    yield StreamChunk(content=text, thinking=thinking)
        finally:
            await events.aclose()

        # The stream closed without a finish_reason.
        if assembler.pending:
            logger.warning("Stream ended without finish_reason; flushing open tool calls")
        calls = assembler.flush()
        yield StreamChunk(tool_calls=calls or None, done=True)


def _user_content(content: str | tuple[ContentSegment, ...]) -> str | list[dict]:
    if isinstance(content, str):
        return content
    parts: list[dict] = []
    for segment in content:
        if isinstance(segment, TextSegment):
            parts.append({"type": "text", "text": segment.text})
        elif isinstance(segment, ImageSegment):
            parts.append({
                "type": "image_url",
                "image_url": {
                    "url": f"data:{segment.media_type};base64,{segment.data}"
                },
            })
        else:
            raise TypeError(f"Unsupported content segment: {type(segment).__name__}")
    return parts


def _reasoning_from_delta(delta: dict) -> str | None:
    for field in _REASONING_FIELDS:
        value = delta.get(field)
        if value:
            return value
    details = delta.get("reasoning_details")
    if details:
        text = "".join(d.get("text") or "" for d in details if isinstance(d, dict))
        return text or None
    return None
