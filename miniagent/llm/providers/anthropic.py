"""
Anthropic messages-API provider, backed by the ``anthropic`` SDK.

Assistant turns are lists of typed content blocks (thinking, text,
tool_use); tool results travel as ``tool_result`` blocks inside user turns.
The raw stream is a sequence of block-lifecycle events::

    message_start
    content_block_start   (index, block type)
    content_block_delta*  (text_delta | thinking_delta | input_json_delta)
    content_block_stop
    ...
    message_delta         (stop_reason)
    message_stop

Authentication (``x-api-key``), the ``anthropic-version`` header, SSE
decoding and transport retries are left to the SDK.
"""

from __future__ import annotations

import logging
from typing import AsyncIterator, Sequence

import anthropic
import httpx

from miniagent.errors import ProviderStreamError
from miniagent.llm.providers.base import Provider
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
from miniagent.tools.base import Tool, normalize_schema

logger = logging.getLogger(__name__)


class AnthropicProvider(Provider):
    """Stream-capable provider for Anthropic-compatible messages endpoints."""

    def __init__(
        self,
        api_key: str,
        api_base: str,
        model: str,
        retry_config: RetryConfig | None = None,
        timeout: float = 120.0,
        max_output: int = 16384,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(
            api_key,
            api_base,
            model,
            retry_config=retry_config,
            timeout=timeout,
            max_output=max_output,
            transport=transport,
        )
        self._client: anthropic.AsyncAnthropic | None = None  # lazily initialised

    @property
    def name(self) -> str:
        return "anthropic"

    @property
    def endpoint(self) -> str:
        return f"{self.api_base}/v1/messages"

    def _get_client(self) -> anthropic.AsyncAnthropic:
        if self._client is not None:
            return self._client

        retry = self.retry_config
        kwargs: dict = {
            "api_key": self.api_key or None,
            "base_url": self.api_base,
            "timeout": self._timeout,
            "max_retries": retry.max_retries if retry.enabled else 0,
        }
        if self._transport is not None:
            kwargs["http_client"] = httpx.AsyncClient(
                transport=self._transport, timeout=self._timeout
            )

        self._client = anthropic.AsyncAnthropic(**kwargs)
        return self._client

    # ------------------------------------------------------------------
    # Request building
    # ------------------------------------------------------------------

    def convert_messages(
        self, messages: Sequence[Message]
    ) -> tuple[str | None, list[dict]]:
        """
        Convert internal ``Message`` list to Anthropic's format.

        Returns ``(system_prompt, messages_list)``.
        """
        system: str | None = None
        converted: list[dict] = []

        for msg in messages:
            if isinstance(msg, SystemMessage):
                system = msg.content
            elif isinstance(msg, UserMessage):
                converted.append(
                    {"role": "user", "content": _user_content(msg.content)}
                )
            elif isinstance(msg, AssistantMessage):
                blocks = _assistant_blocks(msg)
                # Empty assistant turns are rejected by the API.
                if blocks:
                    converted.append({"role": "assistant", "content": blocks})
            elif isinstance(msg, ToolMessage):
                result_block = {
                    "type": "tool_result",
                    "tool_use_id": msg.tool_call_id,
                    "content": msg.content,
                }
                # Merge into a preceding user turn that already holds blocks
                # so two user turns never sit back to back.
                last = converted[-1] if converted else None
                if (
                    last is not None
                    and last["role"] == "user"
                    and isinstance(last["content"], list)
                ):
                    last["content"].append(result_block)
                else:
                    converted.append({"role": "user", "content": [result_block]})
            else:
                raise TypeError(f"Unsupported message type: {type(msg).__name__}")

        return system, converted

    def convert_tools(self, tools: Sequence[Tool]) -> list[dict]:
        return [
            {
                "name": t.name,
                "description": t.description,
                "input_schema": normalize_schema(t.parameters),
            }
            for t in tools
        ]

    def prepare_request(
        self,
        messages: Sequence[Message],
        tools: Sequence[Tool] | None = None,
    ) -> dict:
        system, converted = self.convert_messages(messages)
        body: dict = {
            "model": self.model,
            "max_tokens": self._max_output,
            "messages": converted,
            "stream": True,
        }
        if system:
            body["system"] = system
        if tools:
            body["tools"] = self.convert_tools(tools)
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
            "REQUEST: provider=anthropic model=%s tools=%d messages=%d",
            self.model,
            len(body.get("tools", [])),
            len(body["messages"]),
        )

        assembler = ToolCallAssembler()
        completed: list[ToolCall] = []
        # Indices of tool_use blocks that are open right now.
        tool_blocks: set[int] = set()
        stop_reason: str | None = None
        event_count = 0

        # HTTP and connection errors (after SDK retries) propagate from here.
        stream = await self._get_client().messages.create(**body)
        try:
            async for event in stream:
                event_count += 1
                event_type = getattr(event, "type", None)

                if event_type == "content_block_start":
                    idx = getattr(event, "index", 0)
                    block = getattr(event, "content_block", None)
                    block_type = getattr(block, "type", None)
                    if block_type == "tool_use":
                        tool_blocks.add(idx)
                        assembler.feed(
                            RawToolDelta(
                                call_index=idx,
                                id=getattr(block, "id", None),
                                name_delta=getattr(block, "name", None) or "",
                            )
                        )
                    elif block_type == "text" and getattr(block, "text", None):
                        yield StreamChunk(content=block.text)
                    elif block_type == "thinking" and getattr(block, "thinking", None):
                        yield StreamChunk(thinking=block.thinking)

                elif event_type == "content_block_delta":
                    idx = getattr(event, "index", 0)
                    delta = getattr(event, "delta", None)
                    delta_type = getattr(delta, "type", None)
                    if delta_type == "text_delta" and getattr(delta, "text", None):
                        yield StreamChunk(content=delta.text)
                    elif delta_type == "thinking_delta" and getattr(delta, "thinking", None):
                        yield StreamChunk(thinking=delta.thinking)
                    elif delta_type == "input_json_delta" and idx in tool_blocks:
                        assembler.feed(
                            RawToolDelta(
                                call_index=idx,
                                args_delta=getattr(delta, "partial_json", None) or "",
                            )
                        )

                elif event_type == "content_block_stop":
                    idx = getattr(event, "index", 0)
                    if idx in tool_blocks:
                        tool_blocks.discard(idx)
                        completed.extend(
                            assembler.feed(RawToolDelta(call_index=idx, done=True))
                        )

                elif event_type == "message_delta":
                    delta = getattr(event, "delta", None)
                    if getattr(delta, "stop_reason", None):
                        stop_reason = delta.stop_reason

                elif event_type == "message_stop":
                    logger.debug(
                        "RESPONSE: events=%d tool_calls=%d stop_reason=%s",
                        event_count,
                        len(completed),
                        stop_reason,
                    )
                    yield StreamChunk(
                        tool_calls=completed or None,
                        done=True,
                        finish_reason=stop_reason or "end_turn",
                    )
                    return
        except anthropic.APIStatusError as exc:
            # The SDK raises ``error`` events received mid-stream as status
            # errors on the already-open (HTTP 200) response.
            raise _stream_error(exc) from exc
        finally:
            await stream.close()

        # The stream closed without message_stop.  Blocks that never reached
        # content_block_stop are incomplete and are not surfaced.
        dropped = assembler.discard()
        logger.warning(
            "Stream ended without message_stop; dropped %d open tool call(s)",
            dropped,
        )
        yield StreamChunk(
            tool_calls=completed or None, done=True, finish_reason=stop_reason
        )


def _stream_error(exc: anthropic.APIStatusError) -> ProviderStreamError:
    body = exc.body if isinstance(exc.body, dict) else {}
    error = body.get("error", body)
    if not isinstance(error, dict):
        error = {}
    return ProviderStreamError(error.get("message") or str(exc), error.get("type"))


def _user_content(content: str | tuple[ContentSegment, ...]) -> str | list[dict]:
    if isinstance(content, str):
        return content
    blocks: list[dict] = []
    for segment in content:
        if isinstance(segment, TextSegment):
            blocks.append({"type": "text", "text": segment.text})
        elif isinstance(segment, ImageSegment):
            blocks.append({
                "type": "image",
                "source": {
                    "type": "base64",
                    "media_type": segment.media_type,
                    "data": segment.data,
                },
            })
        else:
            raise TypeError(f"Unsupported content segment: {type(segment).__name__}")
    return blocks


def _assistant_blocks(msg: AssistantMessage) -> list[dict]:
    blocks: list[dict] = []
    if msg.thinking:
        # The API expects a signature on thinking blocks; none is kept.
        blocks.append({"type": "thinking", "thinking": msg.thinking, "signature": ""})
    if msg.content:
        blocks.append({"type": "text", "text": msg.content})
    for tc in msg.tool_calls or ():
        blocks.append({
            "type": "tool_use",
            "id": tc.id,
            "name": tc.name,
            "input": dict(tc.arguments),
        })
    return blocks
