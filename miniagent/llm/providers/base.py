"""
Abstract base class for LLM providers.

A provider translates the conversation model into one backend's wire
protocol and translates that backend's streamed events back into
``StreamChunk`` objects.  A raw ``httpx`` transport (bearer auth, SSE framing,
retries) lives here for providers that speak their protocol directly;
SDK-backed providers hand those concerns to the vendor client.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import AsyncIterator, Sequence

import httpx

from miniagent.llm.sse import SSEEvent, iter_sse_events
from miniagent.llm.types import Message, RetryConfig, StreamChunk
from miniagent.tools.base import Tool

logger = logging.getLogger(__name__)


def _is_retryable_status(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


class Provider(ABC):
    """
    A provider encapsulates access to a single LLM endpoint.

    Parameters
    ----------
    api_key:
        Bearer token.  Pass ``""`` for unauthenticated local endpoints.
    api_base:
        Base URL of the API.  Trailing slashes are stripped.
    model:
        Model identifier sent in every request.
    retry_config:
        Transport retry policy.  Retries cover connection failures and
        HTTP 429/5xx responses received before the stream starts.  SDK-backed
        providers map it onto the SDK's own retry setting.
    timeout:
        HTTP request timeout in seconds.
    max_output:
        Maximum output tokens, for protocols that require the field.
    transport:
        Optional ``httpx`` transport, mainly for tests.
    """

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
        self.api_key = api_key
        self.api_base = api_base.rstrip("/")
        self.model = model
        self.retry_config = retry_config or RetryConfig()
        self._timeout = timeout
        self._max_output = max_output
        self._transport = transport

    # ------------------------------------------------------------------
    # Provider interface
    # ------------------------------------------------------------------

    @property
    @abstractmethod
    def name(self) -> str:
        """Protocol name (e.g. ``"openai"``)."""
        ...

    @property
    @abstractmethod
    def endpoint(self) -> str:
        """Full URL the streaming request is POSTed to."""
        ...

    @abstractmethod
    def convert_messages(
        self, messages: Sequence[Message]
    ) -> tuple[str | None, list[dict]]:
        """
        Convert internal messages to the wire format.

        Returns ``(system_prompt, wire_messages)``.  Protocols that carry the
        system prompt inline return ``None`` for the first element.
        """
        ...

    @abstractmethod
    def convert_tools(self, tools: Sequence[Tool]) -> list[dict]:
        """Convert the tool catalog to the wire format."""
        ...

    @abstractmethod
    def prepare_request(
        self,
        messages: Sequence[Message],
        tools: Sequence[Tool] | None = None,
    ) -> dict:
        """Build the JSON request body.  Must not mutate its inputs."""
        ...

    @abstractmethod
    async def generate_stream(
        self,
        messages: Sequence[Message],
        tools: Sequence[Tool] | None = None,
    ) -> AsyncIterator[StreamChunk]:
        """
        Stream one model turn.

        Yields ``StreamChunk`` objects.  The last chunk has ``done=True``
        and is the only one that may carry tool calls.
        """
        ...
        # Make the method an async generator so sub-classes can ``yield``.
        # This line is unreachable but satisfies the type checker.
        if False:  # pragma: no cover
            yield StreamChunk()  # type: ignore[misc]

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _build_headers(self) -> dict[str, str]:
        headers: dict[str, str] = {
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
        }
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def _stream_events(self, body: dict) -> AsyncIterator[SSEEvent]:
        """
        POST *body* and yield the raw SSE events of the response.

        A request is only retried while nothing has been yielded yet; once
        the caller has seen part of a turn a failure propagates as-is.
        """
        url = self.endpoint
        headers = self._build_headers()
        attempts = self.retry_config.attempts

        for attempt in range(attempts):
            last_attempt = attempt + 1 >= attempts
            started = False
            retry_reason: str | None = None
            try:
                async with httpx.AsyncClient(
                    timeout=self._timeout, transport=self._transport
                ) as client:
                    async with client.stream(
                        "POST", url, json=body, headers=headers
                    ) as response:
                        if (
                            _is_retryable_status(response.status_code)
                            and not last_attempt
                        ):
                            # Read the body so the connection is released.
                            await response.aread()
                            retry_reason = f"HTTP {response.status_code}"
                        else:
                            await self._raise_for_status(response)
                            async for event in iter_sse_events(response):
                                started = True
                                yield event
                            return
            except httpx.TransportError as exc:
                if started or last_attempt:
                    raise
                retry_reason = f"{type(exc).__name__}: {exc}"

            delay = self.retry_config.delay_for(attempt)
            logger.warning(
                "%s request failed (%s), retrying in %.1fs (attempt %d/%d)",
                self.name,
                retry_reason,
                delay,
                attempt + 2,
                attempts,
            )
            await asyncio.sleep(delay)

    @staticmethod
    async def _raise_for_status(response: httpx.Response) -> None:
        if not response.is_error:
            return
        body = (await response.aread()).decode("utf-8", errors="replace")
        raise httpx.HTTPStatusError(
            f"HTTP {response.status_code} from {response.request.url}: {body[:500]}",
            request=response.request,
            response=response,
        )
