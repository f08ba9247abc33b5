"""
Unified LLM client.

``LLMClient`` picks one provider by protocol identifier at construction
time and forwards streaming calls to it unchanged.  It is the only LLM
entry point the agent uses.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING, Any, AsyncIterator, Sequence

from miniagent.errors import UnsupportedProviderError
from miniagent.llm.providers.anthropic import AnthropicProvider
from miniagent.llm.providers.base import Provider
from miniagent.llm.providers.openai_compat import OpenAIProvider
from miniagent.llm.types import Message, RetryConfig, StreamChunk, UserMessage
from miniagent.tools.base import Tool

if TYPE_CHECKING:
    from miniagent.config import LLMConfig

logger = logging.getLogger(__name__)


class LLMProvider(str, Enum):
    ANTHROPIC = "anthropic"
    OPENAI = "openai"


_PROVIDERS: dict[LLMProvider, type[Provider]] = {
    LLMProvider.ANTHROPIC: AnthropicProvider,
    LLMProvider.OPENAI: OpenAIProvider,
}


class LLMClient:
    """
    Provider-agnostic streaming client.

    Parameters
    ----------
    api_key:
        Credential sent as a bearer token.
    api_base:
        Base URL of the API.  Trailing slashes are stripped.
    provider:
        ``"openai"`` or ``"anthropic"`` (or the matching ``LLMProvider``).
    model:
        Model identifier.
    retry_config:
        Transport retry policy handed to the provider.
    **provider_options:
        Extra keyword arguments for the provider constructor
        (``timeout``, ``max_output``, ``transport``).

    Raises ``UnsupportedProviderError`` for an unknown *provider*.
    """

    def __init__(
        self,
        api_key: str,
        api_base: str,
        provider: str | LLMProvider,
        model: str,
        retry_config: RetryConfig | None = None,
        **provider_options: Any,
    ) -> None:
        try:
            self.provider = LLMProvider(provider)
        except ValueError:
            raise UnsupportedProviderError(
                f"Unsupported provider: {provider!r}. "
                f"Expected one of: {[p.value for p in LLMProvider]}"
            ) from None

        self.api_key = api_key
        self.api_base = api_base.rstrip("/")
        self.model = model
        self.retry_config = retry_config or RetryConfig()
        self._client: Provider = _PROVIDERS[self.provider](
            api_key=api_key,
            api_base=self.api_base,
            model=model,
            retry_config=self.retry_config,
            **provider_options,
        )

    @classmethod
    def from_config(cls, config: LLMConfig, **provider_options: Any) -> LLMClient:
        """Build a client from an ``LLMConfig`` section."""
        provider_options.setdefault("timeout", float(config.timeout_seconds))
        provider_options.setdefault("max_output", config.max_output_tokens)
        return cls(
            api_key=config.resolve_api_key(),
            api_base=config.api_base,
            provider=config.provider,
            model=config.model,
            retry_config=config.retry,
            **provider_options,
        )

    @property
    def adapter(self) -> Provider:
        """The provider selected at construction."""
        return self._client

    def prepare_request(
        self,
        messages: Sequence[Message],
        tools: Sequence[Tool] | None = None,
    ) -> dict:
        return self._client.prepare_request(messages, tools)

    async def generate_stream(
        self,
        messages: Sequence[Message],
        tools: Sequence[Tool] | None = None,
    ) -> AsyncIterator[StreamChunk]:
        stream = self._client.generate_stream(messages, tools)
        try:
            async for chunk in stream:
                yield chunk
        finally:
            # Propagate early abandonment down to the HTTP response.
            await stream.aclose()

    async def check_connection(self) -> bool:
        """
        Send a trivial request and report whether a first chunk came back.

        Never raises; failures are logged and reported as ``False``.
        """
        stream = self._client.generate_stream([UserMessage(content="ping")], None)
        try:
            await stream.__anext__()
        except StopAsyncIteration:
            logger.warning("Connection check: stream closed without a chunk")
            return False
        except Exception as exc:
            logger.warning("Connection check failed: %s", exc)
            return False
        finally:
            await stream.aclose()
        return True
