"""Wire-protocol providers."""

from miniagent.llm.providers.anthropic import AnthropicProvider
from miniagent.llm.providers.base import Provider
from miniagent.llm.providers.openai_compat import OpenAIProvider

__all__ = [
    "AnthropicProvider",
    "OpenAIProvider",
    "Provider",
]
