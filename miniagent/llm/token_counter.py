"""
Token counting with a tiktoken backend.

If the requested model is known to ``tiktoken`` the counter delegates to its
BPE encoder.  Otherwise (unknown model, or the encoding files cannot be
fetched) a simple character-based heuristic is used (~4 characters per
token).  Counts only drive the request-side context window, so an estimate
is good enough.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Sequence

import tiktoken

from miniagent.llm.types import (
    AssistantMessage,
    ImageSegment,
    Message,
    TextSegment,
    ToolMessage,
)

logger = logging.getLogger(__name__)

# Per-message overhead (role, separators, priming).
MESSAGE_OVERHEAD = 4
# Flat estimate for an attached image.
IMAGE_TOKENS = 1000


class TokenCounter:
    """
    Estimate token counts for text and message lists.

    Parameters
    ----------
    model:
        Model name passed to ``tiktoken.encoding_for_model``.  ``None`` skips
        tiktoken and uses the heuristic.
    """

    def __init__(self, model: str | None = None) -> None:
        self.model = model
        self._tiktoken_enc: Any = None
        if model is not None:
            try:
                self._tiktoken_enc = tiktoken.encoding_for_model(model)
            except Exception as exc:
                # Model not recognised or encoding unavailable offline.
                logger.debug("tiktoken unavailable for %s: %s", model, exc)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def count_text(self, text: str) -> int:
        """Return the estimated token count for a plain string."""
        if not text:
            return 0
        if self._tiktoken_enc is not None:
            return len(self._tiktoken_enc.encode(text))
        # Heuristic: roughly 4 characters per token for English text.
        return max(1, len(text) // 4)

    def count_message(self, msg: Message) -> int:
        """Estimate the token cost of a single message."""
        total = MESSAGE_OVERHEAD

        if isinstance(msg.content, str):
            total += self.count_text(msg.content)
        elif msg.content:
            for segment in msg.content:
                if isinstance(segment, TextSegment):
                    total += self.count_text(segment.text)
                elif isinstance(segment, ImageSegment):
                    total += IMAGE_TOKENS

        if isinstance(msg, AssistantMessage):
            total += self.count_text(msg.thinking or "")
            for tc in msg.tool_calls or ():
                total += self.count_text(tc.name)
                total += self.count_text(json.dumps(tc.arguments))
        elif isinstance(msg, ToolMessage):
            total += self.count_text(msg.tool_call_id)

        return total

    def count_messages(
        self,
        messages: Sequence[Message],
        tools: list[dict] | None = None,
    ) -> int:
        """
        Estimate the total token count for a conversation.

        If *tools* are provided (catalog schema list) their JSON
        representation is counted as well -- the model "sees" them in the
        prompt.
        """
        total = sum(self.count_message(msg) for msg in messages)
        if tools:
            total += self.count_text(json.dumps(tools))
        return total
