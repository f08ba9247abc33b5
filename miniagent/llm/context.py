"""
Token-budgeted request window.

The agent's history is append-only; it is never rewritten to save space.
Instead, before each model call, :class:`ContextWindow` selects the part of
the history that is actually sent:

1.  The system message is always kept.
2.  Walk backwards from the most recent message, accumulating token counts
    until the budget is exhausted.
3.  Move the cut forward to the next user message, so a tool result is
    never sent without the assistant turn that requested it.
4.  If no user message follows the cut (one task running for many tool
    steps), keep the task's user message and cut at the oldest assistant
    turn whose suffix still fits.  Each assistant turn travels with its
    tool results.
5.  If not even the newest step fits, send it anyway -- an over-budget
    request is better than an empty one.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

from miniagent.llm.token_counter import TokenCounter
from miniagent.llm.types import AssistantMessage, Message, SystemMessage, UserMessage

logger = logging.getLogger(__name__)


@dataclass
class WindowReport:
    token_limit: int
    tool_schema_tokens: int
    message_tokens: int
    kept_messages: int
    dropped_messages: int


class ContextWindow:
    """
    Fit a conversation into a token budget.

    Parameters
    ----------
    token_counter:
        Counter used for the estimates.
    token_limit:
        Budget for the whole request (messages plus tool schemas).
    """

    def __init__(self, token_counter: TokenCounter, token_limit: int) -> None:
        self.token_counter = token_counter
        self.token_limit = token_limit

    def select(
        self,
        messages: Sequence[Message],
        tools: list[dict] | None = None,
    ) -> tuple[list[Message], WindowReport]:
        """Return the messages to send and a report of what was dropped."""
        tool_schema_tokens = (
            self.token_counter.count_messages([], tools) if tools else 0
        )

        head: list[Message] = []
        body = list(messages)
        if body and isinstance(body[0], SystemMessage):
            head, body = body[:1], body[1:]

        budget = self.token_limit - tool_schema_tokens
        budget -= sum(self.token_counter.count_message(m) for m in head)

        # Walk backwards, keeping most-recent first.
        start = len(body)
        used = 0
        for idx in range(len(body) - 1, -1, -1):
            cost = self.token_counter.count_message(body[idx])
            if used + cost > budget:
                break
            used += cost
            start = idx

        pinned: list[Message] = []
        if start > 0:
            start, pinned = self._align_to_turn(body, start)
            if pinned:
                start = self._fit_steps(
                    body, start, budget - self.token_counter.count_message(pinned[0])
                )

        kept = head + pinned + body[start:]
        message_tokens = self.token_counter.count_messages(kept)
        report = WindowReport(
            token_limit=self.token_limit,
            tool_schema_tokens=tool_schema_tokens,
            message_tokens=message_tokens,
            kept_messages=len(kept),
            dropped_messages=len(messages) - len(kept),
        )
        if report.dropped_messages:
            logger.info(
                "Context window: dropped %d of %d messages (~%d tokens kept, limit %d)",
                report.dropped_messages,
                len(messages),
                message_tokens + tool_schema_tokens,
                self.token_limit,
            )
        return kept, report

    @staticmethod
    def _align_to_turn(body: list[Message], start: int) -> tuple[int, list[Message]]:
        """
        Move the cut at *start* to a turn boundary.

        Returns the new start and the messages pinned ahead of it.  The cut
        moves to the first user message at or after *start*.  Without one, the
        latest earlier user message is pinned and the cut moves to an
        assistant turn after it.
        """
        for idx in range(start, len(body)):
            if isinstance(body[idx], UserMessage):
                return idx, []

        user_idx: int | None = None
        for idx in range(start - 1, -1, -1):
            if isinstance(body[idx], UserMessage):
                user_idx = idx
                break

        floor = -1 if user_idx is None else user_idx
        steps = [
            idx
            for idx in range(floor + 1, len(body))
            if isinstance(body[idx], AssistantMessage)
        ]
        later = [idx for idx in steps if idx >= start]
        if later:
            step = later[0]
        elif steps:
            # Not even the newest step fits.
            step = steps[-1]
        else:
            return (start if user_idx is None else user_idx), []

        pinned = [] if user_idx is None else [body[user_idx]]
        return step, pinned

    def _fit_steps(self, body: list[Message], start: int, budget: int) -> int:
        """Oldest assistant turn at or after *start* whose suffix fits *budget*."""
        steps = [
            idx
            for idx in range(start, len(body))
            if isinstance(body[idx], AssistantMessage)
        ]
        for idx in steps:
            if self.token_counter.count_messages(body[idx:]) <= budget:
                return idx
        return steps[-1] if steps else start
