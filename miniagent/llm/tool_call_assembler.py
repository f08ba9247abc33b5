"""
Assembles streaming tool-call fragments into complete ToolCall objects.

Design goals:
  - Accumulate ``RawToolDelta`` fragments keyed by ``call_index``.  Name and
    argument fragments are concatenated in arrival order, never overwritten.
  - On ``done=True`` (or an explicit ``flush()``), JSON-parse the accumulated
    argument string.
  - If parsing fails the call is still emitted, with empty arguments, and an
    error is recorded in ``self.errors`` and logged.  A bad argument string
    never fails the turn.
  - Calls come out in the order their index was first seen.
"""

from __future__ import annotations

import json
import logging

from miniagent.llm.types import RawToolDelta, ToolCall

logger = logging.getLogger(__name__)


class ToolCallAssembler:
    """Buffers raw tool-call deltas and emits finished ``ToolCall`` objects."""

    def __init__(self) -> None:
        # dict preserves insertion order, which is first-seen order.
        self._buf: dict[int, dict] = {}
        self.errors: list[str] = []

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def feed(self, delta: RawToolDelta) -> list[ToolCall]:
        """
        Feed a single ``RawToolDelta`` into the assembler.

        Returns a (possibly empty) list of completed ``ToolCall`` objects.
        A call is finalized when its delta has ``done=True``.
        """
        buf = self._buf.setdefault(
            delta.call_index, {"id": None, "name": "", "args": ""}
        )

        if delta.id and not buf["id"]:
            buf["id"] = delta.id

        if delta.name_delta:
            buf["name"] += delta.name_delta

        if delta.args_delta:
            buf["args"] += delta.args_delta

        if delta.done:
            return self._finalize(delta.call_index)

        return []

    def flush(self) -> list[ToolCall]:
        """
        Finalize *all* remaining buffers in first-seen order.

        Used when the backend signals the end of the turn without closing
        each call individually.
        """
        calls: list[ToolCall] = []
        for idx in list(self._buf):
            calls.extend(self._finalize(idx))
        return calls

    def discard(self) -> int:
        """Drop every open buffer without emitting it.  Returns the count."""
        dropped = len(self._buf)
        self._buf.clear()
        return dropped

    @property
    def pending(self) -> bool:
        return bool(self._buf)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _finalize(self, idx: int) -> list[ToolCall]:
        buf = self._buf.pop(idx, None)
        if buf is None:
            return []

        name = buf["name"].strip()
        call_id = buf["id"] or f"call_{idx}"
        args = self._parse_arguments(idx, name, buf["args"])
        return [ToolCall(id=call_id, name=name, arguments=args)]

    def _parse_arguments(self, idx: int, name: str, raw_args: str) -> dict:
        if not raw_args.strip():
            return {}
        try:
            args = json.loads(raw_args)
        except (json.JSONDecodeError, ValueError) as exc:
            self._record_error(
                f"tool_call_json_parse_failed idx={idx} name={name} err={exc}",
                raw_args,
            )
            return {}

        if not isinstance(args, dict):
            self._record_error(
                f"tool_call_args_not_object idx={idx} name={name} "
                f"type={type(args).__name__}",
                raw_args,
            )
            return {}
        return args

    def _record_error(self, error: str, raw_args: str) -> None:
        self.errors.append(error)
        logger.warning("%s raw=%s", error, raw_args[:200])
