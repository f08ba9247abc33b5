"""
Server-Sent Events framing over an ``httpx`` streaming response.

Each SSE event has the form::

    event: <type>\\n
    data: {json}\\n
    \\n

The ``event:`` line is optional (OpenAI-style streams omit it).  Multi-line
``data:`` fields are joined with newlines.  Comment lines start with ``:``.
"""

from __future__ import annotations

import codecs
from dataclasses import dataclass
from typing import AsyncIterator

import httpx


@dataclass
class SSEEvent:
    """One event received from the stream, with its data still unparsed."""

    event: str
    data: str


async def iter_sse_events(response: httpx.Response) -> AsyncIterator[SSEEvent]:
    """Yield ``SSEEvent`` objects as they arrive on *response*."""
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    buffer = ""
    event_type = "message"
    data_lines: list[str] = []

    async for raw_bytes in response.aiter_bytes():
        buffer += decoder.decode(raw_bytes)

        while "\n" in buffer:
            line, buffer = buffer.split("\n", 1)
            line = line.rstrip("\r")

            if not line:
                # Empty line -- SSE event boundary.
                if data_lines:
                    yield SSEEvent(event=event_type, data="\n".join(data_lines))
                event_type = "message"
                data_lines = []
                continue

            if line.startswith(":"):
                continue

            field, _, value = line.partition(":")
            value = value[1:] if value.startswith(" ") else value

            if field == "event":
                event_type = value
            elif field == "data":
                data_lines.append(value)

    # A stream may close without the trailing blank line.
    if buffer.strip():
        field, _, value = buffer.rstrip("\r\n").partition(":")
        if field == "data":
            data_lines.append(value.lstrip(" "))
    if data_lines:
        yield SSEEvent(event=event_type, data="\n".join(data_lines))
