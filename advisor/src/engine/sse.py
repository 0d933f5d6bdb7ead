"""Reassembly of a chat-completions server-sent-event body into stream events.

Network chunks do not line up with SSE lines, so the reassembler keeps the
trailing partial line between calls to ``feed`` and only interprets complete
lines. Lines that are not ``data: <json>`` with a string at
``choices[0].delta.content`` are ignored rather than failing the stream.
"""

from __future__ import annotations

import codecs
import json
from typing import Any, List, Optional

from .events import Completed, Delta

DATA_PREFIX = "data: "
DONE_LINE = "data: [DONE]"


def _extract_delta_content(payload: Any) -> Optional[str]:
    if not isinstance(payload, dict):
        return None
    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices:
        return None
    first = choices[0]
    if not isinstance(first, dict):
        return None
    delta = first.get("delta")
    if not isinstance(delta, dict):
        return None
    content = delta.get("content")
    return content if isinstance(content, str) else None


def parse_sse_line(line: str) -> Delta | Completed | None:
    """Interpret one complete SSE line. Returns None for lines with no event."""
    line = line.strip()
    if not line:
        return None
    if line == DONE_LINE:
        return Completed()
    if not line.startswith(DATA_PREFIX):
        return None
    try:
        payload = json.loads(line[len(DATA_PREFIX):])
    except ValueError:
        return None
    content = _extract_delta_content(payload)
    if content is None:
        return None
    return Delta(content)


class SSEReassembler:
    """Line buffer for one streaming response. Not shared between requests."""

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._done = False

    @property
    def done(self) -> bool:
        return self._done

    @property
    def pending(self) -> str:
        return self._buffer

    def feed(self, chunk: bytes) -> List[Delta | Completed]:
        if self._done:
            return []
        self._buffer += self._decoder.decode(chunk)
        *lines, self._buffer = self._buffer.split("\n")
        return self._process(lines)

    def flush(self) -> List[Delta | Completed]:
        if self._done:
            return []
        self._buffer += self._decoder.decode(b"", final=True)
        remainder, self._buffer = self._buffer, ""
        return self._process([remainder])

    def _process(self, lines: List[str]) -> List[Delta | Completed]:
        events: List[Delta | Completed] = []
        for line in lines:
            event = parse_sse_line(line)
            if event is None:
                continue
            events.append(event)
            if isinstance(event, Completed):
                self._done = True
                self._buffer = ""
                break
        return events
