"""Server-Sent Event framing for question and text streams.

Encoder side: every application event becomes one frame::

    data: {"type": "chunk", "text": "..."}\\n\\n

Decoder side: bytes arrive in arbitrary pieces (down to one byte, possibly
splitting a multi-byte UTF-8 character or the ``\\n\\n`` delimiter).  The
decoder keeps a rolling buffer, cuts complete frames at blank lines, and
keeps the trailing partial frame for the next read.  A frame that fails to
parse is logged and dropped; the rest of the stream is unaffected.
"""

from __future__ import annotations

import codecs
import json
import logging
from typing import Any, AsyncIterator, Iterable

from pydantic import ValidationError

from errors import StreamDecodeError
from models.stream_events import (
    ChunkEvent,
    DoneEvent,
    ErrorEvent,
    McqEvent,
    MCQDraft,
    StreamEvent,
    stream_event_adapter,
)
from services.field_extractor import scrub_surrogates

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


class EventStreamEncoder:
    """Encode stream events as SSE frames.

    Every public method returns a ready-to-yield SSE string.
    """

    @staticmethod
    def _sse(payload: dict[str, Any]) -> str:
        return f"data: {scrub_surrogates(json.dumps(payload, ensure_ascii=False))}\n\n"

    def encode(self, event: StreamEvent) -> str:
        return self._sse(event.model_dump(by_alias=True, exclude_none=True))

    def chunk(self, text: str) -> str:
        return self.encode(ChunkEvent(text=text))

    def mcq(self, draft: MCQDraft) -> str:
        return self.encode(McqEvent.from_draft(draft))

    def done(self) -> str:
        return self.encode(DoneEvent())

    def error(self, message: str, model: str | None = None) -> str:
        return self.encode(ErrorEvent(error=message, model=model))


def parse_frame(frame: str) -> StreamEvent | None:
    """Parse one SSE frame (without its trailing blank line).

    Returns None for frames that carry no ``data:`` line (comments,
    keep-alives).

    Raises:
        StreamDecodeError: the payload is not valid JSON or not a known
            event.
    """
    data_lines = []
    for line in frame.split("\n"):
        if line.startswith("data:"):
            value = line[5:]
            data_lines.append(value[1:] if value.startswith(" ") else value)
    if not data_lines:
        return None

    payload = "\n".join(data_lines)
    try:
        return stream_event_adapter.validate_json(payload)
    except ValidationError as e:
        raise StreamDecodeError(f"Invalid SSE event: {e.errors()[0]['msg']}", raw=payload) from e


class EventStreamDecoder:
    """Incrementally decode an SSE byte stream into typed events.

    One decoder per stream.  ``feed`` accepts bytes or already-decoded text.
    """

    def __init__(self) -> None:
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self.dropped = 0

    def feed(self, data: bytes | str) -> list[StreamEvent]:
        text = self._utf8.decode(data) if isinstance(data, bytes) else data
        self._buffer = (self._buffer + text).replace("\r\n", "\n")
        *frames, self._buffer = self._buffer.split("\n\n")
        return self._parse_all(frames)

    def close(self) -> list[StreamEvent]:
        """Flush at end of stream.

        A last frame the server never terminated with a blank line is still
        parsed if it is complete JSON; otherwise it is dropped.
        """
        tail = self._utf8.decode(b"", final=True)
        rest = (self._buffer + tail).replace("\r\n", "\n").strip("\n")
        self._buffer = ""
        return self._parse_all([rest] if rest else [])

    def _parse_all(self, frames: Iterable[str]) -> list[StreamEvent]:
        events: list[StreamEvent] = []
        for frame in frames:
            if not frame.strip():
                continue
            try:
                event = parse_frame(frame)
            except StreamDecodeError as e:
                self.dropped += 1
                logger.warning("Dropped malformed SSE frame (%s): %.200r", e, e.raw)
                continue
            if event is not None:
                events.append(event)
        return events


async def aiter_events(chunks: AsyncIterator[bytes]) -> AsyncIterator[StreamEvent]:
    """Decode an async byte iterator (e.g. ``response.aiter_bytes()``)."""
    decoder = EventStreamDecoder()
    async for chunk in chunks:
        for event in decoder.feed(chunk):
            yield event
    for event in decoder.close():
        yield event
