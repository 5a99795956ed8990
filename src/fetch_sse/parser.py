"""Incremental Server-Sent Events parser.

Bytes arrive in arbitrary chunks. The parser decodes them with a stateful
decoder, normalizes line terminators and keeps any trailing partial frame
buffered until the blank line that ends it is seen.

Wire format reference:
https://html.spec.whatwg.org/multipage/server-sent-events.html#event-stream-interpretation
"""

from __future__ import annotations

import codecs
import logging
from collections.abc import Iterator

from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)

DEFAULT_EVENT_TYPE = "message"


class EventRecord(BaseModel):
    """One parsed SSE frame."""

    model_config = ConfigDict(frozen=True)

    event: str = DEFAULT_EVENT_TYPE
    data: str = ""
    id: str | None = None
    retry: int | None = None

    @property
    def has_data(self) -> bool:
        """Frames without data update bookkeeping but are never dispatched."""
        return self.data != ""


def parse_frame(block: str) -> EventRecord | None:
    """Parse the lines of a single frame.

    Returns None when the frame holds no recognized field (blank lines or
    comments only).
    """
    event_type: str | None = None
    data_lines: list[str] = []
    event_id: str | None = None
    retry: int | None = None
    seen = False

    for line in block.split("\n"):
        name, sep, value = line.partition(":")
        if not sep:
            continue
        if value.startswith(" "):
            value = value[1:]

        if name == "event":
            event_type = value
            seen = True
        elif name == "data":
            data_lines.append(value)
            seen = True
        elif name == "id":
            event_id = value
            seen = True
        elif name == "retry":
            if value.isascii() and value.isdigit():
                retry = int(value)
                seen = True
            else:
                logger.debug(f"Ignoring non-numeric retry value: {value!r}")
        elif name:
            logger.debug(f"Ignoring unknown SSE field: {name!r}")

    if not seen:
        return None

    return EventRecord(
        event=event_type or DEFAULT_EVENT_TYPE,
        data="\n".join(data_lines),
        id=event_id,
        retry=retry,
    )


class SSEParser:
    """Frame buffer turning a chunked byte stream into ``EventRecord`` objects.

    Usage:
        parser = SSEParser()
        async for chunk in response.aiter_bytes():
            for record in parser.feed(chunk):
                ...
        for record in parser.flush():
            ...
    """

    def __init__(self, encoding: str = "utf-8"):
        self.encoding = encoding
        self.reset()

    def reset(self) -> None:
        """Drop buffered text and decoder state."""
        self._decoder = codecs.getincrementaldecoder(self.encoding)(errors="replace")
        self._buffer = ""
        self._pending_cr = False

    @property
    def buffered(self) -> str:
        """Text held back waiting for the end of its frame."""
        return self._buffer

    def feed(self, chunk: bytes | str) -> Iterator[EventRecord]:
        """Add a chunk and return an iterator over the frames it completed.

        The chunk is buffered immediately; frames are parsed lazily as the
        returned iterator is consumed.
        """
        text = chunk if isinstance(chunk, str) else self._decoder.decode(chunk)
        self._buffer += self._normalize(text)
        return self._drain()

    def flush(self) -> Iterator[EventRecord]:
        """End of stream: resolve a held carriage return, drop any partial frame."""
        tail = self._decoder.decode(b"", final=True)
        if self._pending_cr:
            tail += "\n"
            self._pending_cr = False
        self._buffer += tail.replace("\r\n", "\n").replace("\r", "\n")
        records = list(self._drain())
        if self._buffer.strip("\n"):
            logger.debug(f"Discarding incomplete SSE frame ({len(self._buffer)} chars)")
        self._buffer = ""
        return iter(records)

    def _normalize(self, text: str) -> str:
        # A trailing \r may be the first half of \r\n
        if self._pending_cr:
            text = "\r" + text
            self._pending_cr = False
        if text.endswith("\r"):
            self._pending_cr = True
            text = text[:-1]
        return text.replace("\r\n", "\n").replace("\r", "\n")

    def _drain(self) -> Iterator[EventRecord]:
        while True:
            boundary = self._buffer.find("\n\n")
            if boundary == -1:
                return
            block = self._buffer[:boundary]
            self._buffer = self._buffer[boundary + 2 :]
            record = parse_frame(block)
            if record is not None:
                yield record
