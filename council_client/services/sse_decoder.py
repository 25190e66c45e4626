from __future__ import annotations

import codecs
import json
from typing import AsyncIterable, AsyncIterator

from loguru import logger

from council_client.errors import EventDecodeError
from council_client.models.events import OrchestrationEvent, parse_event

DATA_PREFIX = "data:"


class EventStreamDecoder:
    """Decode an orchestration event stream into typed events.

    Chunks may split a frame anywhere (including inside a multi-byte UTF-8
    character) or carry several frames at once. Only ``data:`` lines are
    frames; every other line is ignored. A malformed frame is logged and
    dropped. If the underlying stream raises, decoding stops and the error
    propagates to the caller.

    A decoder is single-use: create a new one per session.
    """

    def __init__(self, chunks: AsyncIterable[bytes | str]):
        self._chunks = chunks
        self._consumed = False
        self.frames_decoded = 0
        self.frames_dropped = 0

    def __aiter__(self) -> AsyncIterator[OrchestrationEvent]:
        if self._consumed:
            raise RuntimeError("EventStreamDecoder can only be iterated once")
        self._consumed = True
        return self._events()

    async def _events(self) -> AsyncIterator[OrchestrationEvent]:
        text_decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        buffer = ""

        async for chunk in self._chunks:
            if isinstance(chunk, bytes):
                buffer += text_decoder.decode(chunk)
            else:
                buffer += chunk
            lines = buffer.split("\n")
            buffer = lines.pop()
            for line in lines:
                event = self._decode_line(line)
                if event is not None:
                    yield event

        buffer += text_decoder.decode(b"", final=True)
        if buffer:
            event = self._decode_line(buffer)
            if event is not None:
                yield event

    def _decode_line(self, line: str) -> OrchestrationEvent | None:
        line = line.rstrip("\r")
        if not line.startswith(DATA_PREFIX):
            return None

        raw = line[len(DATA_PREFIX):]
        if raw.startswith(" "):
            raw = raw[1:]
        try:
            event = parse_event(json.loads(raw))
        except (json.JSONDecodeError, EventDecodeError) as e:
            self.frames_dropped += 1
            logger.warning(f"Dropping malformed stream frame: {e} | frame={raw[:200]!r}")
            return None

        self.frames_decoded += 1
        return event
