"""Incremental parser for OpenAI-compatible ``data:`` event frames."""
import json
import logging
from typing import AsyncIterator

logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"


class DeltaStreamParser:
    """Feed raw text chunks, get back the delta content fragments they complete.

    Chunks may split a frame anywhere; the trailing partial line is buffered
    until the next chunk (or ``finish``) completes it.
    """

    def __init__(self) -> None:
        self._buffer = ""
        self.done = False

    def feed(self, chunk: str) -> list[str]:
        self._buffer += chunk
        lines = self._buffer.split("\n")
        self._buffer = lines.pop()
        deltas = []
        for line in lines:
            delta = self._parse_line(line)
            if delta:
                deltas.append(delta)
        return deltas

    def finish(self) -> list[str]:
        """Flush whatever is left in the buffer as a final line."""
        rest, self._buffer = self._buffer, ""
        delta = self._parse_line(rest)
        return [delta] if delta else []

    def _parse_line(self, line: str) -> str | None:
        line = line.rstrip("\r")
        if not line or line.startswith(":"):
            return None
        if not line.startswith("data: "):
            return None
        payload = line[6:].strip()
        if payload == DONE_SENTINEL:
            self.done = True
            return None
        try:
            frame = json.loads(payload)
        except json.JSONDecodeError:
            logger.debug("Skipping malformed frame: %s", payload[:80])
            return None
        try:
            content = frame["choices"][0]["delta"].get("content")
        except (KeyError, IndexError, TypeError, AttributeError):
            return None
        return content if isinstance(content, str) and content else None


async def iter_deltas(chunks: AsyncIterator[str]) -> AsyncIterator[str]:
    """Yield delta fragments from a stream of raw text chunks."""
    parser = DeltaStreamParser()
    async for chunk in chunks:
        for delta in parser.feed(chunk):
            yield delta
    for delta in parser.finish():
        yield delta


async def collect_text(chunks: AsyncIterator[str]) -> str:
    parts = [delta async for delta in iter_deltas(chunks)]
    return "".join(parts)
