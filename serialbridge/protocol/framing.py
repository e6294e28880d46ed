from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Sequence, Tuple

logger = logging.getLogger(__name__)

BLOCK_START = "====== SENT DATA ======"
BLOCK_END_PATTERN = r"={24}\s*\n"
DEFAULT_BUFFER_CEILING = 50_000

_OPEN = ord("{")
_CLOSE = ord("}")
_QUOTE = ord('"')
_BACKSLASH = ord("\\")


class FrameKind(str, Enum):
    JSON = "json"
    BLOCK = "block"


@dataclass(frozen=True)
class Frame:
    kind: FrameKind
    text: str


def _as_bytes(value: str | bytes, encoding: str) -> bytes:
    if isinstance(value, str):
        return value.encode(encoding)
    return bytes(value)


def find_json_end(buf: bytes | bytearray, start: int, stop: int | None = None) -> int | None:
    """
    Return the index just past the `}` that balances the `{` at `start`, or None.

    Braces inside string literals are ignored; inside a string a backslash
    escapes the next byte, so `\\"` does not close the string.
    """
    limit = len(buf) if stop is None else min(stop, len(buf))
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, limit):
        ch = buf[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == _BACKSLASH:
                escaped = True
            elif ch == _QUOTE:
                in_string = False
            continue
        if ch == _QUOTE:
            in_string = True
        elif ch == _OPEN:
            depth += 1
        elif ch == _CLOSE:
            depth -= 1
            if depth == 0:
                return i + 1
    return None


class BufferGuard:
    """
    Keeps the extractor buffer under `ceiling` bytes.

    When the buffer grows past the ceiling it is cut to start at the last frame
    start marker. If there is no marker, or the tail from the last marker is
    itself larger than the ceiling, the whole buffer is dropped except for a
    trailing partial marker.
    """

    def __init__(
        self,
        ceiling: int = DEFAULT_BUFFER_CEILING,
        markers: Sequence[str | bytes] = (BLOCK_START, "{"),
        encoding: str = "utf-8",
    ) -> None:
        if ceiling <= 0:
            raise ValueError("buffer ceiling must be > 0")
        self._ceiling = int(ceiling)
        self._markers = tuple(_as_bytes(marker, encoding) for marker in markers)
        self.trims = 0
        self.dropped_bytes = 0

    @property
    def ceiling(self) -> int:
        return self._ceiling

    def enforce(self, buf: bytearray) -> int:
        size = len(buf)
        if size <= self._ceiling:
            return 0
        cut = max((buf.rfind(marker) for marker in self._markers), default=-1)
        if cut == -1 or size - cut > self._ceiling:
            dropped = size - min(self._partial_marker_len(buf), self._ceiling)
            del buf[:dropped]
        else:
            dropped = cut
            del buf[:cut]
        self.trims += 1
        self.dropped_bytes += dropped
        logger.warning(
            "frame buffer exceeded %d bytes; dropped %d, kept %d", self._ceiling, dropped, len(buf)
        )
        return dropped

    def _partial_marker_len(self, buf: bytearray) -> int:
        keep = 0
        for marker in self._markers:
            for size in range(len(marker) - 1, keep, -1):
                if buf.endswith(marker[:size]):
                    keep = size
                    break
        return keep


class FrameExtractor:
    """
    Splits a chunked device byte stream into frames.

    Two grammars share the stream: banner blocks that open with `block_start`
    and end with a match of `block_end`, and brace-balanced JSON objects.
    Block matching is tried first while a block start marker is buffered,
    since block bodies may contain braces. A JSON object that closes entirely
    before the marker still goes out first so frames keep stream order.
    A block cut off by a later block start marker is dropped, apart from any
    complete JSON objects inside it.
    """

    def __init__(
        self,
        *,
        block_start: str | bytes = BLOCK_START,
        block_end: str | bytes = BLOCK_END_PATTERN,
        encoding: str = "utf-8",
        guard: BufferGuard | None = None,
    ) -> None:
        self._encoding = encoding
        self._block_start = _as_bytes(block_start, encoding)
        if not self._block_start:
            raise ValueError("block_start must be non-empty")
        self._block_end = re.compile(_as_bytes(block_end, encoding))
        self._guard = guard
        self._buf = bytearray()

    @property
    def guard(self) -> BufferGuard | None:
        return self._guard

    def feed(self, chunk: bytes | bytearray | memoryview) -> List[Frame]:
        if chunk:
            self._buf.extend(chunk)
        frames: List[Frame] = []
        while True:
            span = self._next_span()
            if span is None:
                break
            kind, start, end = span
            if start > 0:
                logger.debug("skipping %d bytes of non-frame data", start)
            text = bytes(self._buf[start:end]).decode(self._encoding, errors="replace").strip()
            del self._buf[:end]
            if text:
                frames.append(Frame(kind=kind, text=text))
        if self._guard is not None:
            self._guard.enforce(self._buf)
        return frames

    def _next_span(self) -> Tuple[FrameKind, int, int] | None:
        buf = self._buf
        while True:
            block_at = buf.find(self._block_start)
            if block_at == -1:
                break
            brace_at = buf.find(_OPEN)
            if brace_at != -1 and brace_at < block_at:
                end = find_json_end(buf, brace_at, block_at)
                if end is not None:
                    return FrameKind.JSON, brace_at, end
            body_at = block_at + len(self._block_start)
            next_block = buf.find(self._block_start, body_at)
            stop = len(buf) if next_block == -1 else next_block
            match = self._block_end.search(buf, body_at, stop)
            if match is not None:
                return FrameKind.BLOCK, block_at, match.end()
            if next_block == -1:
                return None
            # A new banner started before this one ended: the block was cut off.
            span = self._json_in(body_at, next_block)
            if span is not None:
                return span
            logger.debug("dropping %d bytes of truncated block", next_block)
            del buf[:next_block]
        brace_at = buf.find(_OPEN)
        if brace_at != -1:
            end = find_json_end(buf, brace_at)
            if end is not None:
                return FrameKind.JSON, brace_at, end
        return None

    def _json_in(self, start: int, stop: int) -> Tuple[FrameKind, int, int] | None:
        buf = self._buf
        brace_at = buf.find(_OPEN, start, stop)
        while brace_at != -1:
            end = find_json_end(buf, brace_at, stop)
            if end is not None:
                return FrameKind.JSON, brace_at, end
            brace_at = buf.find(_OPEN, brace_at + 1, stop)
        return None

    def buffered_bytes(self) -> int:
        return len(self._buf)

    def reset(self) -> None:
        self._buf.clear()


def build_extractor(
    *,
    block_start: str = BLOCK_START,
    block_end: str = BLOCK_END_PATTERN,
    buffer_ceiling: int = DEFAULT_BUFFER_CEILING,
    encoding: str = "utf-8",
) -> FrameExtractor:
    guard = BufferGuard(buffer_ceiling, markers=(block_start, "{"), encoding=encoding)
    return FrameExtractor(
        block_start=block_start,
        block_end=block_end,
        encoding=encoding,
        guard=guard,
    )
