from serialbridge.protocol.framing import (
    BLOCK_END_PATTERN,
    BLOCK_START,
    DEFAULT_BUFFER_CEILING,
    BufferGuard,
    Frame,
    FrameExtractor,
    FrameKind,
    build_extractor,
    find_json_end,
)

__all__ = [
    "BLOCK_START",
    "BLOCK_END_PATTERN",
    "DEFAULT_BUFFER_CEILING",
    "Frame",
    "FrameKind",
    "FrameExtractor",
    "BufferGuard",
    "build_extractor",
    "find_json_end",
]
