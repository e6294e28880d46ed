import pytest

from serialbridge.protocol.framing import BLOCK_START, BufferGuard, FrameExtractor, build_extractor


def test_guard_leaves_small_buffer_alone() -> None:
    guard = BufferGuard(ceiling=16)
    buf = bytearray(b"x" * 16)
    assert guard.enforce(buf) == 0
    assert len(buf) == 16
    assert guard.trims == 0


def test_guard_clears_buffer_without_markers() -> None:
    extractor = build_extractor(buffer_ceiling=1000)
    frames = extractor.feed(b"z" * 10_000)
    assert frames == []
    assert extractor.buffered_bytes() == 0
    assert extractor.guard is not None
    assert extractor.guard.dropped_bytes == 10_000


def test_guard_clears_when_many_small_chunks_never_frame() -> None:
    extractor = build_extractor(buffer_ceiling=1000)
    emitted = []
    for _ in range(100):
        emitted.extend(extractor.feed(b"y" * 100))
        assert extractor.buffered_bytes() <= 1000
    assert emitted == []


def test_guard_keeps_tail_from_last_brace() -> None:
    guard = BufferGuard(ceiling=50)
    buf = bytearray(b"a" * 60 + b'{"partial":')
    dropped = guard.enforce(buf)
    assert dropped == 60
    assert bytes(buf) == b'{"partial":'


def test_guard_keeps_tail_from_last_block_marker() -> None:
    guard = BufferGuard(ceiling=60)
    tail = BLOCK_START.encode() + b"\nline"
    buf = bytearray(b'{"old":' + b"b" * 60 + tail)
    guard.enforce(buf)
    assert bytes(buf) == tail


def test_guard_drops_tail_larger_than_ceiling() -> None:
    guard = BufferGuard(ceiling=20)
    buf = bytearray(b"{" + b"c" * 40)
    assert guard.enforce(buf) == 41
    assert len(buf) == 0


def test_partial_frame_survives_trim_and_completes() -> None:
    extractor = FrameExtractor(guard=BufferGuard(ceiling=64))
    assert extractor.feed(b"noise " * 20 + b'{"late":') == []
    assert extractor.buffered_bytes() == len(b'{"late":')
    frames = extractor.feed(b"1}")
    assert [frame.text for frame in frames] == ['{"late":1}']


def test_guard_rejects_nonpositive_ceiling() -> None:
    with pytest.raises(ValueError, match="ceiling"):
        BufferGuard(ceiling=0)


def test_guard_keeps_trailing_partial_block_marker() -> None:
    guard = BufferGuard(ceiling=32)
    buf = bytearray(b"x" * 40 + b"====== SENT DA")
    assert guard.enforce(buf) == 40
    assert bytes(buf) == b"====== SENT DA"


def test_partial_marker_kept_through_trim_completes_block() -> None:
    extractor = build_extractor(buffer_ceiling=64)
    head = BLOCK_START.encode()[:10]
    assert extractor.feed(b"boot " * 20 + head) == []
    assert extractor.buffered_bytes() == len(head)
    frames = extractor.feed(BLOCK_START.encode()[10:] + b"\nDist: 3\n" + b"=" * 24 + b"\n")
    assert len(frames) == 1
    assert frames[0].text.startswith(BLOCK_START)
