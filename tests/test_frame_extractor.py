import json

import pytest

from serialbridge.protocol.framing import (
    BLOCK_START,
    FrameExtractor,
    FrameKind,
    build_extractor,
    find_json_end,
)

SAMPLE = b'{"a":1,"b":"x}y"}'
BLOCK = (
    b"====== SENT DATA ======\n"
    b"Distance: 12.5 cm {raw}\n"
    b"Servo: 90\n"
    b"========================\n"
)


def _texts(frames) -> list[str]:  # type: ignore[no-untyped-def]
    return [frame.text for frame in frames]


def test_single_json_object() -> None:
    extractor = FrameExtractor()
    frames = extractor.feed(SAMPLE)
    assert _texts(frames) == [SAMPLE.decode()]
    assert frames[0].kind is FrameKind.JSON
    assert extractor.buffered_bytes() == 0


@pytest.mark.parametrize("offset", range(1, len(SAMPLE)))
def test_json_split_at_every_offset(offset: int) -> None:
    extractor = FrameExtractor()
    first = extractor.feed(SAMPLE[:offset])
    second = extractor.feed(SAMPLE[offset:])
    assert first == []
    assert _texts(second) == [SAMPLE.decode()]


def test_json_split_into_three_chunks() -> None:
    for i in range(1, len(SAMPLE) - 1):
        for j in range(i + 1, len(SAMPLE)):
            extractor = FrameExtractor()
            frames = []
            for chunk in (SAMPLE[:i], SAMPLE[i:j], SAMPLE[j:]):
                frames.extend(extractor.feed(chunk))
            assert _texts(frames) == [SAMPLE.decode()]


def test_braces_inside_strings_are_ignored() -> None:
    extractor = FrameExtractor()
    frames = extractor.feed(b'{"msg":"a{b}c"}')
    assert _texts(frames) == ['{"msg":"a{b}c"}']


def test_escaped_quote_does_not_end_string() -> None:
    extractor = FrameExtractor()
    payload = b'{"msg":"a\\"b}"}'
    frames = extractor.feed(payload)
    assert _texts(frames) == [payload.decode()]
    assert json.loads(frames[0].text) == {"msg": 'a"b}'}


def test_escaped_backslash_before_quote_closes_string() -> None:
    extractor = FrameExtractor()
    payload = b'{"path":"C:\\\\"}'
    assert _texts(extractor.feed(payload)) == [payload.decode()]


def test_nested_objects_form_one_frame() -> None:
    extractor = FrameExtractor()
    payload = b'{"sensor":{"id":3,"vals":[{"t":1},{"t":2}]}}'
    assert _texts(extractor.feed(payload)) == [payload.decode()]


def test_multiple_frames_in_one_chunk_in_order() -> None:
    extractor = FrameExtractor()
    frames = extractor.feed(b'{"n":1}\r\n{"n":2}\r\n{"n":3')
    assert _texts(frames) == ['{"n":1}', '{"n":2}']
    assert _texts(extractor.feed(b"}\r\n")) == ['{"n":3}']


def test_noise_before_frame_is_discarded() -> None:
    extractor = FrameExtractor()
    frames = extractor.feed(b'ets Jun  8 2016 boot log\r\n{"ok":true}')
    assert _texts(frames) == ['{"ok":true}']
    assert extractor.buffered_bytes() == 0


def test_block_frame_is_trimmed_and_keeps_braces() -> None:
    extractor = FrameExtractor()
    frames = extractor.feed(BLOCK)
    assert len(frames) == 1
    assert frames[0].kind is FrameKind.BLOCK
    assert frames[0].text.startswith(BLOCK_START)
    assert frames[0].text.endswith("=" * 24)
    assert "{raw}" in frames[0].text


def test_block_then_json_in_same_chunk() -> None:
    extractor = FrameExtractor()
    frames = extractor.feed(BLOCK + b'{"status":"ok"}')
    assert [frame.kind for frame in frames] == [FrameKind.BLOCK, FrameKind.JSON]
    assert frames[1].text == '{"status":"ok"}'


def test_incomplete_block_holds_back_embedded_json() -> None:
    extractor = FrameExtractor()
    assert extractor.feed(b'====== SENT DATA ======\n{"x":1}\n') == []
    frames = extractor.feed(b"========================\n")
    assert len(frames) == 1
    assert frames[0].kind is FrameKind.BLOCK
    assert '{"x":1}' in frames[0].text


def test_json_closing_before_block_marker_comes_first() -> None:
    extractor = FrameExtractor()
    frames = extractor.feed(b'{"first":1}\n' + BLOCK)
    assert [frame.kind for frame in frames] == [FrameKind.JSON, FrameKind.BLOCK]


def test_block_end_split_across_chunks() -> None:
    extractor = FrameExtractor()
    assert extractor.feed(BLOCK[:-10]) == []
    frames = extractor.feed(BLOCK[-10:])
    assert len(frames) == 1


def test_multibyte_character_split_across_chunks() -> None:
    extractor = FrameExtractor()
    payload = '{"unit":"°C"}'.encode("utf-8")
    cut = payload.index(b"\xb0")
    assert extractor.feed(payload[:cut]) == []
    assert _texts(extractor.feed(payload[cut:])) == ['{"unit":"°C"}']


def test_plain_text_without_markers_stays_buffered() -> None:
    extractor = FrameExtractor()
    assert extractor.feed(b"hello device\n") == []
    assert extractor.buffered_bytes() == len(b"hello device\n")


def test_empty_chunk_is_noop() -> None:
    extractor = FrameExtractor()
    assert extractor.feed(b"") == []
    assert extractor.buffered_bytes() == 0


def test_reset_discards_partial_frame() -> None:
    extractor = FrameExtractor()
    extractor.feed(b'{"partial":')
    extractor.reset()
    assert extractor.buffered_bytes() == 0
    assert _texts(extractor.feed(b'{"n":1}')) == ['{"n":1}']


def test_custom_markers() -> None:
    extractor = build_extractor(block_start="--- BEGIN ---", block_end=r"--- END ---\s*\n")
    frames = extractor.feed(b"--- BEGIN ---\nline\n--- END ---\n")
    assert _texts(frames) == ["--- BEGIN ---\nline\n--- END ---"]


def test_empty_block_start_rejected() -> None:
    with pytest.raises(ValueError, match="block_start"):
        FrameExtractor(block_start="")


def test_find_json_end_respects_stop() -> None:
    buf = b'{"a":1}'
    assert find_json_end(buf, 0) == len(buf)
    assert find_json_end(buf, 0, stop=4) is None


def test_truncated_block_does_not_swallow_later_frames() -> None:
    extractor = FrameExtractor()
    frames = []
    frames += extractor.feed(b"====== SENT DATA ======\nDist: 1")
    frames += extractor.feed(b'\r\n{"n":1}\n{"n":2}\n')
    frames += extractor.feed(b"====== SENT DATA ======\nDist: 2\n========================\n")
    assert [frame.kind for frame in frames] == [FrameKind.JSON, FrameKind.JSON, FrameKind.BLOCK]
    assert _texts(frames) == [
        '{"n":1}',
        '{"n":2}',
        "====== SENT DATA ======\nDist: 2\n========================",
    ]
    assert extractor.buffered_bytes() == 0


def test_truncated_block_without_json_is_dropped() -> None:
    extractor = FrameExtractor()
    frames = extractor.feed(b"====== SENT DATA ======\nServo: {9" + BLOCK)
    assert len(frames) == 1
    assert frames[0].kind is FrameKind.BLOCK
    assert frames[0].text == BLOCK.decode().strip()
