from sitesmith.sse import DONE_SENTINEL, SSE_DONE, FrameDecoder, sse_format


STREAM = (
    'data: {"type":"progress","message":"Creating new Daytona sandbox..."}\n\n'
    ": keep-alive comment\n\n"
    'data: {"type":"claude_message","content":"Hello"}\r\n\r\n'
    "data: [DONE]\n\n"
)


def decode_all(chunks: list[str]) -> list[str]:
    decoder = FrameDecoder()
    frames: list[str] = []
    for chunk in chunks:
        frames.extend(decoder.feed(chunk))
    frames.extend(decoder.flush())
    return frames


def test_single_chunk():
    assert decode_all([STREAM]) == [
        '{"type":"progress","message":"Creating new Daytona sandbox..."}',
        '{"type":"claude_message","content":"Hello"}',
        DONE_SENTINEL,
    ]


def test_frames_independent_of_chunk_boundaries():
    expected = decode_all([STREAM])
    for size in (1, 2, 3, 7, 16):
        chunks = [STREAM[i : i + size] for i in range(0, len(STREAM), size)]
        assert decode_all(chunks) == expected
    # every possible two-way split, including inside \r\n pairs
    for cut in range(len(STREAM) + 1):
        assert decode_all([STREAM[:cut], STREAM[cut:]]) == expected


def test_multiline_data_joined():
    decoder = FrameDecoder()
    assert decoder.feed("event: x\ndata: one\ndata:two\nid: 3\n\n") == ["one\ntwo"]


def test_blank_data_skipped():
    decoder = FrameDecoder()
    assert decoder.feed("data:   \n\ndata: ok\n\n") == ["ok"]


def test_flush_salvages_trailing_event():
    decoder = FrameDecoder()
    assert decoder.feed('data: {"type":"complete"}') == []
    assert decoder.flush() == ['{"type":"complete"}']
    assert decoder.buffer == ""


def test_flush_discards_event_without_data():
    decoder = FrameDecoder()
    decoder.feed("retry: 100")
    assert decoder.flush() == []
    assert decoder.flush() == []


def test_format_round_trips_through_decoder():
    decoder = FrameDecoder()
    frames = decoder.feed(sse_format({"type": "progress", "message": "a"}) + SSE_DONE)
    assert frames == ['{"type": "progress", "message": "a"}', DONE_SENTINEL]
