"""Tests for the incremental SSE decoder."""

from yspeaking.utils.sse import SseDecoder, parse_event_block


def _decode_all(chunks):
    decoder = SseDecoder()
    events = []
    for chunk in chunks:
        events.extend(decoder.feed(chunk))
    return events, decoder


def test_single_event():
    events, _ = _decode_all([b'data: {"a":1}\n\n'])
    assert [e.data for e in events] == ['{"a":1}']


def test_partial_event_waits_for_separator():
    decoder = SseDecoder()
    assert list(decoder.feed(b"data: hel")) == []
    assert decoder.buffer == "data: hel"
    events = list(decoder.feed(b"lo\n\n"))
    assert [e.data for e in events] == ["hello"]
    assert decoder.buffer == ""


def test_event_split_at_every_byte():
    body = b'data: {"x":"one"}\n\ndata: {"x":"two"}\n\ndata: [DONE]\n\n'
    whole, _ = _decode_all([body])
    split, _ = _decode_all([body[i:i + 1] for i in range(len(body))])
    assert [e.data for e in split] == [e.data for e in whole]
    assert len(split) == 3


def test_separator_split_across_chunks():
    events, _ = _decode_all([b"data: a\n", b"\ndata: b\r\n\r", b"\n"])
    assert [e.data for e in events] == ["a", "b"]


def test_crlf_separators():
    events, _ = _decode_all([b"data: first\r\n\r\ndata: second\r\n\r\n"])
    assert [e.data for e in events] == ["first", "second"]


def test_mixed_separators_take_earliest():
    events, _ = _decode_all([b"data: a\r\n\r\ndata: b\n\n"])
    assert [e.data for e in events] == ["a", "b"]


def test_multiple_data_lines_joined_with_newline():
    events, _ = _decode_all([b"data: line1\ndata: line2\n\n"])
    assert events[0].data == "line1\nline2"


def test_other_fields_and_comments_ignored():
    events, _ = _decode_all([b": keep-alive\nevent: message\nid: 7\nretry: 100\ndata: x\n\n"])
    assert [e.data for e in events] == ["x"]


def test_block_without_data_is_skipped():
    events, _ = _decode_all([b": ping\n\nevent: noop\n\ndata: y\n\n"])
    assert [e.data for e in events] == ["y"]


def test_only_one_leading_space_stripped():
    event = parse_event_block("data:  two spaces")
    assert event.data == " two spaces"
    assert parse_event_block("data:nospace").data == "nospace"


def test_utf8_character_split_across_chunks():
    body = "data: 你好\n\n".encode("utf-8")
    # Cut in the middle of the first multi-byte character
    events, _ = _decode_all([body[:7], body[7:]])
    assert events[0].data == "你好"


def test_several_events_in_one_chunk():
    events, _ = _decode_all([b"data: 1\n\ndata: 2\n\ndata: 3\n\n"])
    assert [e.data for e in events] == ["1", "2", "3"]


def test_done_sentinel():
    events, _ = _decode_all([b"data: [DONE]\n\n"])
    assert events[0].is_done


def test_close_returns_unterminated_tail():
    events, decoder = _decode_all([b"data: a\n\ndata: tail"])
    assert [e.data for e in events] == ["a"]
    assert decoder.close() == "data: tail"
    assert decoder.buffer == ""
