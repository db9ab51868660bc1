"""Tests for delta extraction and accumulation."""

from yspeaking.utils.deltas import (
    DeltaAccumulator,
    extract_delta_text,
    extract_message_text,
    is_completion_payload,
)


def test_extract_delta_content():
    payload = {"choices": [{"delta": {"content": "He"}}]}
    assert extract_delta_text(payload) == "He"


def test_extract_falls_back_to_message_content():
    payload = {"choices": [{"message": {"content": "Full reply"}}]}
    assert extract_delta_text(payload) == "Full reply"


def test_delta_preferred_over_message():
    payload = {"choices": [{"delta": {"content": "d"}, "message": {"content": "m"}}]}
    assert extract_delta_text(payload) == "d"


def test_role_only_delta_is_empty():
    payload = {"choices": [{"delta": {"role": "assistant"}}]}
    assert extract_delta_text(payload) == ""


def test_unrecognized_shapes_yield_empty():
    assert extract_delta_text({}) == ""
    assert extract_delta_text({"choices": []}) == ""
    assert extract_delta_text({"choices": "nope"}) == ""
    assert extract_delta_text({"choices": [None]}) == ""
    assert extract_delta_text({"choices": [{"delta": {"content": None}}]}) == ""
    assert extract_delta_text([1, 2]) == ""
    assert extract_delta_text("text") == ""


def test_is_completion_payload():
    assert is_completion_payload({"choices": []})
    assert not is_completion_payload({"error": "x"})
    assert not is_completion_payload([])


def test_extract_message_text():
    assert extract_message_text({"choices": [{"message": {"content": "Hi"}}]}) == "Hi"
    assert extract_message_text({"choices": [{"delta": {"content": "Hi"}}]}) == ""


def test_accumulator_skips_empty_fragments():
    acc = DeltaAccumulator()
    assert acc.append("He") is True
    assert acc.append("") is False
    assert acc.append("llo") is True
    assert acc.text == "Hello"
    assert acc.fragment_count == 2
