"""Chunk normalisation tests — LiteLLM deltas to the block grammar."""

from unittest.mock import patch

import pytest

from app.services.llm_stream import ChunkNormalizer, UpstreamProtocolError, stream_completion
from streaming_chunks import (
    finish_chunk,
    make_acompletion,
    text_chunk,
    tool_chunk,
    tool_turn_chunks,
    usage_chunk,
)


def _kinds(events) -> list[str]:
    return [e.kind for e in events]


def _feed_all(chunks) -> list:
    normalizer = ChunkNormalizer()
    events = []
    for chunk in chunks:
        events.extend(normalizer.feed(chunk))
    events.extend(normalizer.finish())
    return events


def test_text_only_stream():
    events = _feed_all([text_chunk("Hel"), text_chunk("lo"), finish_chunk(), usage_chunk(10, 2)])

    assert _kinds(events) == ["text_delta", "text_delta", "usage"]
    assert "".join(e.text for e in events) == "Hello"
    assert (events[-1].input_tokens, events[-1].output_tokens) == (10, 2)


def test_tool_block_is_opened_buffered_and_closed():
    events = _feed_all(tool_turn_chunks("search_notes", '{"query": "milk"}'))

    assert _kinds(events) == [
        "text_delta",
        "tool_use_start",
        "tool_input_delta",
        "tool_input_delta",
        "block_stop",
        "text_delta",
        "usage",
    ]
    start = events[1]
    assert start.tool_name == "search_notes"
    assert start.call_id == "call_0"
    assert "".join(e.partial_json for e in events[2:4]) == '{"query": "milk"}'


def test_finish_reason_closes_open_block():
    events = _feed_all([
        tool_chunk(0, name="get_usage_stats"),
        finish_chunk("tool_calls"),
    ])
    assert _kinds(events) == ["tool_use_start", "block_stop"]


def test_unterminated_block_closed_by_finish():
    normalizer = ChunkNormalizer()
    normalizer.feed(tool_chunk(0, name="get_usage_stats"))
    assert normalizer.in_tool_block
    assert _kinds(normalizer.finish()) == ["block_stop"]
    assert not normalizer.in_tool_block


def test_next_call_index_closes_previous_block():
    events = _feed_all([
        tool_chunk(0, name="search_notes"),
        tool_chunk(0, arguments="{}"),
        tool_chunk(1, name="get_usage_stats"),
        tool_chunk(1, arguments="{}"),
    ])
    assert _kinds(events) == [
        "tool_use_start", "tool_input_delta", "block_stop",
        "tool_use_start", "tool_input_delta", "block_stop",
    ]


def test_interleaved_arguments_are_a_protocol_error():
    normalizer = ChunkNormalizer()
    normalizer.feed(tool_chunk(0, name="search_notes"))
    normalizer.feed(tool_chunk(1, name="get_usage_stats"))
    with pytest.raises(UpstreamProtocolError):
        normalizer.feed(tool_chunk(0, arguments='{"query": "x"}'))


def test_same_call_started_twice_is_a_protocol_error():
    normalizer = ChunkNormalizer()
    normalizer.feed(tool_chunk(0, name="search_notes"))
    with pytest.raises(UpstreamProtocolError):
        normalizer.feed(tool_chunk(0, name="search_notes"))


def test_arguments_without_open_block_are_a_protocol_error():
    with pytest.raises(UpstreamProtocolError):
        ChunkNormalizer().feed(tool_chunk(0, arguments="{}"))


@pytest.mark.asyncio
async def test_stream_completion_sends_system_prompt_and_tools():
    mock_llm = make_acompletion([text_chunk("Hi"), usage_chunk(5, 1)])
    tools = [{"type": "function", "function": {"name": "t", "parameters": {}}}]

    with patch("app.services.llm_stream.acompletion", mock_llm):
        events = [e async for e in stream_completion(
            model="claude-sonnet-4-20250514",
            max_tokens=256,
            system_prompt="Be brief.",
            messages=[{"role": "user", "content": "hello"}],
            tools=tools,
            api_key="sk-test",
            timeout=30,
        )]

    assert _kinds(events) == ["text_delta", "usage"]
    kwargs = mock_llm.call_args.kwargs
    assert kwargs["messages"][0] == {"role": "system", "content": "Be brief."}
    assert kwargs["messages"][1] == {"role": "user", "content": "hello"}
    assert kwargs["stream"] is True
    assert kwargs["stream_options"] == {"include_usage": True}
    assert kwargs["tools"] == tools
    assert kwargs["api_key"] == "sk-test"
    assert kwargs["timeout"] == 30
