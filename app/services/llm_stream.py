"""Provider stream access via LiteLLM.

LiteLLM hands back OpenAI-shaped chunks whatever the provider. The chat
orchestrator works on a smaller block grammar instead:

    text_delta(text)
    tool_use_start(tool_name, call_id)
    tool_input_delta(partial_json)
    block_stop
    usage(input_tokens, output_tokens)

``ChunkNormalizer`` does the translation. Tool blocks are strictly
sequential: a call with a new index closes the open one, and argument
fragments for any index other than the open block's are a protocol error.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from dataclasses import dataclass

from litellm import acompletion

logger = logging.getLogger(__name__)


class UpstreamProtocolError(Exception):
    """The provider stream broke the one-open-tool-block grammar."""


@dataclass
class UpstreamEvent:
    kind: str  # "text_delta", "tool_use_start", "tool_input_delta", "block_stop", "usage"
    text: str = ""
    tool_name: str = ""
    call_id: str = ""
    partial_json: str = ""
    input_tokens: int | None = None
    output_tokens: int | None = None


class ChunkNormalizer:
    def __init__(self) -> None:
        self._open_index: int | None = None

    @property
    def in_tool_block(self) -> bool:
        return self._open_index is not None

    def feed(self, chunk) -> list[UpstreamEvent]:
        events: list[UpstreamEvent] = []
        choice = chunk.choices[0] if getattr(chunk, "choices", None) else None
        delta = getattr(choice, "delta", None) if choice is not None else None

        if delta is not None:
            for call in getattr(delta, "tool_calls", None) or []:
                events.extend(self._feed_tool_call(call))

            content = getattr(delta, "content", None)
            if content:
                events.extend(self._close())
                events.append(UpstreamEvent(kind="text_delta", text=content))

        if choice is not None and getattr(choice, "finish_reason", None):
            events.extend(self._close())

        usage = getattr(chunk, "usage", None)
        if usage:
            events.append(UpstreamEvent(
                kind="usage",
                input_tokens=getattr(usage, "prompt_tokens", None),
                output_tokens=getattr(usage, "completion_tokens", None),
            ))
        return events

    def finish(self) -> list[UpstreamEvent]:
        return self._close()

    def _feed_tool_call(self, call) -> list[UpstreamEvent]:
        events: list[UpstreamEvent] = []
        index = getattr(call, "index", None) or 0
        function = getattr(call, "function", None)
        name = getattr(function, "name", None) if function is not None else None
        arguments = getattr(function, "arguments", None) if function is not None else None

        if name:
            if self._open_index == index:
                raise UpstreamProtocolError(f"Tool call {index} started twice")
            events.extend(self._close())
            self._open_index = index
            events.append(UpstreamEvent(
                kind="tool_use_start", tool_name=name, call_id=getattr(call, "id", None) or "",
            ))

        if arguments:
            if self._open_index != index:
                raise UpstreamProtocolError(
                    f"Arguments for tool call {index} arrived while "
                    f"{'no call' if self._open_index is None else f'call {self._open_index}'} was open"
                )
            events.append(UpstreamEvent(kind="tool_input_delta", partial_json=arguments))
        return events

    def _close(self) -> list[UpstreamEvent]:
        if self._open_index is None:
            return []
        self._open_index = None
        return [UpstreamEvent(kind="block_stop")]


async def stream_completion(
    *,
    model: str,
    max_tokens: int,
    system_prompt: str,
    messages: list[dict],
    tools: list[dict],
    api_key: str | None = None,
    timeout: float | None = None,
) -> AsyncGenerator[UpstreamEvent, None]:
    """Open one streaming completion and yield normalized upstream events."""
    kwargs: dict = {
        "model": model,
        "max_tokens": max_tokens,
        "messages": [{"role": "system", "content": system_prompt}, *messages],
        "stream": True,
        "stream_options": {"include_usage": True},
    }
    if tools:
        kwargs["tools"] = tools
    if api_key:
        kwargs["api_key"] = api_key
    if timeout:
        kwargs["timeout"] = timeout

    normalizer = ChunkNormalizer()
    response = await acompletion(**kwargs)
    async for chunk in response:
        for event in normalizer.feed(chunk):
            yield event
    for event in normalizer.finish():
        yield event
