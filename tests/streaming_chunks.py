"""Builders for fake LiteLLM streaming chunks."""

from types import SimpleNamespace
from unittest.mock import AsyncMock


def text_chunk(content: str):
    delta = SimpleNamespace(content=content, tool_calls=None)
    return SimpleNamespace(choices=[SimpleNamespace(delta=delta, finish_reason=None)], usage=None)


def tool_chunk(index: int = 0, name: str | None = None, arguments: str | None = None, call_id: str | None = None):
    call = SimpleNamespace(
        index=index,
        id=call_id or (f"call_{index}" if name else None),
        function=SimpleNamespace(name=name, arguments=arguments),
    )
    delta = SimpleNamespace(content=None, tool_calls=[call])
    return SimpleNamespace(choices=[SimpleNamespace(delta=delta, finish_reason=None)], usage=None)


def finish_chunk(reason: str = "stop"):
    delta = SimpleNamespace(content=None, tool_calls=None)
    return SimpleNamespace(choices=[SimpleNamespace(delta=delta, finish_reason=reason)], usage=None)


def usage_chunk(prompt_tokens: int, completion_tokens: int):
    usage = SimpleNamespace(prompt_tokens=prompt_tokens, completion_tokens=completion_tokens)
    return SimpleNamespace(choices=[], usage=usage)


async def _stream(chunks, error: Exception | None = None):
    for chunk in chunks:
        yield chunk
    if error is not None:
        raise error


def make_acompletion(chunks, error: Exception | None = None) -> AsyncMock:
    """Mock of ``acompletion(stream=True)`` replaying ``chunks``, then raising ``error``."""

    async def _acompletion(**kwargs):
        return _stream(list(chunks), error)

    return AsyncMock(side_effect=_acompletion)


def tool_turn_chunks(
    tool_name: str,
    arguments: str,
    before: str = "Let me check. ",
    after: str = "Done.",
    prompt_tokens: int = 120,
    completion_tokens: int = 30,
) -> list:
    """text, tool call (arguments split in two), text, finish, usage."""
    half = len(arguments) // 2
    return [
        text_chunk(before),
        tool_chunk(0, name=tool_name),
        tool_chunk(0, arguments=arguments[:half]),
        tool_chunk(0, arguments=arguments[half:]),
        text_chunk(after),
        finish_chunk(),
        usage_chunk(prompt_tokens, completion_tokens),
    ]
