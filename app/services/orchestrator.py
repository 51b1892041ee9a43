"""Chat turn orchestrator — streaming completion with mid-stream tool calls.

Flow for one turn:
  1. ADMITTED      history + new user message assembled by the route
  2. STREAMING     one completion stream; text deltas are relayed as they arrive
  3. TOOL_PENDING  a tool block is open; input fragments are buffered until it
                   closes, then the tool runs before the next upstream read
  4. DONE          terminal ``done`` event with the provider's token totals
     FAILED        terminal ``error`` event; nothing is retried here

Downstream events: text, tool_start, tool_result, done, error. Exactly one of
done / error ends the sequence.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncGenerator, AsyncIterator
from dataclasses import dataclass, field
from enum import StrEnum

from app.services.llm_stream import UpstreamEvent, UpstreamProtocolError, stream_completion
from app.services.tools import ToolContext, ToolRegistry

logger = logging.getLogger(__name__)

GENERIC_ERROR = "An error occurred during generation."


class TurnState(StrEnum):
    ADMITTED = "admitted"
    STREAMING = "streaming"
    TOOL_PENDING = "tool_pending"
    DONE = "done"
    FAILED = "failed"


@dataclass
class StreamEvent:
    """A single event in the downstream stream."""
    type: str  # "text", "tool_start", "tool_result", "done", "error"
    data: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"type": self.type, **self.data}


@dataclass
class ChatTurnResult:
    """What the turn produced, handed to persistence after DONE."""
    content: str
    input_tokens: int
    output_tokens: int
    model: str


class ChatTurnStream:
    def __init__(
        self,
        *,
        messages: list[dict],
        system_prompt: str,
        registry: ToolRegistry,
        tool_context: ToolContext,
        model: str,
        max_tokens: int,
        api_key: str | None = None,
        timeout: float | None = None,
    ) -> None:
        self.messages = messages
        self.system_prompt = system_prompt
        self.registry = registry
        self.tool_context = tool_context
        self.model = model
        self.max_tokens = max_tokens
        self.api_key = api_key
        self.timeout = timeout

        self.state = TurnState.ADMITTED
        self.input_tokens = 0
        self.output_tokens = 0
        self._text_parts: list[str] = []
        self._tool_name: str | None = None
        self._tool_input_parts: list[str] = []

    @property
    def content(self) -> str:
        return "".join(self._text_parts)

    def result(self) -> ChatTurnResult:
        if self.state is not TurnState.DONE:
            raise RuntimeError(f"No result for a turn in state {self.state}")
        return ChatTurnResult(
            content=self.content,
            input_tokens=self.input_tokens,
            output_tokens=self.output_tokens,
            model=self.model,
        )

    def _upstream(self) -> AsyncIterator[UpstreamEvent]:
        return stream_completion(
            model=self.model,
            max_tokens=self.max_tokens,
            system_prompt=self.system_prompt,
            messages=self.messages,
            tools=self.registry.declarations(),
            api_key=self.api_key,
            timeout=self.timeout,
        )

    async def run(self) -> AsyncGenerator[StreamEvent, None]:
        if self.state is not TurnState.ADMITTED:
            raise RuntimeError("A chat turn can only be run once")
        self.state = TurnState.STREAMING
        try:
            async for event in self._upstream():
                for out in await self._handle(event):
                    yield out
            if self.state is TurnState.TOOL_PENDING:
                raise UpstreamProtocolError("Stream ended inside a tool block")
        except Exception:
            logger.exception("Chat turn failed in state %s", self.state)
            self.state = TurnState.FAILED
            yield StreamEvent(type="error", data={"content": GENERIC_ERROR})
            return

        self.state = TurnState.DONE
        yield StreamEvent(type="done", data={
            "inputTokens": self.input_tokens,
            "outputTokens": self.output_tokens,
        })

    async def _handle(self, event: UpstreamEvent) -> list[StreamEvent]:
        if event.kind == "usage":
            if event.input_tokens is not None:
                self.input_tokens = event.input_tokens
            if event.output_tokens is not None:
                self.output_tokens = event.output_tokens
            return []

        if self.state is TurnState.STREAMING:
            if event.kind == "text_delta":
                self._text_parts.append(event.text)
                return [StreamEvent(type="text", data={"content": event.text})]
            if event.kind == "tool_use_start":
                self.state = TurnState.TOOL_PENDING
                self._tool_name = event.tool_name
                self._tool_input_parts = []
                return [StreamEvent(type="tool_start", data={"toolName": event.tool_name})]
            if event.kind == "block_stop":
                return []
            raise UpstreamProtocolError(f"Unexpected {event.kind} outside a tool block")

        # TOOL_PENDING
        if event.kind == "tool_input_delta":
            self._tool_input_parts.append(event.partial_json)
            return []
        if event.kind == "block_stop":
            return [await self._run_tool()]
        raise UpstreamProtocolError(f"Unexpected {event.kind} while tool {self._tool_name} is open")

    async def _run_tool(self) -> StreamEvent:
        tool_name = self._tool_name or ""
        raw = "".join(self._tool_input_parts)
        tool_input = json.loads(raw) if raw.strip() else {}
        if not isinstance(tool_input, dict):
            raise UpstreamProtocolError(f"Tool input for {tool_name} is not an object")

        serialized = await self.registry.execute(tool_name, tool_input, self.tool_context)

        self._text_parts.append(f"\n[Used tool: {tool_name}]\nResult: {serialized}\n")
        self._tool_name = None
        self._tool_input_parts = []
        self.state = TurnState.STREAMING
        return StreamEvent(type="tool_result", data={
            "toolName": tool_name,
            "result": json.loads(serialized),
        })
