"""
Model client contract.

A client is bound to one provider and model. stream() yields incremental
events; complete() gathers them into a single response.

Event types:
  - "text-delta": a text fragment (text is set)
  - "tool-call":  one complete tool call (tool_call is set)
  - "finish":     end of the response (finish_reason and usage are set)
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator


@dataclass(frozen=True)
class Usage:
    input_tokens: int = 0
    output_tokens: int = 0

    def __add__(self, other: Usage) -> Usage:
        return Usage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
        )

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def to_dict(self) -> dict[str, int]:
        return {"input_tokens": self.input_tokens, "output_tokens": self.output_tokens}


@dataclass(frozen=True)
class ToolCall:
    """A tool call requested by the model."""

    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ModelStreamEvent:
    type: str  # "text-delta", "tool-call", "finish"
    text: str = ""
    tool_call: ToolCall | None = None
    finish_reason: str | None = None
    usage: Usage | None = None

    @classmethod
    def text_delta(cls, text: str) -> ModelStreamEvent:
        return cls(type="text-delta", text=text)

    @classmethod
    def call(cls, tool_call: ToolCall) -> ModelStreamEvent:
        return cls(type="tool-call", tool_call=tool_call)

    @classmethod
    def finish(cls, finish_reason: str, usage: Usage | None = None) -> ModelStreamEvent:
        return cls(type="finish", finish_reason=finish_reason, usage=usage or Usage())


@dataclass
class ModelResponse:
    text: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    finish_reason: str = "stop"
    usage: Usage = field(default_factory=Usage)


class ModelClient(ABC):
    """Language model client bound to one provider/model pair."""

    provider_id: str = ""
    model_id: str = ""

    @abstractmethod
    def stream(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> AsyncIterator[ModelStreamEvent]:
        """Stream the model's response to an OpenAI-style message list."""
        ...

    async def complete(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> ModelResponse:
        response = ModelResponse()
        chunks: list[str] = []
        async for event in self.stream(messages, tools, system, temperature, max_tokens):
            if event.type == "text-delta":
                chunks.append(event.text)
            elif event.type == "tool-call" and event.tool_call is not None:
                response.tool_calls.append(event.tool_call)
            elif event.type == "finish":
                response.finish_reason = event.finish_reason or "stop"
                response.usage = event.usage or Usage()
        response.text = "".join(chunks)
        return response

    async def close(self) -> None:
        """Release transport resources."""

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.provider_id}/{self.model_id}>"
