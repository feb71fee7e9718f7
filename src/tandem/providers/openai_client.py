"""
OpenAI-compatible chat client — streaming with tool calling.

Anthropic, OpenAI, Google and Ollama all expose the chat-completions
protocol, so one client covers the whole catalog; only the base URL,
the key and a few headers differ per provider.

Tool calls arrive incrementally (index, id, name, then argument chunks)
and are yielded as complete calls once the stream finishes. Usage comes
in the final chunk when stream_options.include_usage is set.
"""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator

import openai
from openai import AsyncOpenAI

from tandem.core.errors import ProviderError
from tandem.providers.base import ModelClient, ModelStreamEvent, ToolCall, Usage

logger = logging.getLogger(__name__)

# chat-completions finish reasons → turn-level finish reasons
_FINISH_REASONS = {
    "stop": "stop",
    "tool_calls": "tool-calls",
    "function_call": "tool-calls",
    "length": "length",
    "content_filter": "content-filter",
}


class OpenAICompatibleClient(ModelClient):
    def __init__(
        self,
        provider_id: str,
        model_id: str,
        api_key: str,
        base_url: str | None = None,
        default_headers: dict[str, str] | None = None,
        client: AsyncOpenAI | None = None,
    ) -> None:
        self.provider_id = provider_id
        self.model_id = model_id
        self._client = client or AsyncOpenAI(
            api_key=api_key or "unused",
            base_url=base_url,
            default_headers=default_headers or None,
            max_retries=0,  # the orchestrator owns retry policy
        )

    async def stream(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> AsyncIterator[ModelStreamEvent]:
        payload = list(messages)
        if system:
            payload.insert(0, {"role": "system", "content": system})

        kwargs: dict[str, Any] = {
            "model": self.model_id,
            "messages": payload,
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        if tools:
            kwargs["tools"] = tools
            kwargs["tool_choice"] = "auto"
        if temperature is not None:
            kwargs["temperature"] = temperature
        if max_tokens is not None:
            kwargs["max_tokens"] = max_tokens

        pending: dict[int, dict[str, str]] = {}
        finish_reason = "stop"
        usage = Usage()

        try:
            stream = await self._client.chat.completions.create(**kwargs)
            async for chunk in stream:
                if chunk.usage is not None:
                    usage = Usage(
                        input_tokens=chunk.usage.prompt_tokens or 0,
                        output_tokens=chunk.usage.completion_tokens or 0,
                    )
                if not chunk.choices:
                    continue

                choice = chunk.choices[0]
                delta = choice.delta

                if delta.content:
                    yield ModelStreamEvent.text_delta(delta.content)

                for tc in delta.tool_calls or []:
                    entry = pending.setdefault(tc.index, {"id": "", "name": "", "arguments": ""})
                    if tc.id:
                        entry["id"] = tc.id
                    if tc.function and tc.function.name:
                        entry["name"] = tc.function.name
                    if tc.function and tc.function.arguments:
                        entry["arguments"] += tc.function.arguments

                if choice.finish_reason:
                    finish_reason = _FINISH_REASONS.get(
                        choice.finish_reason, choice.finish_reason
                    )
        except openai.APIStatusError as e:
            raise ProviderError(
                str(e), provider_id=self.provider_id, status_code=e.status_code
            ) from e

        for idx in sorted(pending):
            yield ModelStreamEvent.call(self._parse_call(pending[idx]))

        if pending and finish_reason == "stop":
            finish_reason = "tool-calls"
        yield ModelStreamEvent.finish(finish_reason, usage)

    async def close(self) -> None:
        await self._client.close()

    def _parse_call(self, data: dict[str, str]) -> ToolCall:
        try:
            arguments = json.loads(data["arguments"]) if data["arguments"] else {}
        except json.JSONDecodeError:
            logger.warning(
                "Unparseable tool arguments for %s: %s",
                data["name"],
                data["arguments"][:100],
            )
            arguments = {}
        if not isinstance(arguments, dict):
            arguments = {"value": arguments}
        return ToolCall(id=data["id"], name=data["name"], arguments=arguments)
