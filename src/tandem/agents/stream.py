"""
Stream Processor — persists a turn's output and relays it to an observer.

The orchestrator reports what happens during a turn (step boundaries, text
deltas, tool calls and their results, the finish) and the processor:
  1. writes the corresponding message parts to the session store
  2. forwards a TurnEvent to the optional on_event callback

Text deltas are relayed live but only written once a model call has
succeeded, so a retried call never leaves duplicated text behind.

The callback may be sync or async. A failing observer is logged and
ignored; it never breaks the turn.
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Union

from tandem.providers.base import ToolCall, Usage
from tandem.session.models import PartStatus, PartType

if TYPE_CHECKING:
    from tandem.session.store import SessionStore
    from tandem.tools.base import ToolResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TurnEvent:
    """One progress notification for observers of a turn."""

    type: str  # step-start, text-delta, tool-call, tool-result, step-finish, finish, error
    session_id: str
    message_id: str = ""
    step: int = 0
    text: str = ""
    part_id: str = ""
    tool_call_id: str = ""
    tool_name: str = ""
    arguments: dict[str, Any] = field(default_factory=dict)
    output: str = ""
    is_error: bool = False
    finish_reason: str = ""
    usage: dict[str, int] = field(default_factory=dict)
    cost: float = 0.0
    error: str = ""

    @classmethod
    def step_start(cls, session_id: str, message_id: str, step: int) -> TurnEvent:
        return cls(type="step-start", session_id=session_id, message_id=message_id, step=step)

    @classmethod
    def text_delta(cls, session_id: str, message_id: str, text: str) -> TurnEvent:
        return cls(type="text-delta", session_id=session_id, message_id=message_id, text=text)

    @classmethod
    def tool_call(cls, session_id: str, message_id: str, part_id: str, call: ToolCall) -> TurnEvent:
        return cls(
            type="tool-call",
            session_id=session_id,
            message_id=message_id,
            part_id=part_id,
            tool_call_id=call.id,
            tool_name=call.name,
            arguments=dict(call.arguments),
        )

    @classmethod
    def tool_result(
        cls, session_id: str, message_id: str, part_id: str, result: ToolResult
    ) -> TurnEvent:
        return cls(
            type="tool-result",
            session_id=session_id,
            message_id=message_id,
            part_id=part_id,
            tool_call_id=result.call_id,
            tool_name=result.tool_name,
            output=result.output,
            is_error=result.error,
        )

    @classmethod
    def step_finish(
        cls, session_id: str, message_id: str, step: int, finish_reason: str, usage: Usage
    ) -> TurnEvent:
        return cls(
            type="step-finish",
            session_id=session_id,
            message_id=message_id,
            step=step,
            finish_reason=finish_reason,
            usage=usage.to_dict(),
        )

    @classmethod
    def finish(
        cls, session_id: str, message_id: str, finish_reason: str, usage: Usage, cost: float
    ) -> TurnEvent:
        return cls(
            type="finish",
            session_id=session_id,
            message_id=message_id,
            finish_reason=finish_reason,
            usage=usage.to_dict(),
            cost=cost,
        )

    @classmethod
    def failure(cls, session_id: str, message_id: str, error: str) -> TurnEvent:
        return cls(type="error", session_id=session_id, message_id=message_id, error=error)


EventCallback = Callable[[TurnEvent], Union[None, Awaitable[None]]]


class StreamProcessor:
    """Per-turn writer for one assistant message."""

    def __init__(
        self,
        store: SessionStore,
        session_id: str,
        message_id: str,
        on_event: EventCallback | None = None,
    ) -> None:
        self.store = store
        self.session_id = session_id
        self.message_id = message_id
        self._on_event = on_event

    # ─── Steps ────────────────────────────────────────────────────

    async def step_start(self, step: int) -> None:
        await self.emit(TurnEvent.step_start(self.session_id, self.message_id, step))

    async def text_delta(self, text: str) -> None:
        if text:
            await self.emit(TurnEvent.text_delta(self.session_id, self.message_id, text))

    async def commit_text(self, text: str) -> str | None:
        """Persist a completed call's text. Returns the part id, if any was written."""
        if not text:
            return None
        part = await self.store.append_message_part(
            self.message_id, self.session_id, PartType.TEXT, {"text": text}
        )
        return part.id

    async def step_finish(self, step: int, finish_reason: str, usage: Usage) -> None:
        await self.emit(
            TurnEvent.step_finish(self.session_id, self.message_id, step, finish_reason, usage)
        )

    # ─── Tools ────────────────────────────────────────────────────

    async def tool_call(self, call: ToolCall) -> str:
        """Record a pending tool call. Returns its part id."""
        part = await self.store.append_message_part(
            self.message_id,
            self.session_id,
            PartType.TOOL_CALL,
            {"tool_call_id": call.id, "tool_name": call.name, "arguments": call.arguments},
            status=PartStatus.PENDING,
        )
        await self.emit(TurnEvent.tool_call(self.session_id, self.message_id, part.id, call))
        return part.id

    async def tool_running(self, part_id: str) -> None:
        await self.store.update_message_part(part_id, status=PartStatus.RUNNING)

    async def tool_result(self, part_id: str, result: ToolResult) -> None:
        """Close the tool-call part and append the matching tool-result part."""
        await self.store.update_message_part(
            part_id, status=PartStatus.ERROR if result.error else PartStatus.COMPLETED
        )
        result_part = await self.store.append_message_part(
            self.message_id,
            self.session_id,
            PartType.TOOL_RESULT,
            {
                "tool_call_id": result.call_id,
                "tool_name": result.tool_name,
                "output": result.output,
                "is_error": result.error,
            },
            status=PartStatus.ERROR if result.error else PartStatus.COMPLETED,
        )
        await self.emit(
            TurnEvent.tool_result(self.session_id, self.message_id, result_part.id, result)
        )

    async def tool_failed(self, part_id: str) -> None:
        await self.store.update_message_part(part_id, status=PartStatus.ERROR)

    # ─── Terminal ─────────────────────────────────────────────────

    async def finish(self, finish_reason: str, usage: Usage, cost: float) -> None:
        await self.emit(
            TurnEvent.finish(self.session_id, self.message_id, finish_reason, usage, cost)
        )

    async def error(self, message: str) -> None:
        await self.emit(TurnEvent.failure(self.session_id, self.message_id, message))

    async def emit(self, event: TurnEvent) -> None:
        if self._on_event is None:
            return
        try:
            result = self._on_event(event)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.warning(
                "Turn observer failed on %s: %s",
                event.type,
                e,
                extra={"session_id": self.session_id},
            )
