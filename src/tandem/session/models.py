"""
Session Models — Session → Message → MessagePart.

Sessions nest through parent_id when a sub-agent is spawned. A session's
ancestor chain is always a simple chain: children are only ever created
under an existing parent with a fresh id.

All models are frozen dataclasses; the store returns new instances.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class SessionStatus(str, Enum):
    ACTIVE = "active"  # a turn is running or may run again
    COMPLETED = "completed"  # last turn reached a finish reason
    ERROR = "error"  # last turn failed


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class PartType(str, Enum):
    TEXT = "text"
    TOOL_CALL = "tool-call"
    TOOL_RESULT = "tool-result"


class PartStatus(str, Enum):
    """Execution status, meaningful for tool-call parts."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass(frozen=True)
class Session:
    id: str
    agent: str = "default"
    provider_id: str = ""
    model_id: str = ""
    parent_id: str | None = None
    title: str = ""
    status: str = SessionStatus.ACTIVE.value
    message_count: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    cost: float = 0.0
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    @property
    def is_sub_agent(self) -> bool:
        return self.parent_id is not None


@dataclass(frozen=True)
class Message:
    id: str
    session_id: str
    role: str
    parent_id: str | None = None  # assistant → the user message it answers
    agent: str | None = None
    provider_id: str | None = None
    model_id: str | None = None
    finish_reason: str | None = None
    input_tokens: int = 0
    output_tokens: int = 0
    cost: float = 0.0
    error: str | None = None
    created_at: float = field(default_factory=time.time)
    completed_at: float | None = None


@dataclass(frozen=True)
class MessagePart:
    """
    One ordered piece of a message.

    content by type:
      text        — {"text": str}
      tool-call   — {"tool_call_id", "tool_name", "arguments"}
      tool-result — {"tool_call_id", "tool_name", "output", "is_error"}
    """

    id: str
    message_id: str
    session_id: str
    type: str
    content: dict[str, Any] = field(default_factory=dict)
    status: str = PartStatus.COMPLETED.value
    sequence: int = 0
    created_at: float = field(default_factory=time.time)

    @property
    def text(self) -> str:
        return self.content.get("text", "")

    @property
    def tool_call_id(self) -> str | None:
        return self.content.get("tool_call_id")
