"""
Tool — the base class for everything the model can call.

A tool is name + description + parameters + execute(). The registry turns
parameters into whichever schema the model client needs; the executor
decides whether a call may run at all.

Tools receive a ToolContext describing the calling turn (session, abort
signal, capability mask, credentials) so delegation tools can act on the
parent's behalf without the model ever seeing those values.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable

from tandem.core.capabilities import Capability
from tandem.core.errors import ToolExecutionError, ValidationError

if TYPE_CHECKING:
    from tandem.credentials.resolver import CredentialResolver

logger = logging.getLogger(__name__)

_JSON_TYPES: dict[str, tuple[type, ...]] = {
    "string": (str,),
    "integer": (int,),
    "number": (int, float),
    "boolean": (bool,),
    "array": (list,),
    "object": (dict,),
}


@dataclass
class ToolParam:
    """A single parameter for a tool."""

    name: str
    type: str  # "string", "integer", "number", "boolean", "array", "object"
    description: str
    required: bool = True
    default: Any = None
    enum: list[str] | None = None
    items: dict | None = None  # For array types


@dataclass
class ToolResult:
    """The result of executing a tool."""

    output: str
    metadata: dict = field(default_factory=dict)
    error: bool = False
    tool_name: str = ""
    call_id: str = ""

    @classmethod
    def success(cls, output: str, **metadata) -> ToolResult:
        return cls(output=output, metadata=metadata)

    @classmethod
    def fail(cls, error_msg: str, **metadata) -> ToolResult:
        return cls(output=error_msg, metadata=metadata, error=True)


@dataclass
class ToolContext:
    """What a tool knows about the turn that called it."""

    session_id: str
    message_id: str = ""
    user_id: str = ""
    call_id: str = ""
    agent: str = "default"
    provider_id: str = ""
    model_id: str = ""
    capabilities: Capability = Capability.NONE
    abort: asyncio.Event = field(default_factory=asyncio.Event)
    credentials: CredentialResolver | None = None
    on_event: Callable[[Any], Any] | None = None


class Tool(ABC):
    """
    Base class for all tools.

    Subclass, set the class attributes, implement execute().
    """

    name: str = ""
    description: str = ""
    parameters: list[ToolParam] = []
    # Hidden from turns whose capability mask lacks this
    required_capability: Capability = Capability.NONE
    # Exceptions that abort the turn instead of becoming an error result
    escalate: tuple[type[BaseException], ...] = ()

    @abstractmethod
    async def execute(self, context: ToolContext, **kwargs: Any) -> ToolResult:
        ...

    def to_openai_schema(self) -> dict:
        properties = {}
        required = []

        for param in self.parameters:
            prop: dict[str, Any] = {
                "type": param.type,
                "description": param.description,
            }
            if param.enum:
                prop["enum"] = param.enum
            if param.items:
                prop["items"] = param.items
            properties[param.name] = prop

            if param.required:
                required.append(param.name)

        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": {
                    "type": "object",
                    "properties": properties,
                    "required": required,
                },
            },
        }

    def validate_args(self, args: dict[str, Any]) -> dict[str, Any]:
        """Check types and enums, fill defaults. Unknown keys are dropped."""
        cleaned: dict[str, Any] = {}
        issues: list[str] = []

        for param in self.parameters:
            if param.name not in args or args[param.name] is None:
                if param.required:
                    issues.append(f"missing required parameter: {param.name}")
                elif param.default is not None:
                    cleaned[param.name] = param.default
                continue

            value = args[param.name]
            expected = _JSON_TYPES.get(param.type)
            if expected and (
                not isinstance(value, expected)
                or (param.type in ("integer", "number") and isinstance(value, bool))
            ):
                issues.append(f"{param.name} must be of type {param.type}")
                continue
            if param.enum and value not in param.enum:
                issues.append(f"{param.name} must be one of {', '.join(param.enum)}")
                continue
            cleaned[param.name] = value

        if issues:
            raise ValidationError("; ".join(issues), issues=issues)
        return cleaned

    async def safe_execute(self, context: ToolContext, args: dict[str, Any]) -> ToolResult:
        """Validate and run. Failures become error results unless escalated."""
        try:
            cleaned = self.validate_args(args)
            return await self.execute(context, **cleaned)
        except self.escalate:
            raise
        except ValidationError as e:
            return ToolResult.fail(f"Invalid arguments: {e}")
        except ToolExecutionError as e:
            return ToolResult.fail(str(e))
        except Exception as e:
            logger.error(
                "Tool '%s' failed: %s",
                self.name,
                e,
                exc_info=True,
                extra={"tool_name": self.name, "session_id": context.session_id},
            )
            return ToolResult.fail(f"Tool error: {e}")

    def __repr__(self) -> str:
        return f"<Tool:{self.name}>"
