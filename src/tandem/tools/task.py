"""
Task tool — delegate a multi-step job to a sub-agent.

The sub-agent runs in its own child session (linked via parent_id) with its
own agent type, tool set and step budget. Foreground tasks block and return
the child's final answer; background tasks return the child session id
immediately and can be checked with task_status.

A sub-agent never sees this tool: the runner strips the spawn capability
from the child's mask, so delegation stops one level down.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from tandem.core.capabilities import Capability
from tandem.core.errors import NotFoundError, ValidationError
from tandem.providers.catalog import MODEL_ALIASES
from tandem.tools.base import Tool, ToolContext, ToolParam, ToolResult

if TYPE_CHECKING:
    from tandem.agents.subagent import SubAgentRunner

MAX_DESCRIPTION_CHARS = 100
MAX_PROMPT_CHARS = 50_000
MAX_TURNS_LIMIT = 50


@dataclass(frozen=True)
class TaskParams:
    """Validated task arguments."""

    description: str
    prompt: str
    subagent_type: str = "default"
    max_turns: int | None = None  # None → the agent type's own budget
    model: str | None = None  # alias, see MODEL_ALIASES
    run_in_background: bool = False
    resume: str | None = None

    @property
    def model_ref(self) -> tuple[str, str] | None:
        """(provider_id, model_id) for the alias, if one was given."""
        return MODEL_ALIASES.get(self.model) if self.model else None


def normalize_task_params(raw: dict[str, Any] | TaskParams) -> TaskParams:
    """Check bounds and fill defaults. Raises ValidationError listing every issue."""
    if isinstance(raw, TaskParams):
        raw = {
            "description": raw.description,
            "prompt": raw.prompt,
            "subagent_type": raw.subagent_type,
            "max_turns": raw.max_turns,
            "model": raw.model,
            "run_in_background": raw.run_in_background,
            "resume": raw.resume,
        }

    issues: list[str] = []

    description = raw.get("description")
    if not isinstance(description, str) or not description:
        issues.append("description is required")
    elif len(description) > MAX_DESCRIPTION_CHARS:
        issues.append(f"description must be at most {MAX_DESCRIPTION_CHARS} characters")

    prompt = raw.get("prompt")
    if not isinstance(prompt, str) or not prompt:
        issues.append("prompt is required")
    elif len(prompt) > MAX_PROMPT_CHARS:
        issues.append(f"prompt must be at most {MAX_PROMPT_CHARS} characters")

    subagent_type = raw.get("subagent_type") or "default"
    if not isinstance(subagent_type, str):
        issues.append("subagent_type must be a string")

    max_turns = raw.get("max_turns")
    if max_turns is not None and (
        isinstance(max_turns, bool)
        or not isinstance(max_turns, int)
        or not 1 <= max_turns <= MAX_TURNS_LIMIT
    ):
        issues.append(f"max_turns must be an integer between 1 and {MAX_TURNS_LIMIT}")

    model = raw.get("model")
    if model is not None and model not in MODEL_ALIASES:
        issues.append(f"model must be one of {', '.join(MODEL_ALIASES)}")

    run_in_background = raw.get("run_in_background", False)
    if not isinstance(run_in_background, bool):
        issues.append("run_in_background must be a boolean")

    resume = raw.get("resume")
    if resume is not None and not isinstance(resume, str):
        issues.append("resume must be a session id")

    if issues:
        raise ValidationError("Invalid task parameters: " + "; ".join(issues), issues=issues)

    return TaskParams(
        description=description,
        prompt=prompt,
        subagent_type=subagent_type,
        max_turns=max_turns,
        model=model,
        run_in_background=run_in_background,
        resume=resume or None,
    )


class TaskTool(Tool):
    name = "task"
    description = (
        "Launch a sub-agent to handle a complex, multi-step task on its own.\n\n"
        "Use it when a task needs several exploration or research steps, when "
        "a specialised agent fits better, or when work should run in the "
        "background.\n\n"
        "Sub-agent types:\n"
        '- "default": full-featured agent with all tools\n'
        '- "explore": read-only agent for codebase exploration\n'
        '- "plan": planning agent that designs before anything is changed\n\n'
        "The sub-agent works in its own session and returns its final answer. "
        "With run_in_background it returns a session id right away; check it "
        "with task_status."
    )
    parameters = [
        ToolParam(
            name="description",
            type="string",
            description="A short (3-5 word) description of the task",
        ),
        ToolParam(
            name="prompt",
            type="string",
            description="Full instructions for the sub-agent",
        ),
        ToolParam(
            name="subagent_type",
            type="string",
            description="Agent type to use: default, explore, plan, or a custom agent",
            required=False,
            default="default",
        ),
        ToolParam(
            name="max_turns",
            type="integer",
            description="Maximum model calls the sub-agent may make (1-50)",
            required=False,
        ),
        ToolParam(
            name="model",
            type="string",
            description="Model for the sub-agent; inherits the current model if omitted",
            required=False,
            enum=list(MODEL_ALIASES),
        ),
        ToolParam(
            name="run_in_background",
            type="boolean",
            description="Return immediately and keep the sub-agent running",
            required=False,
            default=False,
        ),
        ToolParam(
            name="resume",
            type="string",
            description="Session id of a background task to wait for",
            required=False,
        ),
    ]
    required_capability = Capability.SPAWN_SUBAGENTS
    # An unknown agent type is a turn-level failure, not a tool result
    escalate = (NotFoundError,)

    def __init__(self, runner: SubAgentRunner) -> None:
        self._runner = runner

    async def execute(self, context: ToolContext, **kwargs: Any) -> ToolResult:
        params = normalize_task_params(kwargs)
        if not params.resume:
            self._runner.agents.require(params.subagent_type)

        result = await self._runner.spawn(context.session_id, params, context=context)

        metadata: dict[str, Any] = {
            "session_id": result.session_id,
            "subagent_type": params.subagent_type,
            "background": result.background,
        }
        if result.usage is not None:
            metadata["usage"] = result.usage.to_dict()
        if result.cost is not None:
            metadata["cost"] = result.cost

        if not result.success:
            return ToolResult.fail(f"Task failed: {result.error}", **metadata)
        return ToolResult.success(result.response, **metadata)
