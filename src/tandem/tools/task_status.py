"""
Task Status tool — check on (or cancel) a background sub-agent.

Used after task(run_in_background=true) to see whether the child session
has finished and to read its final answer.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from tandem.session.models import SessionStatus
from tandem.tools.base import Tool, ToolContext, ToolParam, ToolResult

if TYPE_CHECKING:
    from tandem.agents.subagent import SubAgentRunner


class TaskStatusTool(Tool):
    name = "task_status"
    description = (
        "Check the status of a background task started with the task tool. "
        "Returns the final answer when it has finished. Pass cancel=true to "
        "stop a running task."
    )
    parameters = [
        ToolParam(
            name="task_id",
            type="string",
            description="The session id returned by the task tool",
        ),
        ToolParam(
            name="cancel",
            type="boolean",
            description="Cancel the task if it is still running",
            required=False,
            default=False,
        ),
    ]

    def __init__(self, runner: SubAgentRunner) -> None:
        self._runner = runner

    async def execute(self, context: ToolContext, task_id: str, cancel: bool = False) -> ToolResult:
        task = self._runner.get_background_task(task_id)
        if task is not None:
            if cancel:
                self._runner.cancel_background_task(task_id)
                return ToolResult.success(f"Task {task_id} cancelled.", status="cancelled")
            return ToolResult.success(
                f"Task {task_id} is still running (type: {task.agent}).",
                status="running",
            )

        session = await self._runner.store.get_session(task_id)
        if session is None or session.parent_id is None:
            return ToolResult.fail(f"Task {task_id} not found")

        text = await self._runner.store.get_last_assistant_text(task_id)
        if session.status == SessionStatus.COMPLETED.value:
            return ToolResult.success(
                f"Task {task_id} completed.\nResult: {text or '(no output)'}",
                status="completed",
            )
        if session.status == SessionStatus.ERROR.value:
            return ToolResult.fail(
                f"Task {task_id} failed.\nLast output: {text or '(no output)'}",
                status="error",
            )
        # Active but untracked: cancelled, or orphaned by a restart
        return ToolResult.success(
            f"Task {task_id} is not running (status: {session.status}).\n"
            f"Last output: {text or '(no output)'}",
            status=session.status,
        )
