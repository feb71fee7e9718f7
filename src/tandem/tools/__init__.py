"""
Tandem Tools — what the model can call, and the executor that guards it.
"""

from tandem.tools.base import Tool, ToolContext, ToolParam, ToolResult
from tandem.tools.executor import ToolExecutor
from tandem.tools.registry import ToolRegistry
from tandem.tools.task import TaskParams, TaskTool, normalize_task_params
from tandem.tools.task_status import TaskStatusTool

__all__ = [
    "TaskParams",
    "TaskStatusTool",
    "TaskTool",
    "Tool",
    "ToolContext",
    "ToolExecutor",
    "ToolParam",
    "ToolRegistry",
    "ToolResult",
    "normalize_task_params",
]
