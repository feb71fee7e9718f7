"""
Tool Executor — runs one tool call behind the permission engine.

This is the bridge between the turn loop and the Tool Registry:
1. The orchestrator hands over a tool call (name, args, call id)
2. The executor checks the call against the ruleset plus remembered approvals
3. deny → error result, ask → suspend on the approval manager (until answered
   or the turn aborts), allow → run
4. The result comes back tagged with the tool name and call id

Tool failures never escape as exceptions, except the exception types a tool
declares in `escalate` — those abort the turn.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING, Any

from tandem.core.metrics import metrics
from tandem.permissions.approval import format_approval_description
from tandem.permissions.ruleset import (
    PermissionAction,
    RuleScope,
    Ruleset,
    build_tool_permission_request,
    check_permission,
    create_default_ruleset,
)
from tandem.tools.base import ToolContext, ToolResult

if TYPE_CHECKING:
    from tandem.permissions.approval import ApprovalManager
    from tandem.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)


class ToolExecutor:
    def __init__(
        self,
        registry: ToolRegistry,
        ruleset: Ruleset | None = None,
        approvals: ApprovalManager | None = None,
        approval_timeout: float | None = None,
    ) -> None:
        self.registry = registry
        self.ruleset = ruleset if ruleset is not None else create_default_ruleset()
        self.approvals = approvals
        self.approval_timeout = approval_timeout

    async def execute(
        self,
        tool_name: str,
        args: dict[str, Any],
        call_id: str,
        context: ToolContext,
    ) -> ToolResult:
        """
        Execute a tool call after the permission check.

        Args:
            tool_name: Name the model called
            args: Decoded arguments from the model
            call_id: Tool call id for correlation
            context: The calling turn's context

        Returns:
            ToolResult tagged with tool_name and call_id
        """
        tool = self.registry.get(tool_name)
        if tool is None:
            return self._tag(ToolResult.fail(f"Unknown tool: {tool_name}"), tool_name, call_id)

        request = build_tool_permission_request(tool_name, args, context.session_id)
        ruleset = self.approvals.apply_to(self.ruleset, context.session_id) if self.approvals else self.ruleset
        decision = check_permission(ruleset, request)

        rule = decision.matched_rule
        if rule is not None and rule.scope is RuleScope.REQUEST and self.approvals:
            self.approvals.consume(rule)

        action = decision.action
        if action is PermissionAction.ASK and self.approvals is None:
            metrics.inc("tool.executed", labels={"decision": "ask", "tool": tool_name})
            return self._tag(
                ToolResult.fail(f"Permission required for {tool_name} but no approval handler is available"),
                tool_name,
                call_id,
            )
        if action is PermissionAction.ASK:
            action = await self._ask(tool_name, args, call_id, context, request.permission, request.value)
            if action is None:
                metrics.inc("tool.executed", labels={"decision": "cancelled", "tool": tool_name})
                return self._tag(
                    ToolResult.fail(f"Cancelled while waiting for approval: {tool_name}"),
                    tool_name,
                    call_id,
                )

        if action is PermissionAction.DENY:
            logger.info(
                "Tool call denied: %s",
                tool_name,
                extra={"session_id": context.session_id, "tool_name": tool_name},
            )
            metrics.inc("tool.executed", labels={"decision": "deny", "tool": tool_name})
            reason = "denied by user" if decision.action is PermissionAction.ASK else "denied by rule"
            return self._tag(
                ToolResult.fail(f"Permission denied: {tool_name} ({reason})"),
                tool_name,
                call_id,
            )

        logger.info(
            "Executing tool: %s",
            tool_name,
            extra={"session_id": context.session_id, "tool_name": tool_name},
        )
        started = time.monotonic()
        result = await tool.safe_execute(context, args)
        elapsed_ms = (time.monotonic() - started) * 1000
        metrics.inc("tool.executed", labels={"decision": "allow", "tool": tool_name})
        metrics.observe("tool.duration_ms", elapsed_ms, labels={"tool": tool_name})
        if result.error:
            metrics.inc("tool.failed", labels={"tool": tool_name})
        return self._tag(result, tool_name, call_id)

    async def execute_batch(
        self,
        tool_calls: list[tuple[str, dict[str, Any], str]],
        context: ToolContext,
    ) -> list[ToolResult]:
        """Execute (name, args, call_id) triples in order."""
        results = []
        for tool_name, args, call_id in tool_calls:
            results.append(await self.execute(tool_name, args, call_id, context))
        return results

    async def _ask(
        self,
        tool_name: str,
        args: dict[str, Any],
        call_id: str,
        context: ToolContext,
        permission: str,
        value: str,
    ) -> PermissionAction | None:
        """
        Suspend on the approval manager until the user answers.

        Returns None when the turn is aborted first. The pending request is
        withdrawn so a late answer can never run the tool.
        """
        assert self.approvals is not None
        if context.abort.is_set():
            return None
        approval = asyncio.ensure_future(
            self.approvals.request_approval(
                session_id=context.session_id,
                permission=permission,
                value=value,
                description=format_approval_description(tool_name, args),
                tool_name=tool_name,
                tool_call_id=call_id,
                message_id=context.message_id,
                timeout=self.approval_timeout,
            )
        )
        aborted = asyncio.ensure_future(context.abort.wait())
        try:
            done, _ = await asyncio.wait({approval, aborted}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            aborted.cancel()
            if not approval.done():
                approval.cancel()

        if approval in done:
            return PermissionAction.ALLOW if approval.result() else PermissionAction.DENY

        # Let the request unwind so it leaves the pending list before we return
        await asyncio.wait({approval})
        logger.info(
            "Approval for %s abandoned, turn aborted",
            tool_name,
            extra={"session_id": context.session_id, "tool_name": tool_name},
        )
        return None

    @staticmethod
    def _tag(result: ToolResult, tool_name: str, call_id: str) -> ToolResult:
        result.tool_name = tool_name
        result.call_id = call_id
        return result
