"""
Approval Manager — human-in-the-loop resolution of "ask" decisions.

The Tool Executor calls request_approval() and suspends until a user
resolves the request, it is cancelled, or it expires. Expiry and
cancellation both count as denial.

Decisions can be remembered:
  once    — only this call
  session — an allow/deny rule for this session
  always  — a global allow/deny rule

Remembered rules are checked ahead of the base ruleset (see apply_to).

Usage:
    approvals = ApprovalManager(default_timeout=300, on_request=broadcast)
    approved = await approvals.request_approval(
        session_id="ses_1", permission="tool:bash", value='{"command": "ls"}',
        description="Execute command: ls",
    )
    # elsewhere, from the UI handler:
    approvals.resolve(request_id, approved=True, scope=ApprovalScope.SESSION)
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

from tandem.permissions.ruleset import (
    PermissionAction,
    PermissionRule,
    RuleScope,
    Ruleset,
)

logger = logging.getLogger(__name__)

DEFAULT_APPROVAL_TIMEOUT = 300.0  # 5 minutes


class ApprovalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class ApprovalScope(str, Enum):
    ONCE = "once"
    SESSION = "session"
    ALWAYS = "always"


@dataclass
class ApprovalRequest:
    id: str
    session_id: str
    permission: str
    value: str
    description: str
    tool_name: str = ""
    tool_call_id: str = ""
    message_id: str = ""
    status: ApprovalStatus = ApprovalStatus.PENDING
    decision_scope: ApprovalScope | None = None
    created_at: float = field(default_factory=time.time)
    resolved_at: float | None = None
    expires_at: float = 0.0


@dataclass
class _Pending:
    request: ApprovalRequest
    future: asyncio.Future


ApprovalListener = Callable[[ApprovalRequest], Any]


class ApprovalManager:
    """Owns pending approval requests and remembered decisions."""

    def __init__(
        self,
        default_timeout: float = DEFAULT_APPROVAL_TIMEOUT,
        on_request: ApprovalListener | None = None,
        on_resolved: ApprovalListener | None = None,
    ) -> None:
        self.default_timeout = default_timeout
        self._on_request = on_request
        self._on_resolved = on_resolved
        self._pending: dict[str, _Pending] = {}
        self._session_rules: dict[str, list[PermissionRule]] = {}
        self._global_rules: list[PermissionRule] = []
        self._request_rules: list[PermissionRule] = []

    # ─── Requests ─────────────────────────────────────────────────

    async def request_approval(
        self,
        *,
        session_id: str,
        permission: str,
        value: str,
        description: str,
        tool_name: str = "",
        tool_call_id: str = "",
        message_id: str = "",
        timeout: float | None = None,
    ) -> bool:
        """Suspend until the request is approved, denied, cancelled or expires."""
        timeout = self.default_timeout if timeout is None else timeout
        now = time.time()
        request = ApprovalRequest(
            id=f"apr_{uuid.uuid4().hex[:12]}",
            session_id=session_id,
            permission=permission,
            value=value,
            description=description,
            tool_name=tool_name,
            tool_call_id=tool_call_id,
            message_id=message_id,
            created_at=now,
            expires_at=now + timeout,
        )
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[request.id] = _Pending(request=request, future=future)
        logger.info(
            "Approval requested: %s (%s)",
            request.id,
            description,
            extra={"session_id": session_id, "tool_name": tool_name},
        )
        try:
            await self._notify(self._on_request, request)
            return await asyncio.wait_for(asyncio.shield(future), timeout=timeout)
        except asyncio.TimeoutError:
            if self._pending.pop(request.id, None) is not None:
                request.status = ApprovalStatus.EXPIRED
                request.resolved_at = time.time()
                logger.info("Approval %s expired", request.id)
                await self._notify(self._on_resolved, request)
            return False
        except asyncio.CancelledError:
            if self._pending.pop(request.id, None) is not None:
                request.status = ApprovalStatus.CANCELLED
                request.resolved_at = time.time()
            raise

    def resolve(
        self,
        request_id: str,
        approved: bool,
        scope: ApprovalScope = ApprovalScope.ONCE,
    ) -> ApprovalRequest | None:
        """Settle a pending request. Returns None if it is no longer pending."""
        pending = self._pending.pop(request_id, None)
        if pending is None:
            return None

        request = pending.request
        request.status = ApprovalStatus.APPROVED if approved else ApprovalStatus.DENIED
        request.decision_scope = scope
        request.resolved_at = time.time()

        if scope is not ApprovalScope.ONCE:
            self._remember(request, approved, scope)

        if not pending.future.done():
            pending.future.set_result(approved)

        logger.info(
            "Approval %s %s (scope=%s)",
            request_id,
            request.status.value,
            scope.value,
            extra={"session_id": request.session_id},
        )
        if self._on_resolved is not None:
            result = self._on_resolved(request)
            if inspect.isawaitable(result):
                asyncio.ensure_future(result)
        return request

    def cancel(self, request_id: str) -> bool:
        pending = self._pending.pop(request_id, None)
        if pending is None:
            return False
        self._settle_cancelled(pending)
        return True

    def cancel_session(self, session_id: str) -> int:
        """Cancel every pending request of a session. Returns the count."""
        ids = [rid for rid, p in self._pending.items() if p.request.session_id == session_id]
        for request_id in ids:
            self._settle_cancelled(self._pending.pop(request_id))
        return len(ids)

    def get_pending(self, request_id: str) -> ApprovalRequest | None:
        pending = self._pending.get(request_id)
        return pending.request if pending else None

    def list_pending(self, session_id: str | None = None) -> list[ApprovalRequest]:
        return [
            p.request
            for p in self._pending.values()
            if session_id is None or p.request.session_id == session_id
        ]

    def has_pending(self, session_id: str) -> bool:
        return any(p.request.session_id == session_id for p in self._pending.values())

    # ─── Remembered Rules ─────────────────────────────────────────

    def grant_once(
        self,
        permission: str,
        pattern: str,
        session_id: str | None = None,
        action: PermissionAction = PermissionAction.ALLOW,
    ) -> PermissionRule:
        """Pre-approve a single matching request. Consumed on first use."""
        rule = PermissionRule(
            permission=permission,
            pattern=pattern,
            action=action,
            scope=RuleScope.REQUEST,
            session_id=session_id,
            id=f"rul_{uuid.uuid4().hex[:12]}",
        )
        self._request_rules.append(rule)
        return rule

    def consume(self, rule: PermissionRule) -> bool:
        """Drop a request-scope rule after it has been used."""
        if rule.scope is not RuleScope.REQUEST:
            return False
        try:
            self._request_rules.remove(rule)
        except ValueError:
            return False
        return True

    def remembered_rules(self, session_id: str | None) -> list[PermissionRule]:
        """Request rules, then session rules, then global rules."""
        rules = list(self._request_rules)
        if session_id is not None:
            rules.extend(self._session_rules.get(session_id, []))
        rules.extend(self._global_rules)
        return rules

    def apply_to(self, base: Ruleset, session_id: str | None) -> Ruleset:
        """`base` with remembered decisions checked first. Keeps base's default."""
        remembered = self.remembered_rules(session_id)
        if not remembered:
            return base
        return Ruleset(rules=(*remembered, *base.rules), default_action=base.default_action)

    def forget_session(self, session_id: str) -> None:
        self._session_rules.pop(session_id, None)

    # ─── Internal ─────────────────────────────────────────────────

    def _remember(self, request: ApprovalRequest, approved: bool, scope: ApprovalScope) -> None:
        action = PermissionAction.ALLOW if approved else PermissionAction.DENY
        if scope is ApprovalScope.SESSION:
            rule = PermissionRule(
                permission=request.permission,
                pattern=request.value,
                action=action,
                scope=RuleScope.SESSION,
                session_id=request.session_id,
                id=f"rul_{uuid.uuid4().hex[:12]}",
            )
            self._session_rules.setdefault(request.session_id, []).insert(0, rule)
        else:
            rule = PermissionRule(
                permission=request.permission,
                pattern=request.value,
                action=action,
                id=f"rul_{uuid.uuid4().hex[:12]}",
            )
            self._global_rules.insert(0, rule)

    def _settle_cancelled(self, pending: _Pending) -> None:
        pending.request.status = ApprovalStatus.CANCELLED
        pending.request.resolved_at = time.time()
        if not pending.future.done():
            pending.future.set_result(False)

    async def _notify(self, listener: ApprovalListener | None, request: ApprovalRequest) -> None:
        if listener is None:
            return
        try:
            result = listener(request)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.warning("Approval listener failed for %s: %s", request.id, e)


def format_approval_description(tool_name: str, args: dict[str, Any]) -> str:
    """One-line prompt shown to the user for an approval request."""
    if tool_name == "bash":
        return f"Execute command: {args.get('command')}"
    if tool_name in ("write", "edit", "read"):
        return f"{tool_name.capitalize()} file: {args.get('file_path')}"
    return f"Execute {tool_name} with arguments: {json.dumps(args, default=str)}"
