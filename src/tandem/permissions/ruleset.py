"""
Permission Ruleset — glob rules deciding allow / deny / ask for an action.

A request names a permission key ("tool:bash", "path:write") and a value
(serialized arguments, a path). Rules are checked in order; the first one
whose permission pattern, value pattern, scope and expiry all match wins.
Otherwise the ruleset's default action applies.

Glob syntax:
    *    any run of characters except "/"
    **   any run of characters including "/"
    ?    exactly one character

Usage:
    ruleset = Ruleset(
        rules=[PermissionRule("path:write", "/etc/**", PermissionAction.DENY)],
        default_action=PermissionAction.ALLOW,
    )
    check_permission(ruleset, build_path_permission_request("write", "/etc/passwd"))
"""

from __future__ import annotations

import json
import re
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from functools import lru_cache
from typing import Any


class PermissionAction(str, Enum):
    ALLOW = "allow"
    DENY = "deny"
    ASK = "ask"


class RuleScope(str, Enum):
    GLOBAL = "global"  # every session
    SESSION = "session"  # one session, by id
    REQUEST = "request"  # one-shot, consumed by the approval manager


@dataclass(frozen=True)
class PermissionRule:
    permission: str
    pattern: str
    action: PermissionAction
    scope: RuleScope = RuleScope.GLOBAL
    session_id: str | None = None
    expires_at: float | None = None  # epoch seconds
    id: str | None = None
    created_at: float = field(default_factory=time.time)

    def is_expired(self, now: float | None = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at < (time.time() if now is None else now)

    def applies_to_session(self, session_id: str | None) -> bool:
        if self.scope is RuleScope.GLOBAL:
            return True
        if self.scope is RuleScope.SESSION:
            return self.session_id is not None and self.session_id == session_id
        # Request-scope approvals may be pinned to the session that asked
        return self.session_id is None or self.session_id == session_id


@dataclass(frozen=True)
class Ruleset:
    """Ordered rules (first match wins) plus the fallback action."""

    rules: tuple[PermissionRule, ...] = ()
    default_action: PermissionAction = PermissionAction.ASK

    def __post_init__(self) -> None:
        # Accept any iterable of rules
        object.__setattr__(self, "rules", tuple(self.rules))

    def with_rule(self, rule: PermissionRule, first: bool = True) -> Ruleset:
        rules = (rule, *self.rules) if first else (*self.rules, rule)
        return replace(self, rules=rules)

    def without_expired(self, now: float | None = None) -> Ruleset:
        return replace(self, rules=tuple(r for r in self.rules if not r.is_expired(now)))


@dataclass(frozen=True)
class PermissionCheckRequest:
    permission: str
    value: str
    session_id: str | None = None


@dataclass(frozen=True)
class PermissionCheckResult:
    action: PermissionAction
    matched_rule: PermissionRule | None = None
    is_default: bool = False


# ─── Pattern Matching ─────────────────────────────────────────


@dataclass(frozen=True)
class CompiledPattern:
    """A glob compiled once. Holds a regex, or the literal when compiling failed."""

    source: str
    regex: re.Pattern[str] | None

    def matches(self, value: str) -> bool:
        if self.regex is None:
            return value == self.source
        return self.regex.fullmatch(value) is not None


def glob_to_regex(pattern: str) -> str:
    out: list[str] = []
    i = 0
    while i < len(pattern):
        ch = pattern[i]
        if ch == "*":
            if pattern.startswith("**", i):
                out.append(".*")
                i += 2
                continue
            out.append("[^/]*")
        elif ch == "?":
            out.append(".")
        else:
            out.append(re.escape(ch))
        i += 1
    return "".join(out)


@lru_cache(maxsize=1024)
def compile_pattern(pattern: str) -> CompiledPattern:
    try:
        regex = re.compile(glob_to_regex(pattern), re.DOTALL)
    except re.error:
        return CompiledPattern(source=pattern, regex=None)
    return CompiledPattern(source=pattern, regex=regex)


def match_pattern(pattern: str, value: str) -> bool:
    return compile_pattern(pattern).matches(value)


# ─── Evaluation ───────────────────────────────────────────────


def check_permission(
    ruleset: Ruleset,
    request: PermissionCheckRequest,
    now: float | None = None,
) -> PermissionCheckResult:
    now = time.time() if now is None else now

    for rule in ruleset.rules:
        if not match_pattern(rule.permission, request.permission):
            continue
        if not match_pattern(rule.pattern, request.value):
            continue
        if not rule.applies_to_session(request.session_id):
            continue
        if rule.is_expired(now):
            continue
        return PermissionCheckResult(action=rule.action, matched_rule=rule)

    return PermissionCheckResult(action=ruleset.default_action, is_default=True)


def merge_rulesets(base: Ruleset, *overrides: Ruleset) -> Ruleset:
    """Combine rulesets. Later overrides are checked first and their default wins."""
    rules: list[PermissionRule] = []
    for ruleset in reversed(overrides):
        rules.extend(ruleset.rules)
    rules.extend(base.rules)
    default = overrides[-1].default_action if overrides else base.default_action
    return Ruleset(rules=tuple(rules), default_action=default)


def create_default_ruleset(
    default_action: PermissionAction = PermissionAction.ASK,
) -> Ruleset:
    """Sensible global rules: guard system paths and destructive shell commands."""
    return Ruleset(
        rules=(
            PermissionRule("path:*", "/etc/**", PermissionAction.ASK),
            PermissionRule("path:*", "/root/**", PermissionAction.DENY),
            PermissionRule("path:*", "/var/log/**", PermissionAction.ASK),
            PermissionRule("tool:bash", "**rm -rf **", PermissionAction.DENY),
            PermissionRule("tool:bash", "**sudo**", PermissionAction.ASK),
            PermissionRule("tool:read", "**", PermissionAction.ALLOW),
            PermissionRule("tool:glob", "**", PermissionAction.ALLOW),
            PermissionRule("tool:grep", "**", PermissionAction.ALLOW),
        ),
        default_action=default_action,
    )


# ─── Request Builders ─────────────────────────────────────────


class PermissionTypes:
    """Permission key builders."""

    COMMAND = "command:bash"

    @staticmethod
    def tool(tool_name: str) -> str:
        return f"tool:{tool_name}"

    @staticmethod
    def path(operation: str) -> str:
        return f"path:{operation}"

    @staticmethod
    def network(operation: str) -> str:
        return f"network:{operation}"


def build_tool_permission_request(
    tool_name: str,
    args: dict[str, Any],
    session_id: str | None = None,
) -> PermissionCheckRequest:
    return PermissionCheckRequest(
        permission=PermissionTypes.tool(tool_name),
        value=json.dumps(args, default=str, ensure_ascii=False),
        session_id=session_id,
    )


def build_path_permission_request(
    operation: str,
    path: str,
    session_id: str | None = None,
) -> PermissionCheckRequest:
    return PermissionCheckRequest(
        permission=PermissionTypes.path(operation),
        value=path,
        session_id=session_id,
    )
