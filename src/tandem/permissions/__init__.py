"""Tandem Permissions — rule evaluation and human approval for tool calls."""

from tandem.permissions.approval import ApprovalManager, ApprovalScope, ApprovalStatus
from tandem.permissions.ruleset import (
    PermissionAction,
    PermissionCheckRequest,
    PermissionCheckResult,
    PermissionRule,
    RuleScope,
    Ruleset,
    check_permission,
    create_default_ruleset,
    match_pattern,
    merge_rulesets,
)

__all__ = [
    "ApprovalManager",
    "ApprovalScope",
    "ApprovalStatus",
    "PermissionAction",
    "PermissionCheckRequest",
    "PermissionCheckResult",
    "PermissionRule",
    "RuleScope",
    "Ruleset",
    "check_permission",
    "create_default_ruleset",
    "match_pattern",
    "merge_rulesets",
]
