"""
Capability mask passed down the agent call chain.

A turn only sees tools whose required capability is in its mask. Sub-agent
turns get their parent's mask with SPAWN_SUBAGENTS removed, which bounds
delegation to one level below any session.
"""

from __future__ import annotations

from enum import Flag, auto


class Capability(Flag):
    NONE = 0
    SPAWN_SUBAGENTS = auto()
    EXECUTE_CODE = auto()

    @classmethod
    def root(cls) -> Capability:
        """Mask for a top-level (user-driven) turn."""
        return cls.SPAWN_SUBAGENTS | cls.EXECUTE_CODE


def sub_agent_capabilities(parent: Capability) -> Capability:
    """Mask for a child session spawned from a turn holding `parent`."""
    return parent & ~Capability.SPAWN_SUBAGENTS
