"""
Agent Type System — named agent definitions.

Each agent type defines its behavior: system prompt, which tools it may
see, its step budget and the capabilities it is allowed to hold. This is
what gives sub-agents their shape (explore = read-only, plan = no
changes, etc.).

Usage:
    agents = AgentRegistry()
    explore = agents.require("explore")
    tools = agents.resolve_tools(explore, tool_registry, Capability.root())
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from tandem.core.capabilities import Capability
from tandem.core.errors import NotFoundError
from tandem.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)

READ_ONLY_TOOLS = ("read", "glob", "grep", "list")


@dataclass(frozen=True)
class AgentDefinition:
    """Definition of an agent type."""

    name: str
    description: str
    system_prompt: str = ""
    mode: str = "all"  # "primary", "subagent" or "all"
    allowed_tools: tuple[str, ...] | None = None  # None = every tool
    denied_tools: tuple[str, ...] = ()
    max_steps: int = 25
    temperature: float | None = None
    # Upper bound on the turn's capability mask
    capabilities: Capability = Capability.SPAWN_SUBAGENTS | Capability.EXECUTE_CODE
    hidden: bool = False


# ─── Built-in Agent Types ─────────────────────────────────────

DEFAULT_AGENT = AgentDefinition(
    name="default",
    description="General-purpose agent with full tool access",
    system_prompt=(
        "You are a capable assistant working through a task step by step. "
        "Use tools when they help and report what you did and what you found."
    ),
    max_steps=25,
)

EXPLORE_AGENT = AgentDefinition(
    name="explore",
    description="Read-only agent for exploring a codebase",
    system_prompt=(
        "You are an exploration agent. Read and search to answer the question "
        "you were given. You can only read files, list directories and search; "
        "you cannot change anything. Report your findings in detail."
    ),
    mode="subagent",
    allowed_tools=READ_ONLY_TOOLS,
    max_steps=15,
    capabilities=Capability.NONE,
)

PLAN_AGENT = AgentDefinition(
    name="plan",
    description="Planning agent that designs an implementation without making changes",
    system_prompt=(
        "You are a planning agent. Study the task and the code it touches, then "
        "write a clear step-by-step plan naming the files and changes needed. "
        "Do not make any changes yourself."
    ),
    mode="subagent",
    allowed_tools=READ_ONLY_TOOLS,
    max_steps=20,
    temperature=0.2,
    capabilities=Capability.NONE,
)

BUILTIN_AGENTS = (DEFAULT_AGENT, EXPLORE_AGENT, PLAN_AGENT)


class AgentRegistry:
    """Agent types by name. No fallback: unknown names are unknown."""

    def __init__(self, definitions: tuple[AgentDefinition, ...] = BUILTIN_AGENTS) -> None:
        self._agents: dict[str, AgentDefinition] = {}
        for definition in definitions:
            self.register(definition)

    def register(self, definition: AgentDefinition) -> None:
        """Register a custom agent type. Overwrites an existing name."""
        self._agents[definition.name] = definition
        logger.debug("Registered agent type: %s", definition.name)

    def get(self, name: str) -> AgentDefinition | None:
        return self._agents.get(name)

    def require(self, name: str) -> AgentDefinition:
        definition = self._agents.get(name)
        if definition is None:
            raise NotFoundError("agent", name)
        return definition

    def list(self, mode: str | None = None, include_hidden: bool = False) -> list[AgentDefinition]:
        """Agent types usable in `mode` ("primary" or "subagent")."""
        return [
            d
            for d in self._agents.values()
            if (include_hidden or not d.hidden)
            and (mode is None or d.mode in (mode, "all"))
        ]

    def resolve_tools(
        self,
        agent: AgentDefinition,
        registry: ToolRegistry,
        capabilities: Capability,
    ) -> ToolRegistry:
        """
        The tools a turn of `agent` may see.

        Applies the capability mask (narrowed by the agent's own bound), then
        allowed_tools (whitelist) and denied_tools (blacklist).
        """
        visible = registry.for_capabilities(capabilities & agent.capabilities)
        if agent.allowed_tools is not None:
            visible = visible.only(agent.allowed_tools)
        if agent.denied_tools:
            visible = visible.without(*agent.denied_tools)
        return visible
