"""Tests for the agent type registry and per-agent tool resolution."""

import pytest

from fakes import EchoTool

from tandem.agents.agent_types import (
    READ_ONLY_TOOLS,
    AgentDefinition,
    AgentRegistry,
)
from tandem.core.capabilities import Capability
from tandem.core.errors import NotFoundError
from tandem.tools.base import Tool, ToolResult
from tandem.tools.registry import ToolRegistry


def _named(tool_name, capability=Capability.NONE):
    class Named(Tool):
        name = tool_name
        description = tool_name
        parameters = []
        required_capability = capability

        async def execute(self, context):
            return ToolResult.success(tool_name)

    return Named()


@pytest.fixture
def tools():
    return ToolRegistry(
        [
            _named("read"),
            _named("grep"),
            _named("write"),
            _named("task", Capability.SPAWN_SUBAGENTS),
            _named("bash", Capability.EXECUTE_CODE),
        ]
    )


def test_builtins_are_registered():
    agents = AgentRegistry()

    assert {a.name for a in agents.list(include_hidden=True)} == {"default", "explore", "plan"}
    assert agents.require("explore").allowed_tools == READ_ONLY_TOOLS
    assert agents.require("plan").temperature == 0.2


def test_unknown_agent_has_no_fallback():
    agents = AgentRegistry()

    assert agents.get("reviewer") is None
    with pytest.raises(NotFoundError) as exc_info:
        agents.require("reviewer")
    assert exc_info.value.identifier == "reviewer"


def test_list_by_mode_and_visibility():
    agents = AgentRegistry()
    agents.register(AgentDefinition(name="primary-only", description="p", mode="primary"))
    agents.register(AgentDefinition(name="internal", description="i", hidden=True))

    subagents = {a.name for a in agents.list(mode="subagent")}
    primary = {a.name for a in agents.list(mode="primary")}

    assert subagents == {"default", "explore", "plan"}
    assert primary == {"default", "primary-only"}
    assert "internal" in {a.name for a in agents.list(include_hidden=True)}


def test_register_overwrites():
    agents = AgentRegistry()
    agents.register(AgentDefinition(name="explore", description="custom", max_steps=3))

    assert agents.require("explore").max_steps == 3


def test_default_agent_sees_everything_the_mask_allows(tools):
    agents = AgentRegistry()
    default = agents.require("default")

    assert agents.resolve_tools(default, tools, Capability.root()).tool_names() == [
        "read", "grep", "write", "task", "bash",
    ]
    assert agents.resolve_tools(default, tools, Capability.NONE).tool_names() == [
        "read", "grep", "write",
    ]


def test_explore_is_read_only_even_with_root_mask(tools):
    agents = AgentRegistry()

    visible = agents.resolve_tools(agents.require("explore"), tools, Capability.root())

    assert visible.tool_names() == ["read", "grep"]


def test_agent_capability_bound_narrows_the_mask(tools):
    agents = AgentRegistry()
    no_code = AgentDefinition(name="talker", description="t", capabilities=Capability.SPAWN_SUBAGENTS)

    visible = agents.resolve_tools(no_code, tools, Capability.root())

    assert "bash" not in visible
    assert "task" in visible


def test_denied_tools_are_removed(tools):
    agents = AgentRegistry()
    careful = AgentDefinition(name="careful", description="c", denied_tools=("write", "bash"))

    visible = agents.resolve_tools(careful, tools, Capability.root())

    assert visible.tool_names() == ["read", "grep", "task"]


def test_resolve_does_not_touch_the_shared_registry(tools):
    agents = AgentRegistry()
    agents.resolve_tools(agents.require("explore"), tools, Capability.NONE)

    assert len(tools) == 5
    assert "echo" not in tools
    tools.register(EchoTool())
    assert "echo" in agents.resolve_tools(agents.require("default"), tools, Capability.NONE)
