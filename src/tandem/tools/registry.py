"""
Tool Registry — register tools, look them up, export schemas.
"""

from __future__ import annotations

import logging
from typing import Iterable

from tandem.core.capabilities import Capability
from tandem.tools.base import Tool

logger = logging.getLogger(__name__)


class ToolRegistry:
    def __init__(self, tools: Iterable[Tool] = ()) -> None:
        self._tools: dict[str, Tool] = {}
        for tool in tools:
            self.register(tool)

    def register(self, tool: Tool) -> None:
        """Register a tool. Overwrites if the name already exists."""
        if not tool.name:
            raise ValueError(f"Tool must have a name: {tool}")
        self._tools[tool.name] = tool
        logger.debug("Registered tool: %s", tool.name)

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def list_tools(self) -> list[Tool]:
        return list(self._tools.values())

    def tool_names(self) -> list[str]:
        return list(self._tools.keys())

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def without(self, *names: str) -> ToolRegistry:
        """A new registry excluding the named tools."""
        return ToolRegistry(t for n, t in self._tools.items() if n not in names)

    def only(self, names: Iterable[str]) -> ToolRegistry:
        wanted = set(names)
        return ToolRegistry(t for n, t in self._tools.items() if n in wanted)

    def for_capabilities(self, capabilities: Capability) -> ToolRegistry:
        """Tools whose required capability is held by `capabilities`."""
        return ToolRegistry(
            t
            for t in self._tools.values()
            if (t.required_capability & capabilities) == t.required_capability
        )

    def to_openai_tools(self) -> list[dict]:
        return [tool.to_openai_schema() for tool in self._tools.values()]
