"""
Tandem Agents — agent types, the turn orchestrator and sub-agent delegation.
"""

from tandem.agents.agent_types import AgentDefinition, AgentRegistry
from tandem.agents.orchestrator import AgentOrchestrator, TurnRequest, TurnResult
from tandem.agents.stream import StreamProcessor, TurnEvent
from tandem.agents.subagent import (
    BackgroundTask,
    BackgroundTaskRegistry,
    SpawnResult,
    SubAgentRunner,
)

__all__ = [
    "AgentDefinition",
    "AgentOrchestrator",
    "AgentRegistry",
    "BackgroundTask",
    "BackgroundTaskRegistry",
    "SpawnResult",
    "StreamProcessor",
    "SubAgentRunner",
    "TurnEvent",
    "TurnRequest",
    "TurnResult",
]
