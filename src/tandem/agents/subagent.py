"""
Sub-Agent Runner — runs task-tool delegations in child sessions.

Each spawn creates a child session (parent_id = caller's session, agent =
requested type) and runs one orchestrator turn in it:

  - foreground: the caller waits and gets the child's final answer
  - background: the caller gets the child session id immediately; the turn
    keeps running as an asyncio task tracked in a BackgroundTaskRegistry

The child's capability mask is the parent's minus SPAWN_SUBAGENTS, so a
sub-agent can never see the task tool and delegation stops one level down.

spawn() never raises. Every failure comes back as SpawnResult(success=False)
so the parent's tool result is always well-formed.

Usage:
    runner = SubAgentRunner(orchestrator, store, agents, providers, bus=bus)
    result = await runner.spawn(parent_id, {"description": "scan", "prompt": "..."})
    runner.cancel_background_task(result.session_id)
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from tandem.agents.orchestrator import TurnRequest
from tandem.core.capabilities import Capability, sub_agent_capabilities
from tandem.core.config import SubAgentConfig, config
from tandem.core.metrics import metrics
from tandem.providers.base import Usage
from tandem.tools.task import TaskParams, normalize_task_params

if TYPE_CHECKING:
    from tandem.agents.agent_types import AgentRegistry
    from tandem.agents.orchestrator import AgentOrchestrator
    from tandem.core.event_bus import EventBus
    from tandem.providers.registry import ProviderRegistry
    from tandem.session.models import Session
    from tandem.session.store import SessionStore
    from tandem.tools.base import ToolContext

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SpawnResult:
    success: bool
    session_id: str = ""
    response: str = ""
    error: str | None = None
    usage: Usage | None = None
    cost: float | None = None
    background: bool = False


@dataclass
class BackgroundTask:
    """A sub-agent turn running detached from its parent."""

    session_id: str
    parent_session_id: str
    agent: str
    description: str
    abort: asyncio.Event = field(default_factory=asyncio.Event)
    task: asyncio.Task | None = None
    result: SpawnResult | None = None
    started_at: float = field(default_factory=time.time)

    @property
    def done(self) -> bool:
        return self.task is not None and self.task.done()


class BackgroundTaskRegistry:
    """Running background tasks by child session id. Safe to share across threads."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._tasks: dict[str, BackgroundTask] = {}

    def add(self, task: BackgroundTask) -> None:
        with self._lock:
            self._tasks[task.session_id] = task

    def get(self, session_id: str) -> BackgroundTask | None:
        with self._lock:
            return self._tasks.get(session_id)

    def pop(self, session_id: str, expected: BackgroundTask | None = None) -> BackgroundTask | None:
        """Remove and return a task. With `expected`, only if it is still that task."""
        with self._lock:
            current = self._tasks.get(session_id)
            if current is None or (expected is not None and current is not expected):
                return None
            return self._tasks.pop(session_id)

    def ids(self) -> list[str]:
        with self._lock:
            return list(self._tasks)

    def values(self) -> list[BackgroundTask]:
        with self._lock:
            return list(self._tasks.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._tasks)

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._tasks


class SubAgentRunner:
    def __init__(
        self,
        orchestrator: AgentOrchestrator,
        store: SessionStore,
        agents: AgentRegistry,
        providers: ProviderRegistry,
        *,
        background: BackgroundTaskRegistry | None = None,
        bus: EventBus | None = None,
        settings: SubAgentConfig | None = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.store = store
        self.agents = agents
        self.providers = providers
        self.background = background if background is not None else BackgroundTaskRegistry()
        self.bus = bus
        self.settings = settings or config.subagents

    # ─── Spawning ─────────────────────────────────────────────────

    async def spawn(
        self,
        parent_session_id: str,
        params: TaskParams | dict[str, Any],
        *,
        context: ToolContext | None = None,
    ) -> SpawnResult:
        """Run a delegated task in a new child session."""
        child_id = ""
        try:
            params = normalize_task_params(params)

            if params.resume:
                existing = self.background.get(params.resume)
                if existing is not None and existing.task is not None:
                    return await self._await_background(existing)
                logger.info("Task %s is not running, starting a new one", params.resume)

            agent = self.agents.get(params.subagent_type)
            if agent is None:
                return SpawnResult(
                    success=False,
                    response=f"Unknown sub-agent type: {params.subagent_type}",
                    error=f'Agent "{params.subagent_type}" not found',
                )

            parent = await self.store.get_session(parent_session_id)
            if parent is None:
                return SpawnResult(
                    success=False, error=f'Session "{parent_session_id}" not found'
                )

            if params.run_in_background and len(self.background) >= self.settings.max_background:
                return SpawnResult(
                    success=False,
                    error=f"Too many background tasks ({self.settings.max_background} running)",
                )

            provider_id, model_id = self.select_model(params, parent)
            child = await self.store.create_session(
                agent=agent.name,
                provider_id=provider_id,
                model_id=model_id,
                parent_id=parent.id,
                title=params.description,
            )
            child_id = child.id

            parent_caps = context.capabilities if context is not None else Capability.root()
            request = TurnRequest(
                session_id=child.id,
                content=params.prompt,
                user_id=context.user_id if context is not None else "",
                provider_id=provider_id,
                model_id=model_id,
                credentials=context.credentials if context is not None else None,
                agent=agent.name,
                max_steps=min(params.max_turns or agent.max_steps, self.settings.max_turns_cap),
                on_event=context.on_event if context is not None else None,
                capabilities=sub_agent_capabilities(parent_caps),
            )
            logger.info(
                "Spawning %s sub-agent (%s, background=%s)",
                agent.name,
                params.description,
                params.run_in_background,
                extra={
                    "session_id": child.id,
                    "parent_session_id": parent.id,
                    "provider_id": provider_id,
                    "model_id": model_id,
                },
            )
            metrics.inc("subagent.spawned", labels={"agent": agent.name})

            if params.run_in_background:
                return self._start_background(request, parent.id, params.description)

            # Foreground children stop with their parent
            request.abort = context.abort if context is not None else None
            return await self._execute(request)
        except Exception as e:
            logger.error(
                "Spawn failed: %s",
                e,
                exc_info=True,
                extra={"session_id": child_id or None, "parent_session_id": parent_session_id},
            )
            return SpawnResult(success=False, session_id=child_id, error=str(e))

    def select_model(self, params: TaskParams, parent: Session) -> tuple[str, str]:
        """Explicit alias, else the parent's model, else the provider default."""
        parent_provider = parent.provider_id or config.llm.provider
        if params.model_ref is not None:
            provider_id, model_id = params.model_ref
            # Keep the parent's Anthropic flavour (API key vs OAuth)
            if parent_provider.startswith(provider_id):
                provider_id = parent_provider
            return provider_id, model_id
        if parent.model_id:
            return parent_provider, parent.model_id
        return parent_provider, self.providers.get_default_model(parent_provider) or ""

    async def _execute(self, request: TurnRequest) -> SpawnResult:
        try:
            result = await self.orchestrator.run(request)
        except Exception as e:
            logger.warning(
                "Sub-agent failed: %s", e, extra={"session_id": request.session_id}
            )
            return SpawnResult(
                success=False,
                session_id=request.session_id,
                response=f"Task failed: {e}",
                error=str(e),
            )

        if result.finish_reason == "cancelled":
            return SpawnResult(
                success=False,
                session_id=request.session_id,
                response=result.text,
                error="Task was cancelled",
                usage=result.usage,
                cost=result.cost,
            )
        return SpawnResult(
            success=True,
            session_id=request.session_id,
            response=result.text or "Task completed with no output",
            usage=result.usage,
            cost=result.cost,
        )

    # ─── Background ───────────────────────────────────────────────

    def _start_background(
        self, request: TurnRequest, parent_session_id: str, description: str
    ) -> SpawnResult:
        tracked = BackgroundTask(
            session_id=request.session_id,
            parent_session_id=parent_session_id,
            agent=request.agent or "default",
            description=description,
        )
        request.abort = tracked.abort
        self.background.add(tracked)
        tracked.task = asyncio.create_task(
            self._run_background(tracked, request), name=f"subagent:{request.session_id}"
        )
        metrics.gauge_set("subagent.background", len(self.background))
        return SpawnResult(
            success=True,
            session_id=request.session_id,
            response=f"Task started in background. Session ID: {request.session_id}",
            background=True,
        )

    async def _run_background(self, tracked: BackgroundTask, request: TurnRequest) -> SpawnResult:
        try:
            result = await self._execute(request)
        except asyncio.CancelledError:
            tracked.result = SpawnResult(
                success=False, session_id=tracked.session_id, error="Task was cancelled"
            )
            await self._publish("task.cancelled", tracked)
            raise
        finally:
            self.background.pop(tracked.session_id, expected=tracked)
            metrics.gauge_set("subagent.background", len(self.background))

        tracked.result = result
        if result.success:
            topic = "task.completed"
        elif tracked.abort.is_set():
            topic = "task.cancelled"
        else:
            topic = "task.failed"
        await self._publish(topic, tracked)
        return result

    async def _await_background(self, tracked: BackgroundTask) -> SpawnResult:
        assert tracked.task is not None
        try:
            return await asyncio.shield(tracked.task)
        except asyncio.CancelledError:
            if tracked.task.cancelled():
                return SpawnResult(
                    success=False, session_id=tracked.session_id, error="Task was cancelled"
                )
            raise

    async def _publish(self, topic: str, tracked: BackgroundTask) -> None:
        if self.bus is None:
            return
        result = tracked.result
        await self.bus.publish(
            topic,
            {
                "session_id": tracked.session_id,
                "parent_session_id": tracked.parent_session_id,
                "agent": tracked.agent,
                "description": tracked.description,
                "success": bool(result and result.success),
                "error": result.error if result else None,
                "usage": result.usage.to_dict() if result and result.usage else None,
                "duration": round(time.time() - tracked.started_at, 3),
            },
        )

    def get_background_task(self, session_id: str) -> BackgroundTask | None:
        return self.background.get(session_id)

    def cancel_background_task(self, session_id: str) -> bool:
        """
        Signal a background task to stop.

        The entry is removed right away, even though the turn only notices
        the abort at its next checkpoint.
        """
        tracked = self.background.pop(session_id)
        if tracked is None:
            return False
        tracked.abort.set()
        metrics.gauge_set("subagent.background", len(self.background))
        logger.info("Cancelled background task", extra={"session_id": session_id})
        return True

    def list_children(self, parent_session_id: str) -> list[BackgroundTask]:
        return [t for t in self.background.values() if t.parent_session_id == parent_session_id]

    def active_count(self) -> int:
        return len(self.background)

    async def cancel_all(self, timeout: float = 5.0) -> int:
        """Abort every background task and wait briefly for them to wind down."""
        tracked = [t for t in (self.background.pop(i) for i in self.background.ids()) if t]
        for t in tracked:
            t.abort.set()
        tasks = [t.task for t in tracked if t.task is not None and not t.task.done()]
        if tasks:
            _, pending = await asyncio.wait(tasks, timeout=timeout)
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.wait(pending)
        metrics.gauge_set("subagent.background", len(self.background))
        return len(tracked)
