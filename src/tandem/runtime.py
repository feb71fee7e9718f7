"""
Runtime — wires the orchestration core together.

Owns the stores, registries, approval manager, tool executor, orchestrator
and sub-agent runner, and registers the task tools. Anything can be passed
in pre-built (tests do this); everything else is built from config.

Usage:
    runtime = Runtime()
    await runtime.start()
    session = await runtime.store.create_session(provider_id="openai", model_id="gpt-4o")
    result = await runtime.run(TurnRequest(session_id=session.id, content="hello", user_id="u1"))
    await runtime.stop()
"""

from __future__ import annotations

import logging

from tandem.agents.agent_types import AgentRegistry
from tandem.agents.orchestrator import AgentOrchestrator, TurnRequest, TurnResult
from tandem.agents.subagent import BackgroundTaskRegistry, SubAgentRunner
from tandem.core.config import TandemConfig, config
from tandem.core.event_bus import EventBus
from tandem.credentials.crypto import SecretBox
from tandem.credentials.oauth import OAuthRefresher
from tandem.credentials.resolver import CredentialResolver
from tandem.credentials.store import CredentialStore
from tandem.permissions.approval import ApprovalManager
from tandem.permissions.ruleset import PermissionAction, Ruleset, create_default_ruleset
from tandem.providers.registry import ProviderRegistry
from tandem.session.store import SessionStore
from tandem.tools.executor import ToolExecutor
from tandem.tools.registry import ToolRegistry
from tandem.tools.task import TaskTool
from tandem.tools.task_status import TaskStatusTool

logger = logging.getLogger(__name__)


class Runtime:
    def __init__(
        self,
        settings: TandemConfig | None = None,
        *,
        store: SessionStore | None = None,
        credentials: CredentialStore | None = None,
        refresher: OAuthRefresher | None = None,
        providers: ProviderRegistry | None = None,
        agents: AgentRegistry | None = None,
        tools: ToolRegistry | None = None,
        approvals: ApprovalManager | None = None,
        ruleset: Ruleset | None = None,
        bus: EventBus | None = None,
        background: BackgroundTaskRegistry | None = None,
    ) -> None:
        self.settings = settings or config
        s = self.settings

        self.store = store or SessionStore(s.store.session_db_path)
        self.credentials = credentials or CredentialStore(
            s.store.credential_db_path, SecretBox(s.store.secret)
        )
        self.refresher = refresher or OAuthRefresher(timeout=s.oauth.timeout)
        self.providers = providers or ProviderRegistry(
            endpoints=s.endpoints, breaker_settings=s.breaker
        )
        self.agents = agents or AgentRegistry()
        self.tools = tools if tools is not None else ToolRegistry()
        self.bus = bus or EventBus()
        self.approvals = approvals or ApprovalManager(
            default_timeout=s.permissions.approval_timeout
        )

        if ruleset is None:
            default_action = PermissionAction(s.permissions.default_action)
            ruleset = (
                create_default_ruleset(default_action)
                if s.permissions.use_default_rules
                else Ruleset(default_action=default_action)
            )
        self.executor = ToolExecutor(
            self.tools, ruleset, self.approvals, s.permissions.approval_timeout
        )
        self.orchestrator = AgentOrchestrator(
            self.store,
            self.providers,
            self.executor,
            self.agents,
            resolver_factory=self.resolver,
            llm=s.llm,
            retry=s.retry,
        )
        self.runner = SubAgentRunner(
            self.orchestrator,
            self.store,
            self.agents,
            self.providers,
            background=background,
            bus=self.bus,
            settings=s.subagents,
        )

        self.tools.register(TaskTool(self.runner))
        self.tools.register(TaskStatusTool(self.runner))

    # ─── Lifecycle ────────────────────────────────────────────────

    async def start(self) -> None:
        await self.store.start()
        await self.credentials.start()
        logger.info(
            "Runtime started (%d tools, %d agent types)",
            len(self.tools),
            len(self.agents.list(include_hidden=True)),
        )

    async def stop(self) -> None:
        cancelled = await self.runner.cancel_all()
        if cancelled:
            logger.info("Cancelled %d background task(s)", cancelled)
        for request in self.approvals.list_pending():
            self.approvals.cancel(request.id)
        await self.credentials.stop()
        await self.store.stop()
        logger.info("Runtime stopped")

    # ─── Turns ────────────────────────────────────────────────────

    def resolver(
        self, user_id: str, provider_id: str, static_key: str | None = None
    ) -> CredentialResolver:
        """Credential resolver for one user and provider, backed by the credential store."""
        return CredentialResolver(
            user_id,
            provider_id,
            store=self.credentials,
            static_key=static_key,
            refresher=self.refresher,
            provider=self.providers.get_provider(provider_id),
            refresh_margin=self.settings.oauth.refresh_margin,
        )

    async def run(self, request: TurnRequest) -> TurnResult:
        return await self.orchestrator.run(request)
