"""
Agent Orchestrator — the per-turn control loop.

One turn:
1. Append the user message (and its text part) to the session
2. Call the model with the full transcript and the visible tool schemas
3. Relay text deltas and tool calls to the observer while persisting them
4. Run the tool calls one at a time, in the order the model emitted them
5. Loop back to 2 while the model keeps calling tools and steps remain
6. Finish with the model's finish reason, "max_steps" or "cancelled"

Model calls are wrapped by the error classifier: retryable failures are
retried with backoff, breaker-worthy failures are reported to the provider
registry, everything else ends the turn. A 401 gets exactly one forced
credential refresh before it is surfaced.

Cancellation is cooperative. The abort event is checked between steps and
between tool calls; an in-flight model call is raced against it and the
losing call is cancelled at the transport.

Usage:
    orchestrator = AgentOrchestrator(store, providers, executor, agents)
    result = await orchestrator.run(TurnRequest(session_id=sid, content="hi"))
    result.finish_reason  # "stop", "max_steps", "cancelled", ...
"""

from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable

from tandem.agents.stream import EventCallback, StreamProcessor
from tandem.core.capabilities import Capability, sub_agent_capabilities
from tandem.core.classifier import classify_error, get_status_code
from tandem.core.config import LLMConfig, RetryConfig, config
from tandem.core.errors import AuthenticationError, NotFoundError, ProviderError, TandemError
from tandem.core.metrics import metrics
from tandem.providers.base import ModelClient, ToolCall, Usage
from tandem.session.models import MessagePart, MessageRole, PartType, SessionStatus
from tandem.tools.base import ToolContext, ToolResult

if TYPE_CHECKING:
    from tandem.agents.agent_types import AgentDefinition, AgentRegistry
    from tandem.credentials.resolver import CredentialResolver
    from tandem.providers.registry import ProviderRegistry
    from tandem.session.store import SessionStore
    from tandem.tools.executor import ToolExecutor
    from tandem.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)

ResolverFactory = Callable[[str, str], "CredentialResolver"]


@dataclass
class TurnRequest:
    """Everything one turn needs. Only session_id and content are required."""

    session_id: str
    content: str
    user_id: str = ""
    provider_id: str | None = None  # None → session's, then configured default
    model_id: str | None = None
    client: ModelClient | None = None  # pre-built client; skips credential lookup
    credentials: CredentialResolver | None = None
    agent: str | None = None  # None → the session's agent
    max_steps: int | None = None  # None → the agent's budget
    abort: asyncio.Event | None = None
    on_event: EventCallback | None = None
    capabilities: Capability = field(default_factory=Capability.root)
    system: str | None = None  # overrides the agent's system prompt


@dataclass(frozen=True)
class TurnResult:
    session_id: str
    message_id: str
    usage: Usage
    cost: float
    finish_reason: str
    text: str = ""


@dataclass
class _StepOutput:
    text: str
    tool_calls: list[ToolCall]
    finish_reason: str
    usage: Usage


class AgentOrchestrator:
    def __init__(
        self,
        store: SessionStore,
        providers: ProviderRegistry,
        executor: ToolExecutor,
        agents: AgentRegistry,
        *,
        resolver_factory: ResolverFactory | None = None,
        llm: LLMConfig | None = None,
        retry: RetryConfig | None = None,
    ) -> None:
        self.store = store
        self.providers = providers
        self.executor = executor
        self.agents = agents
        self.resolver_factory = resolver_factory
        self.llm = llm or config.llm
        self.retry = retry or config.retry

    async def run(self, request: TurnRequest) -> TurnResult:
        """Run one turn to a terminal finish reason."""
        session = await self.store.get_session(request.session_id)
        if session is None:
            raise NotFoundError("session", request.session_id)

        agent = self.agents.require(request.agent or session.agent)
        provider_id = request.provider_id or session.provider_id or self.llm.provider
        model_id = (
            request.model_id
            or session.model_id
            or self.llm.model
            or self.providers.get_default_model(provider_id)
            or ""
        )
        if (provider_id, model_id) != (session.provider_id, session.model_id):
            await self.store.update_session_model(session.id, provider_id, model_id)

        credentials = request.credentials
        if credentials is not None:
            credentials = credentials.for_provider(provider_id)
        elif request.client is None and self.resolver_factory is not None:
            credentials = self.resolver_factory(request.user_id, provider_id)

        capabilities = request.capabilities
        if session.parent_id is not None:
            # A child session stays a child on every later turn
            capabilities = sub_agent_capabilities(capabilities)

        turn = _Turn(
            self,
            request,
            agent=agent,
            provider_id=provider_id,
            model_id=model_id,
            credentials=credentials,
            capabilities=capabilities,
        )
        return await turn.run()


class _Turn:
    """State of one running turn."""

    def __init__(
        self,
        owner: AgentOrchestrator,
        request: TurnRequest,
        *,
        agent: AgentDefinition,
        provider_id: str,
        model_id: str,
        credentials: CredentialResolver | None,
        capabilities: Capability,
    ) -> None:
        self.owner = owner
        self.store = owner.store
        self.providers = owner.providers
        self.request = request
        self.session_id = request.session_id
        self.agent = agent
        self.provider_id = provider_id
        self.model_id = model_id
        self.credentials = credentials
        self.capabilities = capabilities
        self.abort = request.abort or asyncio.Event()
        self.max_steps = request.max_steps or agent.max_steps or owner.llm.max_steps
        self.tools: ToolRegistry = owner.agents.resolve_tools(
            agent, owner.executor.registry, capabilities
        )
        self.client: ModelClient | None = request.client
        self.usage = Usage()
        self.cost = 0.0

    async def run(self) -> TurnResult:
        started = time.monotonic()
        log_extra = {
            "session_id": self.session_id,
            "provider_id": self.provider_id,
            "model_id": self.model_id,
        }

        user_message = await self.store.append_message(
            self.session_id, MessageRole.USER, agent=self.agent.name
        )
        await self.store.append_message_part(
            user_message.id, self.session_id, PartType.TEXT, {"text": self.request.content}
        )
        assistant = await self.store.append_message(
            self.session_id,
            MessageRole.ASSISTANT,
            parent_id=user_message.id,
            agent=self.agent.name,
            provider_id=self.provider_id,
            model_id=self.model_id,
        )
        await self.store.update_session_counters(self.session_id, messages=2)
        await self.store.set_status(self.session_id, SessionStatus.ACTIVE)

        processor = StreamProcessor(
            self.store, self.session_id, assistant.id, self.request.on_event
        )
        context = ToolContext(
            session_id=self.session_id,
            message_id=assistant.id,
            user_id=self.request.user_id,
            agent=self.agent.name,
            provider_id=self.provider_id,
            model_id=self.model_id,
            capabilities=self.capabilities,
            abort=self.abort,
            credentials=self.credentials,
            on_event=self.request.on_event,
        )

        logger.info(
            "Turn started (agent=%s, tools=%d, max_steps=%d)",
            self.agent.name,
            len(self.tools),
            self.max_steps,
            extra=log_extra,
        )

        finish_reason = "stop"
        step = 0
        try:
            while True:
                if self.abort.is_set():
                    finish_reason = "cancelled"
                    break
                if step >= self.max_steps:
                    finish_reason = "max_steps"
                    break
                step += 1
                await processor.step_start(step)

                output = await self._call_model(processor, step)
                if output is None:
                    finish_reason = "cancelled"
                    break
                await self._account(output.usage)
                await processor.commit_text(output.text)

                if not output.tool_calls:
                    finish_reason = output.finish_reason
                    await processor.step_finish(step, finish_reason, output.usage)
                    break

                await self._run_tools(output.tool_calls, processor, context)
                await processor.step_finish(step, "tool-calls", output.usage)
        except Exception as e:
            logger.error("Turn failed: %s", e, extra={**log_extra, "step": step})
            metrics.inc("turn.failed", labels={"provider": self.provider_id})
            await self.store.set_message_error(assistant.id, str(e))
            await self.store.set_status(self.session_id, SessionStatus.ERROR)
            await processor.error(str(e))
            raise
        finally:
            if self.request.client is None and self.client is not None:
                await self.client.close()

        await self.store.complete_message(
            assistant.id,
            finish_reason=finish_reason,
            input_tokens=self.usage.input_tokens,
            output_tokens=self.usage.output_tokens,
            cost=self.cost,
        )
        if finish_reason != "cancelled":
            await self.store.set_status(self.session_id, SessionStatus.COMPLETED)
        await processor.finish(finish_reason, self.usage, self.cost)

        duration_ms = (time.monotonic() - started) * 1000
        metrics.inc("turn.finished", labels={"reason": finish_reason})
        metrics.observe("turn.duration_ms", duration_ms)
        logger.info(
            "Turn finished: %s after %d step(s)",
            finish_reason,
            step,
            extra={**log_extra, "step": step, "duration_ms": round(duration_ms), "status": finish_reason},
        )
        return TurnResult(
            session_id=self.session_id,
            message_id=assistant.id,
            usage=self.usage,
            cost=self.cost,
            finish_reason=finish_reason,
            text=await self.store.get_message_text(assistant.id),
        )

    # ─── Model Calls ──────────────────────────────────────────────

    async def _call_model(self, processor: StreamProcessor, step: int) -> _StepOutput | None:
        """One model call with retries. None when the turn was cancelled."""
        messages = await build_transcript(self.store, self.session_id)
        schemas = self.tools.to_openai_tools() if len(self.tools) else None
        if schemas and not self.providers.supports_tools(self.provider_id, self.model_id):
            schemas = None

        attempt = 0
        refreshed = False
        recheck = True
        while True:
            attempt += 1
            # The call right after a forced refresh is still the same breaker trial
            if recheck:
                self.providers.ensure_available(self.provider_id)
            recheck = True
            if self.client is None:
                self.client = await self._open_client()

            started = time.monotonic()
            try:
                output = await self._race(self._consume(self.client, messages, schemas, processor))
            except Exception as e:
                status = get_status_code(e)
                if status == 401:
                    if refreshed or self.credentials is None or not self.credentials.is_oauth:
                        self.providers.record_failure(self.provider_id, counts=False)
                        raise AuthenticationError(
                            f"{self.provider_id} rejected the credential: {e}",
                            provider_id=self.provider_id,
                        ) from e
                    refreshed = True
                    attempt -= 1
                    logger.warning(
                        "401 from %s, forcing a credential refresh",
                        self.provider_id,
                        extra={"session_id": self.session_id, "provider_id": self.provider_id},
                    )
                    secret = await self.credentials.force_refresh()
                    await self._replace_client(secret)
                    recheck = False
                    continue

                if isinstance(e, TandemError) and not isinstance(e, ProviderError):
                    raise

                classification = classify_error(e)
                self.providers.record_failure(
                    self.provider_id, counts=classification.should_trigger_circuit_breaker
                )
                metrics.inc(
                    "model.call_failed",
                    labels={"provider": self.provider_id, "category": classification.category.value},
                )

                if not classification.should_retry or attempt >= self.owner.retry.max_attempts:
                    raise

                delay = min(
                    classification.retry_delay
                    or self.owner.retry.base_delay * (2 ** (attempt - 1)),
                    self.owner.retry.max_delay,
                )
                logger.warning(
                    "Model call failed (%s), retrying in %.1fs",
                    classification.reason,
                    delay,
                    extra={
                        "session_id": self.session_id,
                        "provider_id": self.provider_id,
                        "step": step,
                        "attempt": attempt,
                    },
                )
                if await self._sleep(delay):
                    return None
                continue

            if output is None:
                return None
            self.providers.record_success(self.provider_id)
            metrics.observe(
                "model.call_ms",
                (time.monotonic() - started) * 1000,
                labels={"provider": self.provider_id},
            )
            return output

    async def _consume(
        self,
        client: ModelClient,
        messages: list[dict[str, Any]],
        schemas: list[dict] | None,
        processor: StreamProcessor,
    ) -> _StepOutput:
        chunks: list[str] = []
        calls: list[ToolCall] = []
        finish_reason = "stop"
        usage = Usage()

        async for event in client.stream(
            messages,
            tools=schemas,
            system=self.request.system or self.agent.system_prompt or None,
            temperature=self._temperature(),
            max_tokens=self.owner.llm.max_tokens,
        ):
            if event.type == "text-delta":
                chunks.append(event.text)
                await processor.text_delta(event.text)
            elif event.type == "tool-call" and event.tool_call is not None:
                calls.append(event.tool_call)
            elif event.type == "finish":
                finish_reason = event.finish_reason or "stop"
                usage = event.usage or Usage()

        return _StepOutput(text="".join(chunks), tool_calls=calls, finish_reason=finish_reason, usage=usage)

    async def _race(self, coro) -> Any | None:
        """Run `coro` unless the abort event fires first. None when aborted."""
        call = asyncio.ensure_future(coro)
        aborted = asyncio.ensure_future(self.abort.wait())
        try:
            done, _ = await asyncio.wait({call, aborted}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            aborted.cancel()
            if not call.done():
                call.cancel()
        if call in done:
            return call.result()
        await asyncio.wait({call})
        return None

    async def _sleep(self, delay: float) -> bool:
        """Back off for `delay` seconds. True if aborted meanwhile."""
        try:
            await asyncio.wait_for(self.abort.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return False
        return True

    def _temperature(self) -> float | None:
        if self.agent.temperature is not None:
            return self.agent.temperature
        return self.owner.llm.temperature

    async def _open_client(self) -> ModelClient:
        secret = await self.credentials.resolve() if self.credentials is not None else ""
        return self.providers.create_client(self.provider_id, self.model_id, secret)

    async def _replace_client(self, secret: str) -> None:
        if self.client is not None and self.request.client is None:
            await self.client.close()
        self.client = self.providers.create_client(self.provider_id, self.model_id, secret)

    async def _account(self, usage: Usage) -> None:
        step_cost = self.providers.calculate_cost(self.provider_id, self.model_id, usage)
        self.usage = self.usage + usage
        self.cost += step_cost
        await self.store.update_session_counters(
            self.session_id,
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
            cost=step_cost,
        )

    # ─── Tools ────────────────────────────────────────────────────

    async def _run_tools(
        self,
        calls: list[ToolCall],
        processor: StreamProcessor,
        context: ToolContext,
    ) -> None:
        """Run the step's tool calls strictly in emission order."""
        part_ids = [await processor.tool_call(call) for call in calls]

        for index, (call, part_id) in enumerate(zip(calls, part_ids)):
            if self.abort.is_set():
                for skipped, skipped_part in zip(calls[index:], part_ids[index:]):
                    result = ToolResult.fail("Cancelled before execution")
                    result.tool_name, result.call_id = skipped.name, skipped.id
                    await processor.tool_result(skipped_part, result)
                return

            await processor.tool_running(part_id)
            if call.name not in self.tools:
                result = ToolResult.fail(f"Unknown tool: {call.name}")
                result.tool_name, result.call_id = call.name, call.id
            else:
                try:
                    result = await self.owner.executor.execute(
                        call.name,
                        call.arguments,
                        call.id,
                        dataclasses.replace(context, call_id=call.id),
                    )
                except BaseException:
                    await processor.tool_failed(part_id)
                    raise
            await processor.tool_result(part_id, result)


# ─── Transcript ───────────────────────────────────────────────


async def build_transcript(store: SessionStore, session_id: str) -> list[dict[str, Any]]:
    """
    The session as an OpenAI-style message list.

    An assistant message with several steps becomes alternating assistant
    and tool messages. Tool calls that never got a result (a turn that
    failed mid-call) are left out so the transcript stays well-formed.
    """
    transcript: list[dict[str, Any]] = []
    for message in await store.get_messages(session_id):
        parts = await store.get_parts(message.id)
        if message.role == MessageRole.USER.value:
            text = "".join(p.text for p in parts if p.type == PartType.TEXT.value)
            transcript.append({"role": "user", "content": text})
        else:
            transcript.extend(_assistant_messages(parts))
    return transcript


def _assistant_messages(parts: list[MessagePart]) -> list[dict[str, Any]]:
    answered = {p.tool_call_id for p in parts if p.type == PartType.TOOL_RESULT.value}
    out: list[dict[str, Any]] = []
    text: list[str] = []
    calls: list[dict[str, Any]] = []
    results: list[dict[str, Any]] = []

    def flush() -> None:
        if text or calls:
            entry: dict[str, Any] = {"role": "assistant", "content": "".join(text) or None}
            if calls:
                entry["tool_calls"] = list(calls)
            out.append(entry)
        out.extend(results)
        text.clear()
        calls.clear()
        results.clear()

    for part in parts:
        if part.type == PartType.TOOL_RESULT.value:
            results.append(
                {
                    "role": "tool",
                    "tool_call_id": part.tool_call_id,
                    "content": part.content.get("output", ""),
                }
            )
            continue
        if results:
            flush()
        if part.type == PartType.TEXT.value:
            text.append(part.text)
        elif part.type == PartType.TOOL_CALL.value and part.tool_call_id in answered:
            calls.append(
                {
                    "id": part.tool_call_id,
                    "type": "function",
                    "function": {
                        "name": part.content.get("tool_name", ""),
                        "arguments": json.dumps(part.content.get("arguments", {})),
                    },
                }
            )
    flush()
    return out
