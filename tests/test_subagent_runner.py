"""Tests for SubAgentRunner — child sessions, model selection and background tasks."""

import asyncio

import pytest

from fakes import Hang, StatusError, call_tools, reply

from tandem.agents.orchestrator import TurnRequest
from tandem.core.capabilities import Capability
from tandem.permissions.ruleset import PermissionAction, PermissionRule, Ruleset
from tandem.session.models import PartType, Session, SessionStatus
from tandem.tools.base import ToolContext
from tandem.tools.task import TaskParams


def _context(runtime, session, provider_id="openai", **kwargs) -> ToolContext:
    return ToolContext(
        session_id=session.id,
        user_id="u1",
        provider_id=provider_id,
        capabilities=kwargs.pop("capabilities", Capability.root()),
        credentials=runtime.resolver("u1", provider_id),
        **kwargs,
    )


def _task(**overrides) -> dict:
    return {"description": "scan repo", "prompt": "List the modules", **overrides}


# ─── Through the Task Tool ────────────────────────────────────


@pytest.mark.asyncio
async def test_task_tool_runs_child_and_returns_its_answer(runtime, model, session):
    model.script = [
        call_tools(("task", _task())),
        reply("three modules"),
        reply("the child says three"),
    ]

    result = await runtime.run(TurnRequest(session_id=session.id, content="go", user_id="u1"))

    assert result.finish_reason == "stop"
    parts = await runtime.store.get_parts(result.message_id)
    task_result = next(p for p in parts if p.type == PartType.TOOL_RESULT.value)
    assert task_result.content["output"] == "three modules"
    assert task_result.content["is_error"] is False

    children = await runtime.store.get_child_sessions(session.id)
    assert len(children) == 1
    child = children[0]
    assert child.parent_id == session.id
    assert child.agent == "default"
    assert child.title == "scan repo"
    assert child.status == SessionStatus.COMPLETED.value


@pytest.mark.asyncio
async def test_child_never_sees_the_task_tool(runtime, model, session):
    model.script = [call_tools(("task", _task())), reply("child"), reply("parent")]

    await runtime.run(TurnRequest(session_id=session.id, content="go", user_id="u1"))

    assert "task" in model.tool_names(0)
    assert "task" not in model.tool_names(1)
    assert "echo" in model.tool_names(1)


@pytest.mark.asyncio
async def test_task_with_unknown_agent_fails_the_parent_turn(runtime, model, session):
    model.script = [call_tools(("task", _task(subagent_type="nonexistent-agent")))]

    with pytest.raises(Exception, match='Agent "nonexistent-agent" not found'):
        await runtime.run(TurnRequest(session_id=session.id, content="go", user_id="u1"))

    stored = await runtime.store.get_session(session.id)
    assert stored.status == SessionStatus.ERROR.value
    assert await runtime.store.get_child_sessions(session.id) == []


@pytest.mark.asyncio
async def test_invalid_task_arguments_become_error_result(runtime, model, session):
    model.script = [call_tools(("task", {"description": "x" * 101, "prompt": "p"})), reply("ok")]

    result = await runtime.run(TurnRequest(session_id=session.id, content="go", user_id="u1"))

    parts = await runtime.store.get_parts(result.message_id)
    task_result = next(p for p in parts if p.type == PartType.TOOL_RESULT.value)
    assert task_result.content["is_error"] is True
    assert "description must be at most 100 characters" in task_result.content["output"]


# ─── Foreground ───────────────────────────────────────────────


@pytest.mark.asyncio
async def test_spawn_returns_child_answer(runtime, model, session):
    model.script = [reply("found it")]

    result = await runtime.runner.spawn(session.id, _task(), context=_context(runtime, session))

    assert result.success is True
    assert result.response == "found it"
    assert result.background is False
    assert result.usage is not None
    child = await runtime.store.get_session(result.session_id)
    assert child.parent_id == session.id
    assert child.is_sub_agent


@pytest.mark.asyncio
async def test_spawn_accepts_task_params(runtime, model, session):
    model.script = [reply("ok")]

    result = await runtime.runner.spawn(
        session.id, TaskParams(description="d", prompt="p"), context=_context(runtime, session)
    )

    assert result.success is True


@pytest.mark.asyncio
async def test_unknown_agent_creates_no_session(runtime, model, session):
    result = await runtime.runner.spawn(
        session.id, _task(subagent_type="nope"), context=_context(runtime, session)
    )

    assert result.success is False
    assert result.error == 'Agent "nope" not found'
    assert result.response == "Unknown sub-agent type: nope"
    assert result.session_id == ""
    assert await runtime.store.get_child_sessions(session.id) == []
    assert model.calls == []


@pytest.mark.asyncio
async def test_missing_parent_is_reported(runtime, model):
    result = await runtime.runner.spawn("ses_missing", _task())

    assert result.success is False
    assert result.error == 'Session "ses_missing" not found'


@pytest.mark.asyncio
async def test_invalid_params_do_not_raise(runtime, session):
    result = await runtime.runner.spawn(session.id, {"description": "", "prompt": ""})

    assert result.success is False
    assert "description is required" in result.error
    assert "prompt is required" in result.error


@pytest.mark.asyncio
async def test_child_failure_becomes_unsuccessful_result(runtime, model, session):
    model.script = [StatusError("bad request", 400)]

    result = await runtime.runner.spawn(session.id, _task(), context=_context(runtime, session))

    assert result.success is False
    assert result.error == "bad request"
    assert result.response == "Task failed: bad request"
    child = await runtime.store.get_session(result.session_id)
    assert child.status == SessionStatus.ERROR.value


@pytest.mark.asyncio
async def test_foreground_child_stops_with_parent(runtime, model, session):
    context = _context(runtime, session)
    context.abort.set()

    result = await runtime.runner.spawn(session.id, _task(), context=context)

    assert result.success is False
    assert result.error == "Task was cancelled"
    assert model.calls == []


@pytest.mark.asyncio
async def test_max_turns_bounds_the_child(runtime, model, session):
    model.script = [call_tools(("echo", {"text": "a"}))] * 3

    result = await runtime.runner.spawn(
        session.id, _task(max_turns=1), context=_context(runtime, session)
    )

    assert result.success is True
    assert result.response == "Task completed with no output"
    assert len(model.calls) == 1


@pytest.mark.asyncio
async def test_explore_agent_gets_read_only_tools(runtime, model, session):
    model.script = [reply("looked")]

    result = await runtime.runner.spawn(
        session.id, _task(subagent_type="explore"), context=_context(runtime, session)
    )

    assert result.success is True
    assert "echo" not in model.tool_names(0)
    assert "task" not in model.tool_names(0)
    child = await runtime.store.get_session(result.session_id)
    assert child.agent == "explore"


# ─── Model Selection ──────────────────────────────────────────


@pytest.mark.asyncio
async def test_child_inherits_parent_model(runtime, model, session, factory):
    model.script = [reply("ok")]

    result = await runtime.runner.spawn(session.id, _task(), context=_context(runtime, session))

    child = await runtime.store.get_session(result.session_id)
    assert (child.provider_id, child.model_id) == ("openai", "gpt-4o")
    assert factory.created[-1] == ("openai", "gpt-4o", "sk-openai")


@pytest.mark.asyncio
async def test_model_alias_overrides_parent(runtime, model, factory):
    parent = await runtime.store.create_session(
        provider_id="anthropic", model_id="claude-sonnet-4-20250514"
    )
    model.script = [reply("quick")]

    result = await runtime.runner.spawn(
        parent.id, _task(model="haiku"), context=_context(runtime, parent, "anthropic")
    )

    assert result.success is True
    child = await runtime.store.get_session(result.session_id)
    assert (child.provider_id, child.model_id) == ("anthropic", "claude-3-5-haiku-20241022")
    assert factory.created[-1] == ("anthropic", "claude-3-5-haiku-20241022", "sk-ant")


@pytest.mark.asyncio
async def test_alias_keeps_oauth_flavour(runtime):
    parent = Session(id="ses_p", provider_id="anthropic-oauth", model_id="claude-opus-4-20250514")
    params = TaskParams(description="d", prompt="p", model="sonnet")

    assert runtime.runner.select_model(params, parent) == (
        "anthropic-oauth",
        "claude-sonnet-4-20250514",
    )


@pytest.mark.asyncio
async def test_parent_without_model_gets_provider_default(runtime):
    parent = Session(id="ses_p", provider_id="openai", model_id="")
    params = TaskParams(description="d", prompt="p")

    assert runtime.runner.select_model(params, parent) == ("openai", "gpt-4o")


# ─── Background ───────────────────────────────────────────────


@pytest.mark.asyncio
async def test_background_returns_before_child_finishes(runtime, model, session):
    model.script = [[Hang()]]

    result = await runtime.runner.spawn(
        session.id, _task(run_in_background=True), context=_context(runtime, session)
    )

    assert result.success is True
    assert result.background is True
    assert result.response == f"Task started in background. Session ID: {result.session_id}"
    assert result.session_id in runtime.runner.background
    assert runtime.runner.active_count() == 1

    tracked = runtime.runner.get_background_task(result.session_id)
    assert tracked.parent_session_id == session.id
    assert [t.session_id for t in runtime.runner.list_children(session.id)] == [result.session_id]


@pytest.mark.asyncio
async def test_completed_background_task_is_published(runtime, model, session):
    completed = runtime.bus.subscribe("task.completed")
    model.script = [reply("background answer")]

    result = await runtime.runner.spawn(
        session.id, _task(run_in_background=True), context=_context(runtime, session)
    )
    event = await asyncio.wait_for(completed.get(), timeout=1.0)

    assert event["session_id"] == result.session_id
    assert event["parent_session_id"] == session.id
    assert event["success"] is True
    assert event["agent"] == "default"
    assert event["description"] == "scan repo"
    assert result.session_id not in runtime.runner.background
    child = await runtime.store.get_session(result.session_id)
    assert child.status == SessionStatus.COMPLETED.value


@pytest.mark.asyncio
async def test_failed_background_task_is_published(runtime, model, session):
    failed = runtime.bus.subscribe("task.failed")
    model.script = [StatusError("bad request", 400)]

    result = await runtime.runner.spawn(
        session.id, _task(run_in_background=True), context=_context(runtime, session)
    )
    event = await asyncio.wait_for(failed.get(), timeout=1.0)

    assert event["session_id"] == result.session_id
    assert event["success"] is False
    assert event["error"] == "bad request"


@pytest.mark.asyncio
async def test_cancel_removes_tracking_immediately(runtime, model, session):
    cancelled = runtime.bus.subscribe("task.cancelled")
    model.script = [[Hang()]]

    result = await runtime.runner.spawn(
        session.id, _task(run_in_background=True), context=_context(runtime, session)
    )
    tracked = runtime.runner.get_background_task(result.session_id)
    await asyncio.wait_for(model.started.wait(), timeout=1.0)

    assert runtime.runner.cancel_background_task(result.session_id) is True
    assert result.session_id not in runtime.runner.background
    assert runtime.runner.cancel_background_task(result.session_id) is False

    outcome = await asyncio.wait_for(tracked.task, timeout=1.0)
    assert outcome.success is False
    assert outcome.error == "Task was cancelled"
    event = await asyncio.wait_for(cancelled.get(), timeout=1.0)
    assert event["session_id"] == result.session_id


@pytest.mark.asyncio
async def test_cancel_while_child_waits_for_approval(runtime, model, session):
    runtime.executor.ruleset = Ruleset(
        rules=[PermissionRule("tool:echo", "**", PermissionAction.ASK)],
        default_action=PermissionAction.ALLOW,
    )
    model.script = [call_tools(("echo", {"text": "x"})), reply("never")]

    result = await runtime.runner.spawn(
        session.id, _task(run_in_background=True), context=_context(runtime, session)
    )
    tracked = runtime.runner.get_background_task(result.session_id)
    while not runtime.approvals.list_pending():
        await asyncio.sleep(0.001)

    assert runtime.runner.cancel_background_task(result.session_id) is True

    outcome = await asyncio.wait_for(tracked.task, timeout=1.0)
    assert tracked.task.done()
    assert outcome.success is False
    assert outcome.error == "Task was cancelled"
    assert runtime.approvals.list_pending() == []
    assert runtime.tools.get("echo").seen == []
    assert len(model.calls) == 1


@pytest.mark.asyncio
async def test_follow_up_turn_on_child_keeps_child_tools(runtime, model, session):
    model.script = [reply("child answer"), reply("follow-up answer")]
    spawned = await runtime.runner.spawn(session.id, _task(), context=_context(runtime, session))

    result = await runtime.run(
        TurnRequest(session_id=spawned.session_id, content="one more thing", user_id="u1")
    )

    assert result.text == "follow-up answer"
    assert "task" not in model.tool_names(1)
    assert "task_status" in model.tool_names(1)


@pytest.mark.asyncio
async def test_background_limit(runtime, model, session):
    model.script = [[Hang()]] * 5
    context = _context(runtime, session)

    for _ in range(runtime.settings.subagents.max_background):
        started = await runtime.runner.spawn(session.id, _task(run_in_background=True), context=context)
        assert started.success is True

    result = await runtime.runner.spawn(session.id, _task(run_in_background=True), context=context)

    assert result.success is False
    assert result.error == "Too many background tasks (4 running)"


@pytest.mark.asyncio
async def test_cancel_all_stops_every_task(runtime, model, session):
    model.script = [[Hang()], [Hang()]]
    context = _context(runtime, session)
    first = await runtime.runner.spawn(session.id, _task(run_in_background=True), context=context)
    second = await runtime.runner.spawn(session.id, _task(run_in_background=True), context=context)
    tasks = [runtime.runner.get_background_task(r.session_id).task for r in (first, second)]

    count = await runtime.runner.cancel_all(timeout=1.0)

    assert count == 2
    assert runtime.runner.active_count() == 0
    assert all(t.done() for t in tasks)


@pytest.mark.asyncio
async def test_resume_waits_for_running_task(runtime, model, session):
    model.script = [reply("finished later")]
    context = _context(runtime, session)

    started = await runtime.runner.spawn(session.id, _task(run_in_background=True), context=context)
    resumed = await runtime.runner.spawn(session.id, _task(resume=started.session_id), context=context)

    assert resumed.success is True
    assert resumed.session_id == started.session_id
    assert resumed.response == "finished later"


@pytest.mark.asyncio
async def test_resume_of_untracked_task_starts_fresh(runtime, model, session):
    model.script = [reply("fresh start")]

    result = await runtime.runner.spawn(
        session.id, _task(resume="ses_gone"), context=_context(runtime, session)
    )

    assert result.success is True
    assert result.session_id != "ses_gone"
    assert result.response == "fresh start"


# ─── Task Status ──────────────────────────────────────────────


@pytest.mark.asyncio
async def test_task_status_reports_running_then_completed(runtime, model, session):
    status_tool = runtime.tools.get("task_status")
    context = _context(runtime, session)
    model.script = [[Hang()]]

    started = await runtime.runner.spawn(session.id, _task(run_in_background=True), context=context)
    running = await status_tool.safe_execute(context, {"task_id": started.session_id})
    assert running.error is False
    assert "still running" in running.output

    cancelled = await status_tool.safe_execute(
        context, {"task_id": started.session_id, "cancel": True}
    )
    assert cancelled.output == f"Task {started.session_id} cancelled."


@pytest.mark.asyncio
async def test_task_status_reads_finished_session(runtime, model, session):
    status_tool = runtime.tools.get("task_status")
    context = _context(runtime, session)
    model.script = [reply("all done")]

    result = await runtime.runner.spawn(session.id, _task(), context=context)
    status = await status_tool.safe_execute(context, {"task_id": result.session_id})

    assert status.error is False
    assert status.output == f"Task {result.session_id} completed.\nResult: all done"


@pytest.mark.asyncio
async def test_task_status_unknown_id(runtime, session):
    status_tool = runtime.tools.get("task_status")

    status = await status_tool.safe_execute(_context(runtime, session), {"task_id": "ses_nope"})

    assert status.error is True
    assert status.output == "Task ses_nope not found"
