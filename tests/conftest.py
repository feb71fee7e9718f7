"""
Shared fixtures.

`runtime` is a fully wired Runtime on temp SQLite files with fast retry
settings, an allow-by-default ruleset and the fake tools from fakes.py.
`model` is the scripted client every provider hands out.
"""

from __future__ import annotations

import tempfile
from pathlib import Path

import pytest
import pytest_asyncio

from fakes import AbortingTool, BrokenTool, EchoTool, RecordingFactory, RefusingTool, ScriptedClient

from tandem.core.config import (
    LLMConfig,
    PermissionConfig,
    RetryConfig,
    SubAgentConfig,
    TandemConfig,
)
from tandem.core.metrics import metrics
from tandem.credentials.crypto import SecretBox
from tandem.credentials.models import Credential
from tandem.credentials.store import CredentialStore
from tandem.runtime import Runtime
from tandem.session.store import SessionStore
from tandem.tools.registry import ToolRegistry

TEST_SETTINGS = TandemConfig(
    llm=LLMConfig(provider="openai", model="gpt-4o"),
    retry=RetryConfig(max_attempts=3, base_delay=0.01, max_delay=0.02),
    permissions=PermissionConfig(default_action="allow", use_default_rules=False),
    subagents=SubAgentConfig(max_background=4, max_turns_cap=50),
)


@pytest.fixture(autouse=True)
def _reset_metrics():
    metrics.reset()
    yield
    metrics.reset()


@pytest_asyncio.fixture
async def store():
    """A SessionStore with a temp DB for each test."""
    with tempfile.TemporaryDirectory() as tmpdir:
        s = SessionStore(db_path=Path(tmpdir) / "test_sessions.db")
        await s.start()
        yield s
        await s.stop()


@pytest_asyncio.fixture
async def credential_store():
    with tempfile.TemporaryDirectory() as tmpdir:
        s = CredentialStore(Path(tmpdir) / "test_credentials.db", SecretBox("test-secret"))
        await s.start()
        yield s
        await s.stop()


@pytest.fixture
def model() -> ScriptedClient:
    return ScriptedClient()


@pytest.fixture
def factory(model) -> RecordingFactory:
    return RecordingFactory(model)


@pytest_asyncio.fixture
async def runtime(factory):
    with tempfile.TemporaryDirectory() as tmpdir:
        rt = Runtime(
            TEST_SETTINGS,
            store=SessionStore(Path(tmpdir) / "sessions.db"),
            credentials=CredentialStore(Path(tmpdir) / "credentials.db", SecretBox("test-secret")),
            tools=ToolRegistry([EchoTool(), BrokenTool(), RefusingTool(), AbortingTool()]),
        )
        for provider in rt.providers.list_providers():
            rt.providers.register_client_factory(provider.id, factory)
        await rt.start()
        await rt.credentials.put("u1", "openai", Credential.api_key("sk-openai"))
        await rt.credentials.put("u1", "anthropic", Credential.api_key("sk-ant"))
        yield rt
        await rt.stop()


@pytest_asyncio.fixture
async def session(runtime):
    """A top-level session on openai/gpt-4o."""
    return await runtime.store.create_session(provider_id="openai", model_id="gpt-4o")
