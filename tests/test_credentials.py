"""Tests for credential storage, OAuth refresh and the per-call credential resolver."""

import asyncio
import json
import time
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from tandem.core.errors import AuthenticationError
from tandem.core.metrics import metrics
from tandem.credentials.crypto import SecretBox
from tandem.credentials.models import Credential, CredentialKind
from tandem.credentials.oauth import OAuthRefresher
from tandem.credentials.resolver import CredentialResolver
from tandem.providers.catalog import OAuthSettings

SETTINGS = OAuthSettings(token_url="https://auth.test/token", client_id="client-123")


def _refresher_returning(*credentials):
    refresher = MagicMock()
    refresher.refresh = AsyncMock(side_effect=list(credentials))
    return refresher


# ─── Models & Encryption ──────────────────────────────────────


def test_credential_secret_and_expiry():
    key = Credential.api_key("sk-1")
    token = Credential.oauth("at", "rt", expires_at=1000.0)

    assert key.secret == "sk-1"
    assert token.secret == "at"
    assert key.is_expired(now=10**10) is False
    assert token.is_expired(now=900.0) is False
    assert token.is_expired(now=900.0, margin=200.0) is True
    assert Credential.from_json(token.to_json()) == token


def test_secret_box_encrypts():
    box = SecretBox("s3cret")
    token = box.encrypt("sk-live")

    assert box.enabled
    assert token != "sk-live"
    assert box.decrypt(token) == "sk-live"
    assert SecretBox("other").decrypt(token) == token


def test_secret_box_without_secret_is_plaintext():
    box = SecretBox("")
    assert box.enabled is False
    assert box.encrypt("sk-live") == "sk-live"


# ─── Store ────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_store_round_trip(credential_store):
    await credential_store.put("u1", "openai", Credential.api_key("sk-1"))
    await credential_store.put("u1", "anthropic-oauth", Credential.oauth("at", "rt", 123.0))

    assert (await credential_store.get("u1", "openai")).key == "sk-1"
    assert (await credential_store.get("u1", "anthropic-oauth")).kind is CredentialKind.OAUTH
    assert await credential_store.get("u2", "openai") is None
    assert sorted(await credential_store.list_providers("u1")) == ["anthropic-oauth", "openai"]


@pytest.mark.asyncio
async def test_store_put_replaces_and_delete(credential_store):
    await credential_store.put("u1", "openai", Credential.api_key("sk-1"))
    await credential_store.put("u1", "openai", Credential.api_key("sk-2"))

    assert (await credential_store.get("u1", "openai")).key == "sk-2"
    assert await credential_store.delete("u1", "openai") is True
    assert await credential_store.delete("u1", "openai") is False


@pytest.mark.asyncio
async def test_refresh_lock_is_per_user_and_provider(credential_store):
    lock = credential_store.refresh_lock("u1", "anthropic-oauth")
    assert credential_store.refresh_lock("u1", "anthropic-oauth") is lock
    assert credential_store.refresh_lock("u2", "anthropic-oauth") is not lock


# ─── OAuth Refresher ──────────────────────────────────────────


@pytest.mark.asyncio
async def test_refresh_json_body():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"access_token": "new-at", "refresh_token": "new-rt", "expires_in": 600})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        refresher = OAuthRefresher(http_client=http)
        before = time.time()
        result = await refresher.refresh("anthropic-oauth", SETTINGS, Credential.oauth("at", "rt", 0))

    assert (result.access, result.refresh) == ("new-at", "new-rt")
    assert result.expires_at >= before + 600
    body = json.loads(seen[0].content)
    assert body == {"grant_type": "refresh_token", "refresh_token": "rt", "client_id": "client-123"}


@pytest.mark.asyncio
async def test_refresh_keeps_refresh_token_when_not_rotated():
    def handler(request):
        return httpx.Response(200, json={"access_token": "new-at"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        result = await OAuthRefresher(http_client=http).refresh(
            "anthropic-oauth", SETTINGS, Credential.oauth("at", "rt", 0)
        )

    assert result.refresh == "rt"


@pytest.mark.asyncio
async def test_refresh_basic_auth():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"access_token": "x"})

    settings = OAuthSettings(
        token_url="https://auth.test/token", client_id="id", client_secret="pw", token_auth="basic"
    )
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        await OAuthRefresher(http_client=http).refresh("p", settings, Credential.oauth("at", "rt", 0))

    assert seen[0].headers["Authorization"] == "Basic aWQ6cHc="
    assert b"grant_type=refresh_token" in seen[0].content


@pytest.mark.asyncio
async def test_refresh_rejected():
    def handler(request):
        return httpx.Response(400, json={"error": "invalid_grant"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        with pytest.raises(AuthenticationError, match="HTTP 400"):
            await OAuthRefresher(http_client=http).refresh(
                "anthropic-oauth", SETTINGS, Credential.oauth("at", "rt", 0)
            )


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload, message",
    [
        (["access_token", "x"], "malformed response"),
        ("just a string", "malformed response"),
        ({"access_token": None}, "no access token"),
        ({"access_token": "x", "expires_in": None}, "invalid expires_in"),
        ({"access_token": "x", "expires_in": "soon"}, "invalid expires_in"),
        ({"access_token": "x", "expires_in": True}, "invalid expires_in"),
    ],
)
async def test_refresh_rejects_malformed_token_payload(payload, message):
    def handler(request):
        return httpx.Response(200, json=payload)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        with pytest.raises(AuthenticationError, match=message):
            await OAuthRefresher(http_client=http).refresh(
                "anthropic-oauth", SETTINGS, Credential.oauth("at", "rt", 0)
            )


@pytest.mark.asyncio
async def test_refresh_accepts_numeric_string_expiry():
    def handler(request):
        return httpx.Response(200, json={"access_token": "x", "expires_in": "120"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        result = await OAuthRefresher(http_client=http).refresh(
            "anthropic-oauth", SETTINGS, Credential.oauth("at", "rt", 0)
        )

    assert time.time() + 100 < result.expires_at <= time.time() + 120


@pytest.mark.asyncio
async def test_refresh_without_refresh_token():
    with pytest.raises(AuthenticationError, match="No refresh token"):
        await OAuthRefresher().refresh("anthropic-oauth", SETTINGS, Credential.oauth("at", "", 0))


# ─── Resolver ─────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_static_key_wins(credential_store):
    await credential_store.put("u1", "openai", Credential.api_key("sk-stored"))
    resolver = CredentialResolver("u1", "openai", store=credential_store, static_key="sk-static")

    assert await resolver.resolve() == "sk-static"
    assert resolver.is_oauth is False


@pytest.mark.asyncio
async def test_stored_key(credential_store):
    await credential_store.put("u1", "openai", Credential.api_key("sk-stored"))
    resolver = CredentialResolver("u1", "openai", store=credential_store)

    assert await resolver.resolve() == "sk-stored"


@pytest.mark.asyncio
async def test_missing_credential(credential_store):
    resolver = CredentialResolver("u1", "openai", store=credential_store)

    with pytest.raises(AuthenticationError) as exc_info:
        await resolver.resolve()
    assert exc_info.value.provider_id == "openai"


@pytest.mark.asyncio
async def test_keyless_provider(credential_store):
    resolver = CredentialResolver("u1", "ollama", store=credential_store)
    assert await resolver.resolve() == ""


@pytest.mark.asyncio
async def test_valid_token_is_not_refreshed(credential_store):
    await credential_store.put("u1", "anthropic-oauth", Credential.oauth("at", "rt", time.time() + 3600))
    refresher = _refresher_returning()
    resolver = CredentialResolver("u1", "anthropic-oauth", store=credential_store, refresher=refresher)

    assert await resolver.resolve() == "at"
    assert resolver.is_oauth is True
    refresher.refresh.assert_not_awaited()


@pytest.mark.asyncio
async def test_expired_token_is_refreshed_and_persisted(credential_store):
    await credential_store.put("u1", "anthropic-oauth", Credential.oauth("old", "rt", time.time() - 10))
    refresher = _refresher_returning(Credential.oauth("new", "rt2", time.time() + 3600))
    resolver = CredentialResolver("u1", "anthropic-oauth", store=credential_store, refresher=refresher)

    assert await resolver.resolve() == "new"

    stored = await credential_store.get("u1", "anthropic-oauth")
    assert (stored.access, stored.refresh) == ("new", "rt2")
    assert metrics.counter("credentials.refreshed", labels={"provider": "anthropic-oauth"}) == 1


@pytest.mark.asyncio
async def test_token_inside_margin_is_refreshed(credential_store):
    await credential_store.put("u1", "anthropic-oauth", Credential.oauth("old", "rt", time.time() + 30))
    refresher = _refresher_returning(Credential.oauth("new", "rt", time.time() + 3600))
    resolver = CredentialResolver(
        "u1", "anthropic-oauth", store=credential_store, refresher=refresher, refresh_margin=60
    )

    assert await resolver.resolve() == "new"


@pytest.mark.asyncio
async def test_concurrent_refresh_is_single_flight(credential_store):
    await credential_store.put("u1", "anthropic-oauth", Credential.oauth("old", "rt", time.time() - 10))

    async def slow_refresh(provider_id, settings, credential):
        await asyncio.sleep(0.01)
        return Credential.oauth("new", "rt2", time.time() + 3600)

    refresher = MagicMock()
    refresher.refresh = AsyncMock(side_effect=slow_refresh)
    resolvers = [
        CredentialResolver("u1", "anthropic-oauth", store=credential_store, refresher=refresher)
        for _ in range(3)
    ]

    secrets = await asyncio.gather(*(r.resolve() for r in resolvers))

    assert secrets == ["new", "new", "new"]
    refresher.refresh.assert_awaited_once()


@pytest.mark.asyncio
async def test_force_refresh_on_valid_token(credential_store):
    await credential_store.put("u1", "anthropic-oauth", Credential.oauth("at", "rt", time.time() + 3600))
    refresher = _refresher_returning(Credential.oauth("at2", "rt", time.time() + 3600))
    resolver = CredentialResolver("u1", "anthropic-oauth", store=credential_store, refresher=refresher)

    await resolver.resolve()
    assert await resolver.force_refresh() == "at2"
    refresher.refresh.assert_awaited_once()


@pytest.mark.asyncio
async def test_force_refresh_needs_oauth(credential_store):
    resolver = CredentialResolver("u1", "openai", store=credential_store, static_key="sk")

    with pytest.raises(AuthenticationError, match="cannot be refreshed"):
        await resolver.force_refresh()


@pytest.mark.asyncio
async def test_failed_refresh_surfaces_authentication_error(credential_store):
    await credential_store.put("u1", "anthropic-oauth", Credential.oauth("old", "rt", time.time() - 10))
    refresher = MagicMock()
    refresher.refresh = AsyncMock(
        side_effect=AuthenticationError("OAuth refresh failed", provider_id="anthropic-oauth")
    )
    resolver = CredentialResolver("u1", "anthropic-oauth", store=credential_store, refresher=refresher)

    with pytest.raises(AuthenticationError):
        await resolver.resolve()
    assert (await credential_store.get("u1", "anthropic-oauth")).access == "old"


@pytest.mark.asyncio
async def test_for_provider(credential_store):
    resolver = CredentialResolver("u1", "anthropic", store=credential_store, static_key="sk")

    assert resolver.for_provider("anthropic") is resolver
    other = resolver.for_provider("openai")
    assert other.provider_id == "openai"
    assert other.user_id == "u1"
    assert other.is_oauth is False
