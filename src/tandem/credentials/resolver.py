"""
Credential Resolver — a usable secret for one (user, provider) pair.

Priority:
  1. an explicitly supplied static key, always
  2. the stored credential; OAuth tokens are refreshed when expired and
     the new pair is persisted before use

A model call that still gets 401 with a fresh token calls force_refresh()
once, treating the token as expired regardless of the local clock.

Refreshes are single-flight per (user, provider): the store's lock is held
while refreshing and the stored credential is re-read inside it, so a
caller that lost the race reuses the winner's token.
"""

from __future__ import annotations

import logging

from tandem.core.errors import AuthenticationError
from tandem.core.metrics import metrics
from tandem.credentials.models import Credential, CredentialKind
from tandem.credentials.oauth import OAuthRefresher
from tandem.credentials.store import CredentialStore
from tandem.providers.catalog import PROVIDERS, ProviderConfig

logger = logging.getLogger(__name__)


class CredentialResolver:
    def __init__(
        self,
        user_id: str,
        provider_id: str,
        *,
        store: CredentialStore | None = None,
        static_key: str | None = None,
        refresher: OAuthRefresher | None = None,
        provider: ProviderConfig | None = None,
        refresh_margin: float = 60.0,
    ) -> None:
        self.user_id = user_id
        self.provider_id = provider_id
        self._store = store
        self._static_key = static_key or None
        self._refresher = refresher or OAuthRefresher()
        self._provider = provider or PROVIDERS.get(provider_id)
        self._refresh_margin = refresh_margin
        self._last_secret: str | None = None

    @property
    def is_oauth(self) -> bool:
        return (
            self._static_key is None
            and self._provider is not None
            and self._provider.auth == "oauth"
        )

    def for_provider(self, provider_id: str) -> CredentialResolver:
        """Resolver for another provider of the same user. Static keys don't carry over."""
        if provider_id == self.provider_id:
            return self
        return CredentialResolver(
            self.user_id,
            provider_id,
            store=self._store,
            refresher=self._refresher,
            refresh_margin=self._refresh_margin,
        )

    async def resolve(self) -> str:
        if self._static_key is not None:
            return self._static_key

        credential = await self._load()
        if credential is None:
            # Keyless providers (local Ollama) run without a credential
            return ""

        if credential.kind is CredentialKind.OAUTH and credential.is_expired(
            margin=self._refresh_margin
        ):
            logger.info(
                "OAuth token for %s expired, refreshing",
                self.provider_id,
                extra={"provider_id": self.provider_id},
            )
            credential = await self._refresh(stale=credential.access)

        self._last_secret = credential.secret
        return credential.secret

    async def force_refresh(self) -> str:
        """Refresh even though the token looks valid locally."""
        if not self.is_oauth:
            raise AuthenticationError(
                f"Credential for {self.provider_id} was rejected and cannot be refreshed",
                provider_id=self.provider_id,
            )
        credential = await self._refresh(stale=self._last_secret)
        self._last_secret = credential.secret
        return credential.secret

    async def _load(self) -> Credential | None:
        credential = None
        if self._store is not None:
            credential = await self._store.get(self.user_id, self.provider_id)
        if credential is None and not (self._provider and self._provider.auth == "none"):
            raise AuthenticationError(
                f'No credentials found for provider "{self.provider_id}"',
                provider_id=self.provider_id,
                hint=f"Add an API key for {self.provider_id} or sign in again.",
            )
        return credential

    async def _refresh(self, stale: str | None) -> Credential:
        if self._store is None or self._provider is None or self._provider.oauth is None:
            raise AuthenticationError(
                f"Provider {self.provider_id} has no OAuth configuration",
                provider_id=self.provider_id,
            )

        async with self._store.refresh_lock(self.user_id, self.provider_id):
            current = await self._store.get(self.user_id, self.provider_id)
            if current is None or current.kind is not CredentialKind.OAUTH:
                raise AuthenticationError(
                    f"No OAuth tokens stored for {self.provider_id}",
                    provider_id=self.provider_id,
                )
            if (
                stale is not None
                and current.access != stale
                and not current.is_expired(margin=self._refresh_margin)
            ):
                # Another caller refreshed while we waited for the lock
                return current

            refreshed = await self._refresher.refresh(
                self.provider_id, self._provider.oauth, current
            )
            await self._store.put(self.user_id, self.provider_id, refreshed)
            metrics.inc("credentials.refreshed", labels={"provider": self.provider_id})
            logger.info(
                "Refreshed OAuth token for %s",
                self.provider_id,
                extra={"provider_id": self.provider_id},
            )
            return refreshed
