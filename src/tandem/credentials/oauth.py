"""
OAuth token refresh — exchange a refresh token for a new pair.

Supports the three client-authentication styles seen in the wild:
  json  — {"grant_type", "refresh_token", "client_id"} as a JSON body
  body  — same fields, form-encoded, client_secret included
  basic — form-encoded, client_id:client_secret as HTTP Basic auth
"""

from __future__ import annotations

import base64
import logging
import math
import time
from typing import Any

import httpx

from tandem.core.errors import AuthenticationError
from tandem.credentials.models import Credential
from tandem.providers.catalog import OAuthSettings

logger = logging.getLogger(__name__)


class OAuthRefresher:
    def __init__(self, timeout: float = 10.0, http_client: httpx.AsyncClient | None = None) -> None:
        self._timeout = timeout
        self._http_client = http_client

    async def refresh(
        self,
        provider_id: str,
        settings: OAuthSettings,
        credential: Credential,
    ) -> Credential:
        """Return the refreshed credential. Raises AuthenticationError on failure."""
        if not credential.refresh:
            raise AuthenticationError(
                f"No refresh token stored for {provider_id}", provider_id=provider_id
            )

        fields = {
            "grant_type": "refresh_token",
            "refresh_token": credential.refresh,
        }
        headers: dict[str, str] = {}
        request_kwargs: dict = {}

        if settings.token_auth == "basic":
            creds = base64.b64encode(
                f"{settings.client_id}:{settings.client_secret}".encode()
            ).decode()
            headers["Authorization"] = f"Basic {creds}"
            request_kwargs["data"] = fields
        elif settings.token_auth == "body":
            fields["client_id"] = settings.client_id
            if settings.client_secret:
                fields["client_secret"] = settings.client_secret
            request_kwargs["data"] = fields
        else:
            fields["client_id"] = settings.client_id
            request_kwargs["json"] = fields

        try:
            if self._http_client is not None:
                resp = await self._http_client.post(
                    settings.token_url, headers=headers, **request_kwargs
                )
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    resp = await client.post(
                        settings.token_url, headers=headers, **request_kwargs
                    )
            resp.raise_for_status()
            tokens = resp.json()
        except httpx.HTTPStatusError as e:
            logger.error(
                "Token refresh rejected for %s: HTTP %s",
                provider_id,
                e.response.status_code,
                extra={"provider_id": provider_id},
            )
            raise AuthenticationError(
                f"OAuth refresh failed for {provider_id} (HTTP {e.response.status_code})",
                provider_id=provider_id,
                hint=f"Sign in to {provider_id} again.",
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Token refresh failed for %s: %s", provider_id, e)
            raise AuthenticationError(
                f"OAuth refresh failed for {provider_id}: {e}", provider_id=provider_id
            ) from e

        if not isinstance(tokens, dict):
            raise AuthenticationError(
                f"Token endpoint returned a malformed response for {provider_id}",
                provider_id=provider_id,
            )

        access = tokens.get("access_token")
        if not isinstance(access, str) or not access:
            raise AuthenticationError(
                f"Token endpoint returned no access token for {provider_id}",
                provider_id=provider_id,
            )

        lifetime = _expires_in_seconds(tokens.get("expires_in", 3600))
        if lifetime is None:
            raise AuthenticationError(
                f"Token endpoint returned an invalid expires_in for {provider_id}",
                provider_id=provider_id,
            )

        refresh = tokens.get("refresh_token")
        return Credential.oauth(
            access=access,
            # Endpoints that don't rotate refresh tokens omit the field
            refresh=refresh if isinstance(refresh, str) and refresh else credential.refresh,
            expires_at=time.time() + lifetime,
        )


def _expires_in_seconds(value: Any) -> float | None:
    """Token lifetime in seconds, or None when the field is unusable."""
    if isinstance(value, bool):
        return None
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(seconds) or seconds < 0:
        return None
    return seconds
