"""Stored provider credentials."""

from __future__ import annotations

import json
import time
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any


class CredentialKind(str, Enum):
    API_KEY = "api_key"
    OAUTH = "oauth"


@dataclass(frozen=True)
class Credential:
    """A static key, or an OAuth token pair with its expiry (epoch seconds)."""

    kind: CredentialKind
    key: str = ""
    access: str = ""
    refresh: str = ""
    expires_at: float = 0.0

    @classmethod
    def api_key(cls, key: str) -> Credential:
        return cls(kind=CredentialKind.API_KEY, key=key)

    @classmethod
    def oauth(cls, access: str, refresh: str, expires_at: float) -> Credential:
        return cls(kind=CredentialKind.OAUTH, access=access, refresh=refresh, expires_at=expires_at)

    @property
    def secret(self) -> str:
        """The value handed to a model client."""
        return self.access if self.kind is CredentialKind.OAUTH else self.key

    def is_expired(self, now: float | None = None, margin: float = 0.0) -> bool:
        if self.kind is not CredentialKind.OAUTH:
            return False
        now = time.time() if now is None else now
        return now >= self.expires_at - margin

    def to_json(self) -> str:
        data: dict[str, Any] = asdict(self)
        data["kind"] = self.kind.value
        return json.dumps(data)

    @classmethod
    def from_json(cls, raw: str) -> Credential:
        data = json.loads(raw)
        return cls(
            kind=CredentialKind(data.get("kind", "api_key")),
            key=data.get("key", ""),
            access=data.get("access", ""),
            refresh=data.get("refresh", ""),
            expires_at=float(data.get("expires_at", 0.0)),
        )
