"""
Tandem Configuration — single source of truth for all settings.

Reads from environment variables with sensible defaults.
A .env file in the working directory is loaded once at import time.

Usage:
    from tandem.core.config import config

    config.llm.max_steps        # 25
    config.retry.max_attempts   # 3

Components take their own section as a constructor argument, so tests
build isolated instances instead of patching the singleton.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class LLMConfig:
    """Default model selection and per-turn limits."""

    provider: str = "anthropic"
    model: str = ""  # Empty = provider default
    max_steps: int = 25
    max_tokens: int = 4096
    temperature: float | None = None

    @classmethod
    def from_env(cls) -> LLMConfig:
        temperature = os.getenv("TANDEM_LLM_TEMPERATURE")
        return cls(
            provider=os.getenv("TANDEM_LLM_PROVIDER", "anthropic"),
            model=os.getenv("TANDEM_LLM_MODEL", ""),
            max_steps=int(os.getenv("TANDEM_LLM_MAX_STEPS", "25")),
            max_tokens=int(os.getenv("TANDEM_LLM_MAX_TOKENS", "4096")),
            temperature=float(temperature) if temperature else None,
        )


@dataclass(frozen=True)
class RetryConfig:
    """Retry policy for model calls."""

    max_attempts: int = 3
    base_delay: float = 1.0  # seconds, doubles each attempt
    max_delay: float = 30.0

    @classmethod
    def from_env(cls) -> RetryConfig:
        return cls(
            max_attempts=int(os.getenv("TANDEM_RETRY_MAX_ATTEMPTS", "3")),
            base_delay=float(os.getenv("TANDEM_RETRY_BASE_DELAY", "1.0")),
            max_delay=float(os.getenv("TANDEM_RETRY_MAX_DELAY", "30.0")),
        )


@dataclass(frozen=True)
class CircuitBreakerConfig:
    """Per-provider circuit breaker thresholds."""

    failure_threshold: int = 5
    reset_timeout: float = 60.0  # seconds
    monitoring_period: float = 120.0  # seconds

    @classmethod
    def from_env(cls) -> CircuitBreakerConfig:
        return cls(
            failure_threshold=int(os.getenv("TANDEM_BREAKER_THRESHOLD", "5")),
            reset_timeout=float(os.getenv("TANDEM_BREAKER_RESET_TIMEOUT", "60")),
            monitoring_period=float(
                os.getenv("TANDEM_BREAKER_MONITORING_PERIOD", "120")
            ),
        )


@dataclass(frozen=True)
class PermissionConfig:
    """Permission engine defaults."""

    default_action: str = "ask"
    approval_timeout: float = 300.0  # seconds; expiry counts as denial
    use_default_rules: bool = True

    @classmethod
    def from_env(cls) -> PermissionConfig:
        return cls(
            default_action=os.getenv("TANDEM_PERMISSION_DEFAULT", "ask"),
            approval_timeout=float(os.getenv("TANDEM_APPROVAL_TIMEOUT", "300")),
            use_default_rules=_env_bool("TANDEM_PERMISSION_DEFAULT_RULES", True),
        )


@dataclass(frozen=True)
class SubAgentConfig:
    """Sub-agent limits."""

    max_background: int = 8
    max_turns_cap: int = 50

    @classmethod
    def from_env(cls) -> SubAgentConfig:
        return cls(
            max_background=int(os.getenv("TANDEM_SUBAGENT_MAX_BACKGROUND", "8")),
            max_turns_cap=int(os.getenv("TANDEM_SUBAGENT_MAX_TURNS", "50")),
        )


@dataclass(frozen=True)
class StoreConfig:
    """Database locations and the secret used to encrypt stored credentials."""

    session_db_path: str = "tandem_sessions.db"
    credential_db_path: str = "tandem_credentials.db"
    secret: str = ""

    @classmethod
    def from_env(cls) -> StoreConfig:
        return cls(
            session_db_path=os.getenv("TANDEM_SESSION_DB", "tandem_sessions.db"),
            credential_db_path=os.getenv(
                "TANDEM_CREDENTIAL_DB", "tandem_credentials.db"
            ),
            secret=os.getenv("TANDEM_SECRET", ""),
        )


@dataclass(frozen=True)
class OAuthConfig:
    """Token refresh behaviour."""

    refresh_margin: float = 60.0  # refresh this many seconds before expiry
    timeout: float = 10.0

    @classmethod
    def from_env(cls) -> OAuthConfig:
        return cls(
            refresh_margin=float(os.getenv("TANDEM_OAUTH_REFRESH_MARGIN", "60")),
            timeout=float(os.getenv("TANDEM_OAUTH_TIMEOUT", "10")),
        )


@dataclass(frozen=True)
class ProviderEndpoints:
    """Base URLs for the OpenAI-compatible endpoints of each provider."""

    anthropic: str = "https://api.anthropic.com/v1/"
    openai: str = "https://api.openai.com/v1"
    google: str = "https://generativelanguage.googleapis.com/v1beta/openai/"
    ollama: str = "http://localhost:11434/v1"

    @classmethod
    def from_env(cls) -> ProviderEndpoints:
        return cls(
            anthropic=os.getenv("TANDEM_ANTHROPIC_BASE_URL", cls.anthropic),
            openai=os.getenv("TANDEM_OPENAI_BASE_URL", cls.openai),
            google=os.getenv("TANDEM_GOOGLE_BASE_URL", cls.google),
            ollama=os.getenv("OLLAMA_BASE_URL", cls.ollama),
        )

    def for_provider(self, provider_id: str) -> str | None:
        if provider_id.startswith("anthropic"):
            return self.anthropic
        return getattr(self, provider_id, None)


@dataclass(frozen=True)
class TandemConfig:
    """Root config — aggregates all sub-configs."""

    llm: LLMConfig = field(default_factory=LLMConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    breaker: CircuitBreakerConfig = field(default_factory=CircuitBreakerConfig)
    permissions: PermissionConfig = field(default_factory=PermissionConfig)
    subagents: SubAgentConfig = field(default_factory=SubAgentConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    oauth: OAuthConfig = field(default_factory=OAuthConfig)
    endpoints: ProviderEndpoints = field(default_factory=ProviderEndpoints)

    @classmethod
    def from_env(cls) -> TandemConfig:
        return cls(
            llm=LLMConfig.from_env(),
            retry=RetryConfig.from_env(),
            breaker=CircuitBreakerConfig.from_env(),
            permissions=PermissionConfig.from_env(),
            subagents=SubAgentConfig.from_env(),
            store=StoreConfig.from_env(),
            oauth=OAuthConfig.from_env(),
            endpoints=ProviderEndpoints.from_env(),
        )


# Process default; tests build their own TandemConfig
config = TandemConfig.from_env()
