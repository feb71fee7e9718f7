"""
Provider Registry — catalog queries, cost, client construction, breakers.

Usage:
    providers = ProviderRegistry()
    model = providers.get_model("openai", "gpt-4o")
    cost = providers.calculate_cost("openai", "gpt-4o", Usage(1200, 300))
    client = providers.create_client("openai", "gpt-4o", secret)

Client factories are pluggable per provider; the default speaks the
OpenAI-compatible protocol at the provider's configured base URL.
"""

from __future__ import annotations

import logging
from typing import Callable

from tandem.core.circuit_breaker import BreakerStats, CircuitBreakerRegistry
from tandem.core.config import CircuitBreakerConfig, ProviderEndpoints
from tandem.core.errors import CircuitOpenError, ValidationError
from tandem.providers.base import ModelClient, Usage
from tandem.providers.catalog import PROVIDERS, ModelConfig, ProviderConfig
from tandem.providers.openai_client import OpenAICompatibleClient

logger = logging.getLogger(__name__)

ClientFactory = Callable[[ProviderConfig, str, str], ModelClient]


class ProviderRegistry:
    def __init__(
        self,
        providers: dict[str, ProviderConfig] | None = None,
        endpoints: ProviderEndpoints | None = None,
        breaker_settings: CircuitBreakerConfig | None = None,
    ) -> None:
        self._providers = dict(PROVIDERS if providers is None else providers)
        self._endpoints = endpoints or ProviderEndpoints()
        self._factories: dict[str, ClientFactory] = {}
        self.breakers = CircuitBreakerRegistry(breaker_settings)

    # ─── Catalog ──────────────────────────────────────────────────

    def register_provider(self, provider: ProviderConfig) -> None:
        self._providers[provider.id] = provider

    def list_providers(self) -> list[ProviderConfig]:
        return list(self._providers.values())

    def get_provider(self, provider_id: str) -> ProviderConfig | None:
        return self._providers.get(provider_id)

    def get_model(self, provider_id: str, model_id: str) -> ModelConfig | None:
        provider = self._providers.get(provider_id)
        return provider.model(model_id) if provider else None

    def list_models(self, provider_id: str) -> list[ModelConfig]:
        provider = self._providers.get(provider_id)
        return list(provider.models) if provider else []

    def get_default_model(self, provider_id: str) -> str | None:
        provider = self._providers.get(provider_id)
        return provider.default_model if provider else None

    def validate_provider_model(self, provider_id: str, model_id: str) -> bool:
        return self.get_model(provider_id, model_id) is not None

    def calculate_cost(self, provider_id: str, model_id: str, usage: Usage) -> float:
        model = self.get_model(provider_id, model_id)
        if model is None:
            return 0.0
        return (
            usage.input_tokens / 1000 * model.cost_per_1k_input
            + usage.output_tokens / 1000 * model.cost_per_1k_output
        )

    def supports_tools(self, provider_id: str, model_id: str) -> bool:
        model = self.get_model(provider_id, model_id)
        return model.supports_tools if model else True

    # ─── Clients ──────────────────────────────────────────────────

    def register_client_factory(self, provider_id: str, factory: ClientFactory) -> None:
        self._factories[provider_id] = factory

    def create_client(self, provider_id: str, model_id: str, secret: str) -> ModelClient:
        """Build a client. Unknown models are passed through with a warning."""
        provider = self._providers.get(provider_id)
        if provider is None:
            raise ValidationError(f"Unknown provider: {provider_id}")

        if provider.model(model_id) is None:
            logger.warning(
                "Model %s not in catalog for %s, passing through",
                model_id,
                provider_id,
                extra={"provider_id": provider_id, "model_id": model_id},
            )

        factory = self._factories.get(provider_id, self._default_factory)
        return factory(provider, model_id, secret)

    def _default_factory(self, provider: ProviderConfig, model_id: str, secret: str) -> ModelClient:
        base_url = self._endpoints.for_provider(provider.id)
        if provider.id == "ollama" and secret.startswith("http"):
            # An Ollama "credential" is the server URL
            base_url, secret = secret, ""
        return OpenAICompatibleClient(
            provider_id=provider.id,
            model_id=model_id,
            api_key=secret,
            base_url=base_url,
            default_headers=dict(provider.extra_headers),
        )

    # ─── Circuit Breakers ─────────────────────────────────────────

    def ensure_available(self, provider_id: str) -> None:
        breaker = self.breakers.get_or_create(provider_id)
        if not breaker.allow():
            raise CircuitOpenError(provider_id, breaker.next_attempt_at)

    def record_success(self, provider_id: str) -> None:
        self.breakers.get_or_create(provider_id).record_success()

    def record_failure(self, provider_id: str, counts: bool = True) -> None:
        self.breakers.get_or_create(provider_id).record_failure(counts)

    def breaker_stats(self) -> dict[str, BreakerStats]:
        return {key: b.stats() for key, b in self.breakers.all().items()}
