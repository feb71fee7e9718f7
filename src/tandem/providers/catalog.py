"""
Provider catalog — static provider → model metadata and prices.

Costs are USD per 1,000 tokens. Local and free-tier models cost 0.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class ModelConfig:
    id: str
    name: str
    context_window: int
    max_output_tokens: int
    cost_per_1k_input: float = 0.0
    cost_per_1k_output: float = 0.0
    supports_tools: bool = True
    supports_streaming: bool = True


@dataclass(frozen=True)
class OAuthSettings:
    """Token endpoint details for providers authenticated with OAuth."""

    token_url: str
    client_id: str
    client_secret: str = ""
    token_auth: str = "json"  # "json", "body" (form) or "basic"


@dataclass(frozen=True)
class ProviderConfig:
    id: str
    name: str
    default_model: str
    models: tuple[ModelConfig, ...]
    auth: str = "api_key"  # "api_key", "oauth" or "none"
    oauth: OAuthSettings | None = None
    extra_headers: dict[str, str] = field(default_factory=dict)

    def model(self, model_id: str) -> ModelConfig | None:
        for model in self.models:
            if model.id == model_id:
                return model
        return None


ANTHROPIC_MODELS = (
    ModelConfig(
        id="claude-sonnet-4-20250514",
        name="Claude Sonnet 4",
        context_window=200_000,
        max_output_tokens=64_000,
        cost_per_1k_input=0.003,
        cost_per_1k_output=0.015,
    ),
    ModelConfig(
        id="claude-opus-4-20250514",
        name="Claude Opus 4",
        context_window=200_000,
        max_output_tokens=32_000,
        cost_per_1k_input=0.015,
        cost_per_1k_output=0.075,
    ),
    ModelConfig(
        id="claude-3-5-haiku-20241022",
        name="Claude 3.5 Haiku",
        context_window=200_000,
        max_output_tokens=8_192,
        cost_per_1k_input=0.0008,
        cost_per_1k_output=0.004,
    ),
)

OPENAI_MODELS = (
    ModelConfig(
        id="gpt-4o",
        name="GPT-4o",
        context_window=128_000,
        max_output_tokens=16_384,
        cost_per_1k_input=0.0025,
        cost_per_1k_output=0.01,
    ),
    ModelConfig(
        id="gpt-4o-mini",
        name="GPT-4o Mini",
        context_window=128_000,
        max_output_tokens=16_384,
        cost_per_1k_input=0.00015,
        cost_per_1k_output=0.0006,
    ),
    ModelConfig(
        id="o1",
        name="o1",
        context_window=200_000,
        max_output_tokens=100_000,
        cost_per_1k_input=0.015,
        cost_per_1k_output=0.06,
        supports_tools=False,
    ),
)

GOOGLE_MODELS = (
    ModelConfig(
        id="gemini-2.0-flash",
        name="Gemini 2.0 Flash",
        context_window=1_000_000,
        max_output_tokens=8_192,
    ),
    ModelConfig(
        id="gemini-2.0-flash-thinking-exp",
        name="Gemini 2.0 Flash Thinking",
        context_window=1_000_000,
        max_output_tokens=65_536,
    ),
)

OLLAMA_MODELS = (
    ModelConfig(id="llama3.1", name="Llama 3.1", context_window=128_000, max_output_tokens=4_096),
    ModelConfig(id="llama3.2", name="Llama 3.2", context_window=128_000, max_output_tokens=4_096),
    ModelConfig(id="mistral", name="Mistral", context_window=32_000, max_output_tokens=4_096),
)

ANTHROPIC_OAUTH = OAuthSettings(
    token_url="https://console.anthropic.com/v1/oauth/token",
    client_id="9d1c250a-e61b-44d9-88ed-5944d1962f5e",
    token_auth="json",
)

PROVIDERS: dict[str, ProviderConfig] = {
    "anthropic": ProviderConfig(
        id="anthropic",
        name="Anthropic",
        default_model="claude-sonnet-4-20250514",
        models=ANTHROPIC_MODELS,
    ),
    "anthropic-oauth": ProviderConfig(
        id="anthropic-oauth",
        name="Anthropic (Claude subscription)",
        default_model="claude-sonnet-4-20250514",
        models=ANTHROPIC_MODELS,
        auth="oauth",
        oauth=ANTHROPIC_OAUTH,
        extra_headers={"anthropic-beta": "oauth-2025-04-20"},
    ),
    "openai": ProviderConfig(
        id="openai",
        name="OpenAI",
        default_model="gpt-4o",
        models=OPENAI_MODELS,
    ),
    "google": ProviderConfig(
        id="google",
        name="Google",
        default_model="gemini-2.0-flash",
        models=GOOGLE_MODELS,
    ),
    "ollama": ProviderConfig(
        id="ollama",
        name="Ollama",
        default_model="llama3.1",
        models=OLLAMA_MODELS,
        auth="none",
    ),
}

# Short names accepted by the task tool's `model` parameter
MODEL_ALIASES: dict[str, tuple[str, str]] = {
    "sonnet": ("anthropic", "claude-sonnet-4-20250514"),
    "opus": ("anthropic", "claude-opus-4-20250514"),
    "haiku": ("anthropic", "claude-3-5-haiku-20241022"),
}
