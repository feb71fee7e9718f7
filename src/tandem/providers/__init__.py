"""
Tandem Providers — model catalog, clients and per-provider circuit breakers.
"""

from tandem.providers.base import ModelClient, ModelResponse, ModelStreamEvent, ToolCall, Usage
from tandem.providers.catalog import MODEL_ALIASES, PROVIDERS, ModelConfig, ProviderConfig
from tandem.providers.registry import ProviderRegistry

__all__ = [
    "MODEL_ALIASES",
    "PROVIDERS",
    "ModelClient",
    "ModelConfig",
    "ModelResponse",
    "ModelStreamEvent",
    "ProviderConfig",
    "ProviderRegistry",
    "ToolCall",
    "Usage",
]
