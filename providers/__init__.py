"""
Search provider variants.

PROVIDER_CLASSES maps each canonical provider name to its class; the registry
builds instances from it.
"""

from .base_provider import BaseSearchProvider
from .gemini_provider import GeminiProvider
from .modelbox_provider import ModelBoxProvider
from .openai_provider import OpenAIProvider
from .openrouter_provider import OpenRouterProvider
from .perplexity_provider import PerplexityProvider

PROVIDER_CLASSES: dict[str, type[BaseSearchProvider]] = {
    PerplexityProvider.name: PerplexityProvider,
    GeminiProvider.name: GeminiProvider,
    OpenAIProvider.name: OpenAIProvider,
    OpenRouterProvider.name: OpenRouterProvider,
    ModelBoxProvider.name: ModelBoxProvider,
}

__all__ = [
    "BaseSearchProvider",
    "GeminiProvider",
    "ModelBoxProvider",
    "OpenAIProvider",
    "OpenRouterProvider",
    "PerplexityProvider",
    "PROVIDER_CLASSES",
]
