"""Provider implementations."""

from .anthropic import AnthropicProvider
from .base import Provider, ProviderCapabilities
from .gemini import GeminiProvider
from .mock import MockProvider

__all__ = [
    "AnthropicProvider",
    "GeminiProvider",
    "MockProvider",
    "Provider",
    "ProviderCapabilities",
]
