"""Generation provider implementations."""

from tokenwise.providers.base import BaseProvider, ProviderError, RateLimitError
from tokenwise.providers.anthropic_provider import AnthropicProvider

__all__ = [
    "BaseProvider",
    "ProviderError",
    "RateLimitError",
    "AnthropicProvider",
]
