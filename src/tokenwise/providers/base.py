"""
Base provider interface for generation backends.

All provider implementations must inherit from BaseProvider. Errors raised by
providers carry a ``retryable`` flag that the retry layer honours.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

import structlog

from tokenwise.core.models import GenerationResult

logger = structlog.get_logger()


class ProviderError(Exception):
    """Base exception for provider errors."""

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        status_code: int | None = None,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code
        self.retryable = retryable


class RateLimitError(ProviderError):
    """Raised when rate limit is exceeded."""

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        retry_after: float | None = None,
    ):
        super().__init__(message, provider, status_code=429, retryable=True)
        self.retry_after = retry_after


class InvalidRequestError(ProviderError):
    """Raised when the provider rejects a malformed request."""

    def __init__(self, message: str, provider: str | None = None):
        super().__init__(message, provider, status_code=400, retryable=False)


class ContextLengthError(InvalidRequestError):
    """Raised when context length is exceeded."""

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        token_count: int | None = None,
        max_tokens: int | None = None,
    ):
        super().__init__(message, provider)
        self.token_count = token_count
        self.max_tokens = max_tokens


class AuthenticationError(ProviderError):
    """Raised when authentication fails."""

    def __init__(self, message: str, provider: str | None = None):
        super().__init__(message, provider, status_code=401, retryable=False)


class BaseProvider(ABC):
    """
    Abstract base class for generation providers.

    Implementations must provide generate(). Errors must be raised as
    ProviderError subclasses so callers can decide whether to retry.
    """

    name: str = "base"
    _health_check_model: str = "claude-haiku-4-5-20251001"

    # Approximate characters per token when no tokenizer is available
    CHARS_PER_TOKEN = 4

    def __init__(self, api_key: str | None = None, **kwargs: Any):
        self.api_key = api_key

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        model: str,
        max_tokens: int = 4096,
        temperature: float = 0.7,
    ) -> GenerationResult:
        """
        Generate a completion for a prompt.

        Args:
            prompt: Rendered prompt text
            model: Provider model identifier
            max_tokens: Output token cap
            temperature: Sampling temperature

        Returns:
            GenerationResult with content, usage and cost

        Raises:
            ProviderError: on any provider failure
        """
        ...

    def count_tokens(self, text: str) -> int:
        """Approximate token count for text."""
        return len(text) // self.CHARS_PER_TOKEN + 1

    async def health_check(self) -> bool:
        """
        Check if the provider is available and configured correctly.

        Returns:
            True if healthy, False otherwise
        """
        try:
            result = await self.generate("Say 'OK'", self._health_check_model, max_tokens=10, temperature=0)
        except ProviderError as e:
            logger.debug("Health check failed", provider=self.name, error=str(e))
            return False
        return len(result.content) > 0
