"""
Anthropic provider implementation for Claude models.

Maps SDK failures onto the tokenwise provider error taxonomy and prices usage
from the model registry.
"""

from __future__ import annotations

import time
from typing import Any

from anthropic import (
    APIConnectionError,
    APIStatusError,
    AsyncAnthropic,
    RateLimitError as AnthropicRateLimitError,
)

from tokenwise.core.models import GenerationResult, UsageStats, calculate_cost
from tokenwise.providers.base import (
    AuthenticationError,
    BaseProvider,
    ContextLengthError,
    InvalidRequestError,
    ProviderError,
    RateLimitError,
)


def _retry_after(error: AnthropicRateLimitError) -> float | None:
    header = error.response.headers.get("retry-after") if error.response is not None else None
    if header is None:
        return None
    try:
        return float(header)
    except ValueError:
        return None


class AnthropicProvider(BaseProvider):
    """
    Anthropic provider for Claude models.

    Supports:
    - Claude Opus 4.5 (premium tier)
    - Claude Sonnet 4.5 (balanced tier)
    - Claude Haiku 4.5 (fast and economical tier)
    """

    name = "anthropic"

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        **kwargs: Any,
    ):
        super().__init__(api_key, **kwargs)
        client_kwargs: dict[str, Any] = {"api_key": api_key, "base_url": base_url}
        if timeout is not None:
            client_kwargs["timeout"] = timeout
        # SDK-level retries are disabled; the scheduler owns backoff
        self.client = AsyncAnthropic(max_retries=0, **client_kwargs)

    async def generate(
        self,
        prompt: str,
        model: str,
        max_tokens: int = 4096,
        temperature: float = 0.7,
    ) -> GenerationResult:
        """Generate a completion using Claude."""
        start_time = time.perf_counter()

        try:
            response = await self.client.messages.create(
                model=model,
                messages=[{"role": "user", "content": prompt}],
                max_tokens=max_tokens,
                temperature=temperature,
            )
        except AnthropicRateLimitError as e:
            raise RateLimitError(str(e), provider=self.name, retry_after=_retry_after(e)) from e
        except APIConnectionError as e:
            raise ProviderError(str(e), provider=self.name, retryable=True) from e
        except APIStatusError as e:
            if e.status_code == 401:
                raise AuthenticationError(str(e), provider=self.name) from e
            if e.status_code == 400:
                if "context" in str(e).lower() or "too long" in str(e).lower():
                    raise ContextLengthError(str(e), provider=self.name) from e
                raise InvalidRequestError(str(e), provider=self.name) from e
            raise ProviderError(
                str(e),
                provider=self.name,
                status_code=e.status_code,
                retryable=e.status_code >= 500,
            ) from e

        latency_ms = (time.perf_counter() - start_time) * 1000

        content = ""
        for block in response.content:
            if hasattr(block, "text"):
                content += block.text

        usage = UsageStats.of(response.usage.input_tokens, response.usage.output_tokens)

        return GenerationResult(
            content=content,
            usage=usage,
            cost=calculate_cost(model, usage.input_tokens, usage.output_tokens),
            model_id=model,
            latency_ms=latency_ms,
        )
