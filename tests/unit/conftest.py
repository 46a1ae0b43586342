"""Shared fixtures for unit tests."""

from __future__ import annotations

import asyncio

import pytest

from tokenwise.core.models import GenerationResult, Operation, OperationType, UsageStats, calculate_cost
from tokenwise.providers.base import BaseProvider

HAIKU = "claude-haiku-4-5-20251001"
SONNET = "claude-sonnet-4-5-20250929"
OPUS = "claude-opus-4-5-20251101"


class FakeProvider(BaseProvider):
    """In-memory provider that records calls and can be gated or made to fail."""

    name = "fake"

    def __init__(
        self,
        content: str = "Generated text",
        input_tokens: int = 100,
        output_tokens: int = 200,
        gate: asyncio.Event | None = None,
        error: Exception | None = None,
    ):
        super().__init__(api_key="test-key")
        self.content = content
        self.input_tokens = input_tokens
        self.output_tokens = output_tokens
        self.gate = gate
        self.error = error
        # prompt -> errors raised on successive calls before succeeding
        self.failures: dict[str, list[Exception]] = {}
        self.calls: list[tuple[str, str]] = []

    async def generate(
        self,
        prompt: str,
        model: str,
        max_tokens: int = 4096,
        temperature: float = 0.7,
    ) -> GenerationResult:
        self.calls.append((prompt, model))
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        pending = self.failures.get(prompt)
        if pending:
            raise pending.pop(0)

        usage = UsageStats.of(self.input_tokens, self.output_tokens)
        return GenerationResult(
            content=self.content,
            usage=usage,
            cost=calculate_cost(model, usage.input_tokens, usage.output_tokens),
            model_id=model,
            latency_ms=1.0,
        )

    @property
    def prompts(self) -> list[str]:
        return [prompt for prompt, _ in self.calls]


def make_operation(op_id: str, prompt: str | None = None, **kwargs) -> Operation:
    """Build a general operation whose prompt identifies it."""
    kwargs.setdefault("caller_id", "acme")
    return Operation(
        id=op_id,
        type=OperationType.GENERAL,
        params={"prompt": prompt or f"prompt {op_id}"},
        **kwargs,
    )


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()
