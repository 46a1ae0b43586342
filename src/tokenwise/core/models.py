"""
Core data models for tokenwise.

Defines the operation, model-tier and task types shared by the cache,
selector, scheduler, analytics and hub.
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, model_validator


class OperationValidationError(ValueError):
    """Raised when an operation's parameters are malformed or empty."""


class OperationType(str, Enum):
    """Kinds of generation work the scheduler understands."""

    FOUNDATION = "foundation"
    CHAPTER = "chapter"
    IMPROVEMENT = "improvement"
    ANALYSIS = "analysis"
    GENERAL = "general"


class Urgency(str, Enum):
    """Caller-declared processing urgency."""

    IMMEDIATE = "immediate"
    NORMAL = "normal"
    LOW = "low"


class Complexity(str, Enum):
    """Coarse complexity class used by the model selector."""

    SIMPLE = "simple"
    MEDIUM = "medium"
    COMPLEX = "complex"


@dataclass(frozen=True)
class ModelCapabilities:
    """Capability vector for a model tier (ratings on a 1-10 scale)."""

    max_context: int
    reasoning: int
    creativity: int
    speed: int
    cost_efficiency: int


@dataclass(frozen=True)
class ModelProfile:
    """Static description of one provider tier."""

    name: str
    model_id: str
    input_cost_per_million: float
    output_cost_per_million: float
    capabilities: ModelCapabilities
    best_for: tuple[str, ...] = ()
    limitations: tuple[str, ...] = ()

    def cost_for(self, input_tokens: int, output_tokens: int) -> float:
        """Price a request of the given size in USD."""
        return (
            (input_tokens / 1_000_000) * self.input_cost_per_million
            + (output_tokens / 1_000_000) * self.output_cost_per_million
        )


# Model registry, ordered cheapest first
MODEL_REGISTRY: dict[str, ModelProfile] = {
    "claude-haiku-4-5-20251001": ModelProfile(
        name="Claude Haiku 4.5",
        model_id="claude-haiku-4-5-20251001",
        input_cost_per_million=1.00,
        output_cost_per_million=5.00,
        capabilities=ModelCapabilities(
            max_context=200_000,
            reasoning=6,
            creativity=5,
            speed=10,
            cost_efficiency=10,
        ),
        best_for=(
            "simple_analysis",
            "basic_content_generation",
            "data_processing",
            "quick_responses",
            "high_volume_tasks",
        ),
        limitations=(
            "limited_creative_depth",
            "basic_reasoning_only",
            "shorter_context_handling",
        ),
    ),
    "claude-sonnet-4-5-20250929": ModelProfile(
        name="Claude Sonnet 4.5",
        model_id="claude-sonnet-4-5-20250929",
        input_cost_per_million=3.00,
        output_cost_per_million=15.00,
        capabilities=ModelCapabilities(
            max_context=200_000,
            reasoning=8,
            creativity=8,
            speed=7,
            cost_efficiency=7,
        ),
        best_for=(
            "story_generation",
            "content_improvement",
            "balanced_tasks",
            "general_writing",
            "moderate_complexity",
        ),
        limitations=(
            "higher_cost_than_haiku",
            "slower_than_haiku",
        ),
    ),
    "claude-opus-4-5-20251101": ModelProfile(
        name="Claude Opus 4.5",
        model_id="claude-opus-4-5-20251101",
        input_cost_per_million=5.00,
        output_cost_per_million=25.00,
        capabilities=ModelCapabilities(
            max_context=200_000,
            reasoning=10,
            creativity=10,
            speed=5,
            cost_efficiency=4,
        ),
        best_for=(
            "complex_story_foundations",
            "high_quality_content",
            "creative_writing",
            "complex_reasoning",
            "premium_quality_tasks",
        ),
        limitations=(
            "highest_cost",
            "slower_response_time",
            "overkill_for_simple_tasks",
        ),
    ),
}


def get_model_profile(model_id: str) -> ModelProfile | None:
    """Look up a registered model tier by provider identifier."""
    return MODEL_REGISTRY.get(model_id)


def calculate_cost(model_id: str, input_tokens: int, output_tokens: int) -> float:
    """Price a request; unknown models are priced as the balanced tier."""
    profile = MODEL_REGISTRY.get(model_id) or MODEL_REGISTRY["claude-sonnet-4-5-20250929"]
    return profile.cost_for(input_tokens, output_tokens)


class TokenEstimate(BaseModel):
    """Estimated token counts for a request."""

    model_config = ConfigDict(frozen=True)

    input: int = Field(default=0, ge=0)
    output: int = Field(default=0, ge=0)

    @property
    def total(self) -> int:
        return self.input + self.output


class UsageStats(BaseModel):
    """Token usage reported by the provider."""

    model_config = ConfigDict(frozen=True)

    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def of(cls, input_tokens: int, output_tokens: int) -> "UsageStats":
        return cls(
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_tokens=input_tokens + output_tokens,
        )


@dataclass(frozen=True)
class TaskProfile:
    """Per-operation input to the model selector. Never persisted."""

    type: OperationType
    complexity: Complexity
    creativity_required: int
    reasoning_required: int
    speed_required: int
    quality_threshold: float
    estimated_tokens: TokenEstimate
    max_budget: float | None = None


# Operation parameters, one variant per operation type

_WHITESPACE = re.compile(r"\s+")
_EXCERPT_LENGTH = 100


def normalize_excerpt(text: str | None, limit: int = _EXCERPT_LENGTH) -> str:
    """Lowercase, collapse whitespace and truncate text for fingerprinting."""
    if not text:
        return ""
    return _WHITESPACE.sub(" ", text.strip().lower())[:limit]


class _BaseParams(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    max_tokens: int | None = Field(default=None, gt=0)
    temperature: float | None = Field(default=None, ge=0.0, le=1.0)

    def to_prompt(self) -> str:
        raise NotImplementedError

    def cache_excerpt(self) -> str:
        raise NotImplementedError


class FoundationParams(_BaseParams):
    """Generate a story foundation from a premise."""

    kind: Literal["foundation"] = "foundation"
    premise: str = Field(min_length=1)
    genre: str | None = None
    style: str | None = None

    def to_prompt(self) -> str:
        lines = [f"Create a story foundation for the following premise:\n{self.premise}"]
        if self.genre:
            lines.append(f"Genre: {self.genre}")
        if self.style:
            lines.append(f"Style: {self.style}")
        return "\n".join(lines)

    def cache_excerpt(self) -> str:
        return "|".join([
            normalize_excerpt(self.premise),
            normalize_excerpt(self.genre),
            normalize_excerpt(self.style),
        ])


class ChapterParams(_BaseParams):
    """Generate one chapter of an existing story."""

    kind: Literal["chapter"] = "chapter"
    foundation: str = Field(min_length=1)
    chapter_number: int = Field(ge=1)
    outline: str | None = None
    previous_summary: str | None = None

    def to_prompt(self) -> str:
        lines = [
            f"Story foundation:\n{self.foundation}",
            f"Write chapter {self.chapter_number}.",
        ]
        if self.outline:
            lines.append(f"Chapter outline:\n{self.outline}")
        if self.previous_summary:
            lines.append(f"Previously:\n{self.previous_summary}")
        return "\n\n".join(lines)

    def cache_excerpt(self) -> str:
        return "|".join([
            normalize_excerpt(self.foundation),
            str(self.chapter_number),
            normalize_excerpt(self.outline),
        ])


class ImprovementParams(_BaseParams):
    """Revise existing content."""

    kind: Literal["improvement"] = "improvement"
    content: str = Field(min_length=1)
    instructions: str | None = None

    def to_prompt(self) -> str:
        instructions = self.instructions or "Improve clarity, pacing and style."
        return f"{instructions}\n\nContent:\n{self.content}"

    def cache_excerpt(self) -> str:
        return "|".join([
            normalize_excerpt(self.content),
            normalize_excerpt(self.instructions),
        ])


class AnalysisParams(_BaseParams):
    """Analyze existing content."""

    kind: Literal["analysis"] = "analysis"
    content: str = Field(min_length=1)
    focus: str | None = None

    def to_prompt(self) -> str:
        focus = f" Focus on {self.focus}." if self.focus else ""
        return f"Analyze the following content and respond in JSON.{focus}\n\n{self.content}"

    def cache_excerpt(self) -> str:
        return "|".join([
            normalize_excerpt(self.content),
            normalize_excerpt(self.focus),
        ])


class GeneralParams(_BaseParams):
    """Free-form generation."""

    kind: Literal["general"] = "general"
    prompt: str = Field(min_length=1)
    system_prompt: str | None = None

    def to_prompt(self) -> str:
        if self.system_prompt:
            return f"{self.system_prompt}\n\n{self.prompt}"
        return self.prompt

    def cache_excerpt(self) -> str:
        return "|".join([
            normalize_excerpt(self.prompt),
            normalize_excerpt(self.system_prompt),
        ])


OperationParams = Annotated[
    Union[FoundationParams, ChapterParams, ImprovementParams, AnalysisParams, GeneralParams],
    Field(discriminator="kind"),
]

_params_adapter: TypeAdapter[Any] = TypeAdapter(OperationParams)


def parse_params(operation_type: OperationType | str, params: dict[str, Any]) -> _BaseParams:
    """
    Validate a raw parameter mapping into the variant for its operation type.

    Raises:
        OperationValidationError: if the type is unknown or the parameters are
            malformed or empty
    """
    try:
        op_type = OperationType(operation_type)
    except ValueError as e:
        raise OperationValidationError(f"Unknown operation type: {operation_type}") from e

    if not isinstance(params, dict):
        raise OperationValidationError("Operation parameters must be a mapping")

    data = {**params, "kind": op_type.value}
    try:
        return _params_adapter.validate_python(data)
    except ValidationError as e:
        raise OperationValidationError(
            f"Invalid parameters for {op_type.value} operation: {e.error_count()} error(s)"
        ) from e


def generate_operation_id() -> str:
    """Generate a unique operation id."""
    return f"op_{uuid.uuid4().hex[:16]}"


class Operation(BaseModel):
    """A unit of schedulable generation work. Immutable once built."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=generate_operation_id, min_length=1)
    type: OperationType
    params: OperationParams
    priority: int = Field(default=5, ge=1, le=10)
    urgency: Urgency = Urgency.NORMAL
    caller_id: str = Field(min_length=1)
    cost_ceiling: float | None = Field(default=None, gt=0)
    deadline: datetime | None = None
    dependencies: frozenset[str] = Field(default_factory=frozenset)
    model_override: str | None = None
    estimated_tokens: TokenEstimate | None = None
    template_id: str | None = None
    batch_id: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _tag_params(cls, data: Any) -> Any:
        if isinstance(data, dict):
            params = data.get("params")
            op_type = data.get("type")
            if isinstance(params, dict) and "kind" not in params and op_type is not None:
                kind = op_type.value if isinstance(op_type, OperationType) else op_type
                data = {**data, "params": {**params, "kind": kind}}
        return data

    @model_validator(mode="after")
    def _check_params_kind(self) -> "Operation":
        if self.params.kind != self.type.value:
            raise ValueError(
                f"Parameters of kind '{self.params.kind}' do not match "
                f"operation type '{self.type.value}'"
            )
        if self.id in self.dependencies:
            raise ValueError("An operation cannot depend on itself")
        return self

    @property
    def is_immediate(self) -> bool:
        """Whether the operation qualifies for the high-priority path."""
        return self.urgency == Urgency.IMMEDIATE or self.priority >= 8


class GenerationResult(BaseModel):
    """Response returned by a provider call."""

    model_config = ConfigDict(frozen=True)

    content: str
    usage: UsageStats = Field(default_factory=UsageStats)
    cost: float = 0.0
    model_id: str
    latency_ms: float = 0.0


class OutcomeStatus(str, Enum):
    """Terminal states of a scheduled operation."""

    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class OperationOutcome:
    """Terminal result of an operation, kept in the scheduler's results map."""

    operation_id: str
    status: OutcomeStatus
    model: str | None = None
    content: str | None = None
    usage: UsageStats = field(default_factory=UsageStats)
    cost: float = 0.0
    cached: bool = False
    error: str | None = None
    error_type: str | None = None
    processing_time_ms: float = 0.0
    wait_time_ms: float = 0.0
    completed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def success(self) -> bool:
        return self.status == OutcomeStatus.COMPLETED

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation_id": self.operation_id,
            "status": self.status.value,
            "success": self.success,
            "model": self.model,
            "usage": self.usage.model_dump(),
            "cost": self.cost,
            "cached": self.cached,
            "error": self.error,
            "processing_time_ms": round(self.processing_time_ms, 2),
            "wait_time_ms": round(self.wait_time_ms, 2),
            "completed_at": self.completed_at.isoformat(),
        }
