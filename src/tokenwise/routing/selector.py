"""
Multi-criteria model selection.

Scores every registered model tier against a task profile and recommends the
best one, with explainable reasoning, ranked alternatives and optimization
hints. Selection is deterministic: recorded performance is reported by
get_model_analytics() but never feeds back into scoring.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import structlog

from tokenwise.core.models import (
    MODEL_REGISTRY,
    Complexity,
    ModelProfile,
    OperationType,
    TaskProfile,
    TokenEstimate,
    Urgency,
)

logger = structlog.get_logger()


# Scoring weights
COST_WEIGHT = 0.30
QUALITY_WEIGHT = 0.40
SPEED_WEIGHT = 0.15
COMPATIBILITY_WEIGHT = 0.15

# Capability tags each task type expects to find in a model's best_for list
TASK_CAPABILITIES: dict[OperationType, tuple[str, ...]] = {
    OperationType.FOUNDATION: ("complex_story_foundations", "story_generation", "creative_writing"),
    OperationType.CHAPTER: ("story_generation", "creative_writing", "content_improvement"),
    OperationType.IMPROVEMENT: ("content_improvement", "balanced_tasks", "general_writing"),
    OperationType.ANALYSIS: ("simple_analysis", "data_processing", "quick_responses"),
    OperationType.GENERAL: ("balanced_tasks", "general_writing", "quick_responses"),
}

DEFAULT_TOKEN_ESTIMATES: dict[OperationType, TokenEstimate] = {
    OperationType.FOUNDATION: TokenEstimate(input=400, output=2000),
    OperationType.CHAPTER: TokenEstimate(input=800, output=3000),
    OperationType.IMPROVEMENT: TokenEstimate(input=600, output=800),
    OperationType.ANALYSIS: TokenEstimate(input=500, output=300),
    OperationType.GENERAL: TokenEstimate(input=200, output=500),
}

CREATIVITY_REQUIRED: dict[OperationType, int] = {
    OperationType.FOUNDATION: 9,
    OperationType.CHAPTER: 8,
    OperationType.IMPROVEMENT: 6,
    OperationType.ANALYSIS: 3,
    OperationType.GENERAL: 5,
}

REASONING_REQUIRED: dict[OperationType, int] = {
    OperationType.FOUNDATION: 8,
    OperationType.CHAPTER: 7,
    OperationType.IMPROVEMENT: 8,
    OperationType.ANALYSIS: 9,
    OperationType.GENERAL: 5,
}

# Share of input tokens an optimized prompt template keeps
TEMPLATE_INPUT_FACTOR = 0.75

HISTORY_LIMIT = 100


def is_optimized_template(template_id: str | None) -> bool:
    return bool(template_id) and template_id.startswith("optimized_")


def build_task_profile(
    operation_type: OperationType | str,
    urgency: Urgency | str = Urgency.NORMAL,
    budget_cap: float | None = None,
    quality_threshold: float = 7.0,
    estimated_tokens: TokenEstimate | None = None,
    template_id: str | None = None,
) -> TaskProfile:
    """
    Derive a task profile for an operation.

    Args:
        operation_type: Operation type
        urgency: Operation urgency
        budget_cap: Optional per-operation budget in USD
        quality_threshold: Minimum acceptable quality (1-10)
        estimated_tokens: Caller-supplied token estimate; defaults per type
        template_id: Prompt template; optimized templates shrink the input estimate

    Returns:
        TaskProfile for the selector
    """
    op_type = OperationType(operation_type)
    urgency = Urgency(urgency)

    if op_type == OperationType.ANALYSIS:
        complexity = Complexity.SIMPLE
    elif op_type == OperationType.FOUNDATION:
        complexity = Complexity.COMPLEX
    else:
        complexity = Complexity.MEDIUM

    tokens = estimated_tokens or DEFAULT_TOKEN_ESTIMATES[op_type]
    if is_optimized_template(template_id):
        tokens = TokenEstimate(
            input=int(tokens.input * TEMPLATE_INPUT_FACTOR),
            output=tokens.output,
        )

    speed = 9 if urgency == Urgency.IMMEDIATE else 5

    return TaskProfile(
        type=op_type,
        complexity=complexity,
        creativity_required=CREATIVITY_REQUIRED[op_type],
        reasoning_required=REASONING_REQUIRED[op_type],
        speed_required=speed,
        quality_threshold=quality_threshold,
        estimated_tokens=tokens,
        max_budget=budget_cap,
    )


@dataclass
class ModelAlternative:
    """A runner-up tier and how it differs from the selection."""

    model: str
    name: str
    score: float
    cost: float
    tradeoffs: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "model": self.model,
            "name": self.name,
            "score": round(self.score, 3),
            "cost": self.cost,
            "tradeoffs": self.tradeoffs,
        }


@dataclass
class ModelRecommendation:
    """Result of model selection."""

    selected_model: str
    confidence: float
    expected_cost: float
    expected_quality: float
    score: float
    reasoning: list[str] = field(default_factory=list)
    alternatives: list[ModelAlternative] = field(default_factory=list)
    optimizations: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "selected_model": self.selected_model,
            "confidence": round(self.confidence, 3),
            "expected_cost": self.expected_cost,
            "expected_quality": round(self.expected_quality, 2),
            "score": round(self.score, 3),
            "reasoning": self.reasoning,
            "alternatives": [a.to_dict() for a in self.alternatives],
            "optimizations": self.optimizations,
        }


@dataclass
class BatchRecommendation:
    """Single tier chosen for a whole batch of tasks."""

    model: str
    estimated_cost: float
    feasible: bool
    recommendations: list[str] = field(default_factory=list)


@dataclass
class PerformanceRecord:
    model: str
    task: str
    actual_cost: float
    quality_score: float
    response_time_ms: float
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class ModelSelector:
    """
    Weighted multi-criteria selector over the model registry.

    Scores combine cost fitness (30%), quality fitness (40%), speed fitness
    (15%) and task compatibility (15%), each on a 0-10 scale.
    """

    def __init__(self, models: dict[str, ModelProfile] | None = None):
        self._models = dict(models or MODEL_REGISTRY)
        if not self._models:
            raise ValueError("ModelSelector requires at least one model profile")
        self._history: dict[tuple[str, str], deque[PerformanceRecord]] = {}

    @property
    def models(self) -> dict[str, ModelProfile]:
        return self._models

    def cheapest_model(self) -> ModelProfile:
        """The tier with the lowest combined per-token price."""
        return min(
            self._models.values(),
            key=lambda m: m.input_cost_per_million + m.output_cost_per_million,
        )

    @staticmethod
    def expected_cost(model: ModelProfile, tokens: TokenEstimate) -> float:
        return model.cost_for(tokens.input, tokens.output)

    def score_model(self, model: ModelProfile, task: TaskProfile) -> float:
        """Weighted score of a model for a task on a 0-10 scale."""
        caps = model.capabilities

        expected = self.expected_cost(model, task.estimated_tokens)
        if task.max_budget:
            cost_score = max(0.0, 10 - (expected / task.max_budget) * 10)
        else:
            cost_score = float(caps.cost_efficiency)

        creativity = (
            min(10, caps.creativity + 2)
            if caps.creativity >= task.creativity_required
            else caps.creativity - 2
        )
        reasoning = (
            min(10, caps.reasoning + 2)
            if caps.reasoning >= task.reasoning_required
            else caps.reasoning - 2
        )
        quality_score = (creativity + reasoning) / 2

        if caps.speed >= task.speed_required:
            speed_score = float(caps.speed)
        else:
            speed_score = float(max(1, caps.speed - (task.speed_required - caps.speed)))

        compatibility = self.task_compatibility(model, task)

        return (
            cost_score * COST_WEIGHT
            + quality_score * QUALITY_WEIGHT
            + speed_score * SPEED_WEIGHT
            + compatibility * COMPATIBILITY_WEIGHT
        )

    @staticmethod
    def task_compatibility(model: ModelProfile, task: TaskProfile) -> float:
        """Share of the task's expected capability tags the model is best for, x10."""
        wanted = TASK_CAPABILITIES.get(task.type, ())
        if not wanted:
            return 0.0
        matches = sum(1 for tag in wanted if tag in model.best_for)
        return matches / len(wanted) * 10

    @staticmethod
    def estimate_quality(model: ModelProfile, task: TaskProfile) -> float:
        """Expected output quality (0-10) of a model on a task."""
        caps = model.capabilities
        base = (caps.creativity + caps.reasoning) / 2
        creativity_match = min(1.0, caps.creativity / max(1, task.creativity_required))
        reasoning_match = min(1.0, caps.reasoning / max(1, task.reasoning_required))
        return min(10.0, base * (creativity_match + reasoning_match) / 2)

    def rank(self, task: TaskProfile) -> list[tuple[ModelProfile, float, float]]:
        """
        Rank all tiers for a task.

        Returns:
            (profile, score, expected cost) tuples, best first. Ties go to the
            cheaper tier, then to registry order.
        """
        scored = [
            (index, model, self.score_model(model, task), self.expected_cost(model, task.estimated_tokens))
            for index, model in enumerate(self._models.values())
        ]
        scored.sort(key=lambda item: (-item[2], item[3], item[0]))
        return [(model, score, cost) for _, model, score, cost in scored]

    def select_optimal_model(self, task: TaskProfile) -> ModelRecommendation:
        """
        Recommend the best model tier for a task.

        Args:
            task: Task profile

        Returns:
            ModelRecommendation with the winner, confidence and alternatives
        """
        ranked = self.rank(task)
        best, best_score, best_cost = ranked[0]

        if len(ranked) > 1:
            margin = best_score - ranked[1][1]
            confidence = min(1.0, 0.5 + margin / 10)
        else:
            confidence = 1.0

        alternatives = [
            ModelAlternative(
                model=model.model_id,
                name=model.name,
                score=score,
                cost=cost,
                tradeoffs=self._tradeoffs(model, cost, best, best_cost),
            )
            for model, score, cost in ranked[1:3]
        ]

        recommendation = ModelRecommendation(
            selected_model=best.model_id,
            confidence=confidence,
            expected_cost=best_cost,
            expected_quality=self.estimate_quality(best, task),
            score=best_score,
            reasoning=self._reasoning(best, task, best_score, best_cost),
            alternatives=alternatives,
            optimizations=self._optimizations(best, task, best_cost),
        )

        logger.debug(
            "Model selected",
            model=best.model_id,
            task_type=task.type.value,
            score=round(best_score, 3),
            confidence=round(confidence, 3),
            expected_cost=best_cost,
        )
        return recommendation

    def _reasoning(
        self,
        model: ModelProfile,
        task: TaskProfile,
        score: float,
        expected_cost: float,
    ) -> list[str]:
        reasoning = [
            f"Selected {model.name} with score {score:.1f}/10",
            f"Expected cost: ${expected_cost:.4f} for ~{task.estimated_tokens.total} tokens",
        ]

        caps = model.capabilities
        if caps.creativity >= task.creativity_required and caps.reasoning >= task.reasoning_required:
            reasoning.append(f"Meets creativity and reasoning requirements for {task.type.value} tasks")
        elif caps.creativity < task.creativity_required:
            reasoning.append(
                f"Creativity {caps.creativity}/10 is below the {task.creativity_required}/10 "
                "this task asks for; chosen on cost and speed"
            )
        else:
            reasoning.append(
                f"Reasoning {caps.reasoning}/10 is below the {task.reasoning_required}/10 "
                "this task asks for; chosen on cost and speed"
            )

        if task.max_budget and expected_cost > task.max_budget * 0.8:
            reasoning.append("Near budget limit: consider simplifying the task or increasing the budget")

        if task.complexity == Complexity.SIMPLE and caps.reasoning > 8:
            reasoning.append("Consider a more cost-efficient model for this simple task")

        return reasoning

    @staticmethod
    def _tradeoffs(
        candidate: ModelProfile,
        candidate_cost: float,
        selected: ModelProfile,
        selected_cost: float,
    ) -> list[str]:
        tradeoffs: list[str] = []
        if selected_cost > 0:
            delta = (candidate_cost - selected_cost) / selected_cost * 100
            if delta < 0:
                tradeoffs.append(f"{abs(delta):.0f}% cost savings vs selected model")
            else:
                tradeoffs.append(f"{delta:.0f}% cost increase vs selected model")

        if candidate.capabilities.creativity < selected.capabilities.creativity:
            tradeoffs.append("Lower creative capabilities")
        if candidate.capabilities.reasoning < selected.capabilities.reasoning:
            tradeoffs.append("Lower reasoning capabilities")
        if candidate.capabilities.speed > selected.capabilities.speed:
            tradeoffs.append("Faster response time")
        return tradeoffs

    @staticmethod
    def _optimizations(model: ModelProfile, task: TaskProfile, expected_cost: float) -> list[str]:
        optimizations: list[str] = []
        if task.estimated_tokens.input > 1000:
            optimizations.append("Consider using optimized prompt templates to reduce input tokens")
        if task.complexity == Complexity.SIMPLE and model.capabilities.reasoning > 7:
            optimizations.append("Task might be suitable for a more cost-efficient model")
        if task.type in (OperationType.ANALYSIS, OperationType.IMPROVEMENT):
            optimizations.append("Consider batching similar tasks for better cost efficiency")
        optimizations.append("Enable caching for repeated similar requests")
        if expected_cost > 0.01:
            optimizations.append("For high-cost operations, consider progressive generation or chunking")
        return optimizations

    def select_batch_model(self, tasks: list[TaskProfile], total_budget: float) -> BatchRecommendation:
        """
        Choose one tier for a batch of tasks.

        Picks the highest average expected quality among tiers whose total
        expected cost fits the budget. When none fits, falls back to the
        cheapest tier with ``feasible=False``.
        """
        totals = TokenEstimate(
            input=sum(t.estimated_tokens.input for t in tasks),
            output=sum(t.estimated_tokens.output for t in tasks),
        )

        options: list[tuple[ModelProfile, float, float]] = []
        for model in self._models.values():
            cost = self.expected_cost(model, totals)
            if cost > total_budget:
                continue
            quality = (
                sum(self.estimate_quality(model, t) for t in tasks) / len(tasks) if tasks else 0.0
            )
            options.append((model, cost, quality))

        if not options:
            cheapest = self.cheapest_model()
            return BatchRecommendation(
                model=cheapest.model_id,
                estimated_cost=self.expected_cost(cheapest, totals),
                feasible=False,
                recommendations=[
                    "No model fits within budget",
                    "Consider increasing budget or reducing task complexity",
                    "Split batch into smaller chunks",
                ],
            )

        options.sort(key=lambda option: (-option[2], option[1]))
        best, best_cost, _ = options[0]

        recommendations: list[str] = []
        if best_cost > total_budget * 0.9:
            recommendations.append("Near budget limit: monitor spending closely")
        if len(options) > 1:
            savings = best_cost - options[1][1]
            if savings > 0:
                recommendations.append(f"Alternative: save ${savings:.4f} with a slight quality trade-off")

        return BatchRecommendation(
            model=best.model_id,
            estimated_cost=best_cost,
            feasible=True,
            recommendations=recommendations,
        )

    def record_performance(
        self,
        model: str,
        task: str,
        actual_cost: float,
        quality_score: float,
        response_time_ms: float,
    ) -> None:
        """Record an observed outcome. Kept for analytics only."""
        key = (model, str(task))
        history = self._history.get(key)
        if history is None:
            history = self._history[key] = deque(maxlen=HISTORY_LIMIT)
        history.append(
            PerformanceRecord(
                model=model,
                task=str(task),
                actual_cost=actual_cost,
                quality_score=quality_score,
                response_time_ms=response_time_ms,
            )
        )

    def get_model_analytics(
        self,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> dict[str, Any]:
        """
        Summarize recorded performance per model.

        Returns:
            Dict with model_usage, average_costs, quality_scores and
            recommendations
        """
        records: dict[str, list[PerformanceRecord]] = {}
        for (model, _), history in self._history.items():
            for record in history:
                if start and record.timestamp < start:
                    continue
                if end and record.timestamp > end:
                    continue
                records.setdefault(model, []).append(record)

        usage = {model: len(rs) for model, rs in records.items()}
        average_costs = {model: sum(r.actual_cost for r in rs) / len(rs) for model, rs in records.items()}
        quality = {model: sum(r.quality_score for r in rs) / len(rs) for model, rs in records.items()}

        recommendations: list[str] = []
        if usage:
            most_used = max(usage.items(), key=lambda item: item[1])
            recommendations.append(f"Most used model: {most_used[0]} ({most_used[1]} operations)")
            if len(average_costs) > 1:
                cheapest = min(average_costs.items(), key=lambda item: item[1])
                recommendations.append(f"Most cost-efficient: {cheapest[0]} (${cheapest[1]:.4f} avg)")

        return {
            "model_usage": usage,
            "average_costs": average_costs,
            "quality_scores": quality,
            "recommendations": recommendations,
        }


# Global model selector
_selector: ModelSelector | None = None


def get_model_selector() -> ModelSelector:
    """Get the global model selector."""
    global _selector
    if _selector is None:
        _selector = ModelSelector()
    return _selector
