"""
Quality assessment for generated content.

Provides fast, heuristic scoring that doesn't require additional provider
calls. The assessor is a strategy so deployments can plug in their own.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod

from tokenwise.core.models import OperationType

# Minimum content length that earns the length bonus, per operation type
LENGTH_EXPECTATIONS: dict[OperationType, int] = {
    OperationType.FOUNDATION: 500,
    OperationType.CHAPTER: 1000,
}

DIALOGUE_INDICATORS = ("dialogue", '"')
NARRATIVE_INDICATORS = ("character", "plot")


class QualityAssessor(ABC):
    """Scores generated content on a 1-10 scale."""

    @abstractmethod
    def assess(self, content: str | None, operation_type: OperationType | str) -> float:
        """
        Score content produced for an operation.

        Args:
            content: Generated text
            operation_type: Type of the operation that produced it

        Returns:
            Quality score; 0 for empty content, otherwise within [1, 10]
        """
        ...


class HeuristicQualityAssessor(QualityAssessor):
    """
    Structure and richness heuristics.

    Example:
        assessor = HeuristicQualityAssessor()
        score = assessor.assess('{"themes": ["loss"]}', "analysis")
    """

    BASE_SCORE = 5.0

    def assess(self, content: str | None, operation_type: OperationType | str) -> float:
        if not content:
            return 0.0

        score = self.BASE_SCORE

        try:
            op_type = OperationType(operation_type)
        except ValueError:
            op_type = None

        expected_length = LENGTH_EXPECTATIONS.get(op_type) if op_type else None
        if expected_length is not None and len(content) > expected_length:
            score += 1

        if "{" in content and "}" in content and _is_json(content):
            score += 1

        if any(token in content for token in DIALOGUE_INDICATORS):
            score += 0.5
        if any(token in content for token in NARRATIVE_INDICATORS):
            score += 0.5

        return min(10.0, max(1.0, score))


def _is_json(content: str) -> bool:
    try:
        json.loads(content)
    except ValueError:
        return False
    return True
