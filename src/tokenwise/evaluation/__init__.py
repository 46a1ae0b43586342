"""Quality scoring for generated content."""

from tokenwise.evaluation.quality import QualityAssessor, HeuristicQualityAssessor

__all__ = [
    "QualityAssessor",
    "HeuristicQualityAssessor",
]
