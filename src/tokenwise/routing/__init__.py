"""
Model selection module.

Scores each model tier against a task profile and recommends the best fit
within budget.
"""

from tokenwise.routing.selector import (
    ModelSelector,
    ModelRecommendation,
    ModelAlternative,
    BatchRecommendation,
    build_task_profile,
    get_model_selector,
)

__all__ = [
    "ModelSelector",
    "ModelRecommendation",
    "ModelAlternative",
    "BatchRecommendation",
    "build_task_profile",
    "get_model_selector",
]
