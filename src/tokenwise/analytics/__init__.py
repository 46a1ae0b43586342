"""
Analytics module for tokenwise.

Provides per-caller cost tracking, monthly budgets with alerts, and
optimization suggestions.
"""

from tokenwise.analytics.cost_tracker import (
    CostAnalytics,
    CostEntry,
    CostReport,
    Budget,
    BudgetAlert,
    BudgetStatus,
    OptimizationSuggestion,
)

__all__ = [
    "CostAnalytics",
    "CostEntry",
    "CostReport",
    "Budget",
    "BudgetAlert",
    "BudgetStatus",
    "OptimizationSuggestion",
]
