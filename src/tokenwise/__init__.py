"""
tokenwise - cost-aware generation for Claude workloads

Picks the cheapest model that meets each request's quality bar, serves
repeated requests from a response cache, schedules work under concurrency
and budget limits, and tracks spend per caller with budget alerts.
"""

__version__ = "0.1.0"

from tokenwise.core.hub import (
    OptimizationHub,
    OptimizationOptions,
    OptimizationRequest,
    OptimizationResult,
)
from tokenwise.core.models import (
    Operation,
    OperationOutcome,
    OperationType,
    Urgency,
)

__all__ = [
    "OptimizationHub",
    "OptimizationOptions",
    "OptimizationRequest",
    "OptimizationResult",
    "Operation",
    "OperationOutcome",
    "OperationType",
    "Urgency",
]
