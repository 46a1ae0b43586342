"""Core data model and configuration."""

from tokenwise.core.config import Settings, get_settings
from tokenwise.core.models import (
    MODEL_REGISTRY,
    ModelProfile,
    Operation,
    OperationOutcome,
    OperationType,
    OperationValidationError,
    TaskProfile,
    Urgency,
    calculate_cost,
)

__all__ = [
    "Settings",
    "get_settings",
    "MODEL_REGISTRY",
    "ModelProfile",
    "Operation",
    "OperationOutcome",
    "OperationType",
    "OperationValidationError",
    "TaskProfile",
    "Urgency",
    "calculate_cost",
]
