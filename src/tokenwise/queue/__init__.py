"""
Batch scheduling module.

Admits queued operations under priority, dependency, concurrency and budget
constraints.
"""

from tokenwise.queue.scheduler import (
    BatchScheduler,
    DispatchPlan,
    OperationState,
    QueueLane,
    SchedulerStats,
    DuplicateOperationError,
    DependencyFailedError,
    SchedulerTimeoutError,
)

__all__ = [
    "BatchScheduler",
    "DispatchPlan",
    "OperationState",
    "QueueLane",
    "SchedulerStats",
    "DuplicateOperationError",
    "DependencyFailedError",
    "SchedulerTimeoutError",
]
