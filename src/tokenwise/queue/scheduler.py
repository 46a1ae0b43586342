"""
Priority, dependency and budget aware batch scheduling.

Operations are routed into high, normal and low queues and admitted under a
concurrency limit and a monetary budget ceiling. Estimated costs are reserved
at admission so concurrent admissions can never overspend the ceiling.
"""

from __future__ import annotations

import asyncio
import time
from collections import Counter, OrderedDict
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import structlog

from tokenwise.analytics.cost_tracker import CostAnalytics
from tokenwise.cache.response_cache import ResponseCache
from tokenwise.core.models import (
    MODEL_REGISTRY,
    GenerationResult,
    Operation,
    OperationOutcome,
    OperationValidationError,
    OutcomeStatus,
    TokenEstimate,
    Urgency,
    calculate_cost,
)
from tokenwise.providers.base import BaseProvider
from tokenwise.routing.selector import ModelSelector, build_task_profile
from tokenwise.utils.retry import RetryConfig, retry_async

logger = structlog.get_logger()


class DuplicateOperationError(ValueError):
    """Raised when an operation id is already known to the scheduler."""


class DependencyFailedError(Exception):
    """A dependency of the operation failed or was cancelled."""

    def __init__(self, operation_id: str, dependency_id: str):
        super().__init__(f"Dependency {dependency_id} of operation {operation_id} did not complete")
        self.operation_id = operation_id
        self.dependency_id = dependency_id


class SchedulerTimeoutError(TimeoutError):
    """Raised when waiting for an operation's result times out."""


class QueueLane(str, Enum):
    """Scheduler queues, scanned in declaration order."""

    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"


class OperationState(str, Enum):
    QUEUED = "queued"
    DISPATCHED = "dispatched"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


def route(operation: Operation) -> QueueLane:
    """Pick the queue for an operation."""
    if operation.urgency == Urgency.IMMEDIATE or operation.priority >= 8:
        return QueueLane.HIGH
    if operation.urgency == Urgency.LOW or operation.priority <= 3:
        return QueueLane.LOW
    return QueueLane.NORMAL


def priority_band(priority: int) -> str:
    if priority >= 8:
        return "high"
    if priority >= 5:
        return "medium"
    return "low"


@dataclass(frozen=True)
class DispatchPlan:
    """Model, cost estimate and cache key resolved when an operation is submitted."""

    model: str
    estimated_tokens: TokenEstimate
    estimated_cost: float
    fingerprint: str
    recommended_model: str

    @property
    def optimized_model(self) -> str | None:
        """The selector's choice when an explicit override departed from it."""
        if self.recommended_model != self.model:
            return self.recommended_model
        return None


@dataclass
class ScheduledOperation:
    """Scheduler bookkeeping for one operation."""

    operation: Operation
    plan: DispatchPlan
    lane: QueueLane
    record_cost: bool = True
    state: OperationState = OperationState.QUEUED
    enqueued_at: float = field(default_factory=time.monotonic)
    dispatched_at: float | None = None


@dataclass
class SchedulerStats:
    """Scheduler statistics."""

    queued: dict[str, int] = field(default_factory=dict)
    in_flight: int = 0
    completed: int = 0
    failed: int = 0
    cancelled: int = 0
    cache_hits: int = 0
    priority_distribution: dict[str, int] = field(default_factory=dict)
    model_usage: dict[str, int] = field(default_factory=dict)
    avg_wait_time_ms: float = 0.0
    total_spent: float = 0.0
    reserved: float = 0.0
    cost_budget: float = 0.0

    @property
    def total_queued(self) -> int:
        return sum(self.queued.values())

    @property
    def cache_hit_rate(self) -> float:
        finished = self.completed + self.failed
        if finished == 0:
            return 0.0
        return self.cache_hits / finished

    def to_dict(self) -> dict[str, Any]:
        return {
            "queued": self.queued,
            "total_queued": self.total_queued,
            "in_flight": self.in_flight,
            "completed": self.completed,
            "failed": self.failed,
            "cancelled": self.cancelled,
            "cache_hits": self.cache_hits,
            "cache_hit_rate": round(self.cache_hit_rate, 4),
            "priority_distribution": self.priority_distribution,
            "model_usage": self.model_usage,
            "avg_wait_time_ms": round(self.avg_wait_time_ms, 2),
            "total_spent": round(self.total_spent, 6),
            "reserved": round(self.reserved, 6),
            "cost_budget": self.cost_budget,
        }


class BatchScheduler:
    """
    Admission-controlled scheduler for provider operations.

    Features:
    - Three priority queues, FIFO among equal priorities
    - Dependency gating with failure propagation
    - Concurrency limit and budget ceiling with cost reservations
    - Optional per-caller hard budget limits
    - Cache short-circuit at submission
    - Retries for retryable provider errors

    Example:
        scheduler = BatchScheduler(provider, cost_budget=10.0)
        await scheduler.start()

        op_id = await scheduler.submit(operation)
        outcome = await scheduler.wait_for_result(op_id, timeout=30)

        await scheduler.stop()
    """

    def __init__(
        self,
        provider: BaseProvider,
        selector: ModelSelector | None = None,
        cache: ResponseCache | None = None,
        analytics: CostAnalytics | None = None,
        max_concurrency: int = 5,
        cost_budget: float = 50.0,
        tick_interval: float = 1.0,
        result_timeout: float = 30.0,
        retry_config: RetryConfig | None = None,
        default_max_tokens: int = 4096,
        max_outcomes: int = 10_000,
    ):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        if max_outcomes < 1:
            raise ValueError("max_outcomes must be at least 1")

        self.provider = provider
        self.selector = selector or ModelSelector()
        self.cache = cache
        self.analytics = analytics
        self.max_concurrency = max_concurrency
        self.cost_budget = cost_budget
        self.tick_interval = tick_interval
        self.result_timeout = result_timeout
        self.retry_config = retry_config or RetryConfig()
        self.default_max_tokens = default_max_tokens
        self.max_outcomes = max_outcomes

        self._lanes: dict[QueueLane, list[ScheduledOperation]] = {lane: [] for lane in QueueLane}
        self._jobs: dict[str, ScheduledOperation] = {}
        # Terminal outcomes, oldest first; bounded by max_outcomes
        self._outcomes: OrderedDict[str, OperationOutcome] = OrderedDict()
        self._futures: dict[str, asyncio.Future[OperationOutcome]] = {}
        self._reserved: dict[str, float] = {}
        self._caller_reserved: dict[str, float] = {}
        self._in_flight: set[str] = set()
        self._tasks: set[asyncio.Task[OperationOutcome]] = set()
        self._spent = 0.0

        self._priority_counts: Counter[str] = Counter()
        self._model_usage: Counter[str] = Counter()
        self._counts: Counter[str] = Counter()
        self._total_wait_ms = 0.0
        self._dispatched = 0

        self._lock = asyncio.Lock()
        self._running = False
        self._ticker: asyncio.Task[None] | None = None

    # Lifecycle

    async def start(self) -> None:
        """Start the admission ticker."""
        if self._running:
            return
        self._running = True
        self._ticker = asyncio.create_task(self._tick())
        logger.info(
            "Scheduler started",
            max_concurrency=self.max_concurrency,
            cost_budget=self.cost_budget,
        )

    async def stop(self) -> None:
        """Stop the ticker and wait for in-flight operations to finish."""
        self._running = False
        if self._ticker:
            self._ticker.cancel()
            try:
                await self._ticker
            except asyncio.CancelledError:
                pass
            self._ticker = None
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        logger.info("Scheduler stopped", spent=round(self._spent, 6))

    async def _tick(self) -> None:
        while self._running:
            await asyncio.sleep(self.tick_interval)
            await self._admit()

    # Submission

    def _plan(self, operation: Operation) -> DispatchPlan:
        profile = build_task_profile(
            operation.type,
            urgency=operation.urgency,
            budget_cap=operation.cost_ceiling,
            estimated_tokens=operation.estimated_tokens,
            template_id=operation.template_id,
        )
        recommended = self.selector.select_optimal_model(profile).selected_model

        model = operation.model_override or recommended
        if model not in MODEL_REGISTRY:
            raise OperationValidationError(f"Unknown model override: {model}")

        tokens = profile.estimated_tokens
        return DispatchPlan(
            model=model,
            estimated_tokens=tokens,
            estimated_cost=calculate_cost(model, tokens.input, tokens.output),
            fingerprint=ResponseCache.fingerprint(
                operation.type.value,
                model,
                operation.params.cache_excerpt(),
                operation.template_id,
            ),
            recommended_model=recommended,
        )

    def _check_new(self, operation: Operation) -> None:
        if operation.id in self._jobs or operation.id in self._outcomes:
            raise DuplicateOperationError(f"Operation {operation.id} already submitted")

    def _serve_from_cache(self, job: ScheduledOperation) -> OperationOutcome | None:
        if self.cache is None:
            return None
        entry = self.cache.lookup(job.plan.fingerprint)
        if entry is None:
            return None

        op = job.operation
        outcome = OperationOutcome(
            operation_id=op.id,
            status=OutcomeStatus.COMPLETED,
            model=entry.model,
            content=entry.content,
            usage=entry.usage,
            cost=0.0,
            cached=True,
        )
        self._counts["cache_hits"] += 1
        self._resolve(job, outcome, OperationState.COMPLETED)
        self._record(job, outcome)
        logger.info("Operation served from cache", operation_id=op.id, model=entry.model)
        return outcome

    def _register(self, operation: Operation, record_cost: bool) -> ScheduledOperation:
        self._check_new(operation)
        job = ScheduledOperation(
            operation=operation,
            plan=self._plan(operation),
            lane=route(operation),
            record_cost=record_cost,
        )
        self._jobs[operation.id] = job
        self._futures[operation.id] = asyncio.get_running_loop().create_future()
        self._priority_counts[priority_band(operation.priority)] += 1
        return job

    def _enqueue(self, job: ScheduledOperation) -> None:
        queue = self._lanes[job.lane]
        priority = job.operation.priority
        index = len(queue)
        for i, queued in enumerate(queue):
            if queued.operation.priority < priority:
                index = i
                break
        queue.insert(index, job)
        job.state = OperationState.QUEUED
        logger.info(
            "Operation queued",
            operation_id=job.operation.id,
            lane=job.lane.value,
            priority=priority,
            model=job.plan.model,
            estimated_cost=round(job.plan.estimated_cost, 6),
        )

    async def submit(self, operation: Operation, record_cost: bool = True) -> str:
        """
        Submit an operation for scheduling.

        Args:
            operation: Operation to schedule
            record_cost: Record a cost entry on completion

        Returns:
            The operation id

        Raises:
            DuplicateOperationError: if the id was already submitted
            OperationValidationError: if the model override is unknown
        """
        async with self._lock:
            job = self._register(operation, record_cost)
            if self._serve_from_cache(job) is not None:
                return operation.id
            self._enqueue(job)

        await self._admit()
        return operation.id

    async def execute_now(
        self,
        operation: Operation,
        record_cost: bool = True,
        timeout: float | None = None,
    ) -> OperationOutcome:
        """
        Run an operation immediately, bypassing the queues.

        Dependencies, the concurrency limit and the budget ceiling still
        apply. An operation with a failed dependency fails at once; one that
        cannot run right now falls back to the high-priority queue and is
        awaited there.

        Raises:
            DuplicateOperationError: if the id was already submitted
            SchedulerTimeoutError: if the queued fallback does not finish in time
        """
        async with self._lock:
            job = self._register(operation, record_cost)
            cached = self._serve_from_cache(job)
            if cached is not None:
                return cached

            failed_dep = self._failed_dependency(operation)
            if failed_dep is not None:
                return self._fail_dependency(job, failed_dep)

            held_by = self._held_by(job)
            if held_by is None:
                self._reserve(job)
            else:
                job.lane = QueueLane.HIGH
                self._enqueue(job)
                logger.info(
                    "Immediate operation deferred",
                    operation_id=operation.id,
                    reason=held_by,
                    estimated_cost=round(job.plan.estimated_cost, 6),
                )

        if held_by is None:
            return await self._execute(job)

        await self._admit()
        return await self.wait_for_result(operation.id, timeout)

    # Admission

    def _held_by(self, job: ScheduledOperation) -> str | None:
        """Why an operation cannot be dispatched right now, or None."""
        if not self._dependencies_met(job.operation):
            return "dependencies"
        if len(self._in_flight) >= self.max_concurrency:
            return "concurrency"
        if not self._affordable(job):
            return "budget"
        return None

    def _affordable(self, job: ScheduledOperation) -> bool:
        op = job.operation
        estimate = job.plan.estimated_cost

        if op.cost_ceiling is not None and estimate > op.cost_ceiling:
            return False

        if self._spent + sum(self._reserved.values()) + estimate > self.cost_budget:
            return False

        if self.analytics is not None:
            budget = self.analytics.get_budget(op.caller_id)
            if budget is not None and budget.hard_limit:
                caller_spend = self.analytics.get_current_month_spend(op.caller_id)
                caller_reserved = self._caller_reserved.get(op.caller_id, 0.0)
                if caller_spend + caller_reserved + estimate > budget.monthly_budget:
                    return False

        return True

    def _reserve(self, job: ScheduledOperation) -> None:
        op = job.operation
        self._reserved[op.id] = job.plan.estimated_cost
        self._caller_reserved[op.caller_id] = (
            self._caller_reserved.get(op.caller_id, 0.0) + job.plan.estimated_cost
        )
        self._in_flight.add(op.id)
        job.state = OperationState.DISPATCHED
        job.dispatched_at = time.monotonic()
        self._total_wait_ms += (job.dispatched_at - job.enqueued_at) * 1000
        self._dispatched += 1

    def _release(self, job: ScheduledOperation) -> None:
        op = job.operation
        amount = self._reserved.pop(op.id, 0.0)
        remaining = self._caller_reserved.get(op.caller_id, 0.0) - amount
        if remaining > 1e-12:
            self._caller_reserved[op.caller_id] = remaining
        else:
            self._caller_reserved.pop(op.caller_id, None)
        self._in_flight.discard(op.id)

    def _failed_dependency(self, operation: Operation) -> str | None:
        for dep in sorted(operation.dependencies):
            outcome = self._outcomes.get(dep)
            if outcome is not None and not outcome.success:
                return dep
        return None

    def _dependencies_met(self, operation: Operation) -> bool:
        return all(
            dep in self._outcomes and self._outcomes[dep].success
            for dep in operation.dependencies
        )

    async def _admit(self) -> None:
        """Run one admission cycle."""
        async with self._lock:
            slots = self.max_concurrency - len(self._in_flight)
            rescan = True
            while rescan:
                rescan = False
                for lane in QueueLane:
                    queue = self._lanes[lane]
                    for job in list(queue):
                        op = job.operation

                        failed_dep = self._failed_dependency(op)
                        if failed_dep is not None:
                            queue.remove(job)
                            self._fail_dependency(job, failed_dep)
                            rescan = True
                            continue

                        if slots <= 0 or not self._dependencies_met(op):
                            continue

                        if not self._affordable(job):
                            logger.debug(
                                "Admission blocked by budget",
                                operation_id=op.id,
                                estimated_cost=round(job.plan.estimated_cost, 6),
                            )
                            continue

                        queue.remove(job)
                        self._reserve(job)
                        slots -= 1
                        task = asyncio.create_task(self._execute(job))
                        self._tasks.add(task)
                        task.add_done_callback(self._tasks.discard)

    def _fail_dependency(self, job: ScheduledOperation, dependency_id: str) -> OperationOutcome:
        op = job.operation
        error = DependencyFailedError(op.id, dependency_id)
        outcome = OperationOutcome(
            operation_id=op.id,
            status=OutcomeStatus.FAILED,
            model=job.plan.model,
            error=str(error),
            error_type=type(error).__name__,
        )
        self._resolve(job, outcome, OperationState.FAILED)
        logger.warning("Operation failed on dependency", operation_id=op.id, dependency_id=dependency_id)
        self._record(job, outcome)
        return outcome

    # Dispatch

    async def _generate(self, job: ScheduledOperation) -> GenerationResult:
        params = job.operation.params
        return await self.provider.generate(
            params.to_prompt(),
            job.plan.model,
            max_tokens=params.max_tokens or self.default_max_tokens,
            temperature=params.temperature if params.temperature is not None else 0.7,
        )

    async def _execute(self, job: ScheduledOperation) -> OperationOutcome:
        op = job.operation
        log = logger.bind(operation_id=op.id, caller_id=op.caller_id)
        log.info("Operation dispatched", model=job.plan.model, lane=job.lane.value)

        start = time.perf_counter()
        try:
            result = await retry_async(self._generate, job, config=self.retry_config)
        except asyncio.CancelledError:
            self._release(job)
            self._resolve(
                job,
                OperationOutcome(operation_id=op.id, status=OutcomeStatus.CANCELLED, model=job.plan.model),
                OperationState.CANCELLED,
            )
            raise
        except Exception as e:
            elapsed_ms = (time.perf_counter() - start) * 1000
            log.error(
                "Operation failed",
                model=job.plan.model,
                error=str(e),
                error_type=type(e).__name__,
            )
            outcome = OperationOutcome(
                operation_id=op.id,
                status=OutcomeStatus.FAILED,
                model=job.plan.model,
                error=str(e),
                error_type=type(e).__name__,
                processing_time_ms=elapsed_ms,
                wait_time_ms=self._wait_ms(job),
            )
            async with self._lock:
                self._release(job)
                self._resolve(job, outcome, OperationState.FAILED)
                self._record(job, outcome)
        else:
            elapsed_ms = (time.perf_counter() - start) * 1000
            outcome = OperationOutcome(
                operation_id=op.id,
                status=OutcomeStatus.COMPLETED,
                model=result.model_id,
                content=result.content,
                usage=result.usage,
                cost=result.cost,
                processing_time_ms=elapsed_ms,
                wait_time_ms=self._wait_ms(job),
            )
            async with self._lock:
                self._release(job)
                self._spent += result.cost
                self._model_usage[result.model_id] += 1
                if self.cache is not None:
                    self.cache.store(
                        job.plan.fingerprint,
                        result.content,
                        result.usage,
                        result.model_id,
                        operation_type=op.type.value,
                        caller_id=op.caller_id,
                        cost=result.cost,
                    )
                self._resolve(job, outcome, OperationState.COMPLETED)
                self._record(job, outcome)
            log.info(
                "Operation completed",
                model=result.model_id,
                cost=round(result.cost, 6),
                latency_ms=round(elapsed_ms, 2),
            )

        await self._admit()
        return outcome

    @staticmethod
    def _wait_ms(job: ScheduledOperation) -> float:
        if job.dispatched_at is None:
            return 0.0
        return (job.dispatched_at - job.enqueued_at) * 1000

    def _resolve(self, job: ScheduledOperation, outcome: OperationOutcome, state: OperationState) -> None:
        op_id = job.operation.id
        job.state = state
        self._jobs.pop(op_id, None)
        self._outcomes[op_id] = outcome
        self._trim_outcomes()
        self._counts[state.value] += 1

        future = self._futures.pop(op_id, None)
        if future is not None and not future.done():
            future.set_result(outcome)

    def _trim_outcomes(self) -> None:
        excess = len(self._outcomes) - self.max_outcomes
        if excess <= 0:
            return
        # Outcomes a queued operation still depends on are kept
        needed = {dep for job in self._jobs.values() for dep in job.operation.dependencies}
        evict: list[str] = []
        for op_id in self._outcomes:
            if len(evict) >= excess:
                break
            if op_id not in needed:
                evict.append(op_id)
        for op_id in evict:
            del self._outcomes[op_id]

    def _record(self, job: ScheduledOperation, outcome: OperationOutcome) -> None:
        if self.analytics is None or not job.record_cost:
            return
        op = job.operation
        self.analytics.record_cost(
            caller_id=op.caller_id,
            operation_type=op.type.value,
            model=outcome.model or job.plan.model,
            input_tokens=outcome.usage.input_tokens,
            output_tokens=outcome.usage.output_tokens,
            actual_cost=outcome.cost,
            estimated_cost=job.plan.estimated_cost,
            optimized_model=job.plan.optimized_model if outcome.success else None,
            response_time_ms=outcome.processing_time_ms,
            cache_hit=outcome.cached,
            success=outcome.success,
            error=outcome.error,
            batch_id=op.batch_id,
            template_id=op.template_id,
        )

    # Waiting and cancellation

    async def wait_for_result(self, operation_id: str, timeout: float | None = None) -> OperationOutcome:
        """
        Wait for an operation's terminal outcome.

        Args:
            operation_id: Operation to wait for
            timeout: Seconds to wait; defaults to the configured result timeout

        Raises:
            KeyError: if the operation is unknown
            SchedulerTimeoutError: if the wait times out
        """
        outcome = self._outcomes.get(operation_id)
        if outcome is not None:
            return outcome

        future = self._futures.get(operation_id)
        if future is None:
            raise KeyError(f"Unknown operation: {operation_id}")

        timeout = self.result_timeout if timeout is None else timeout
        try:
            return await asyncio.wait_for(asyncio.shield(future), timeout)
        except asyncio.TimeoutError:
            raise SchedulerTimeoutError(
                f"Timed out after {timeout}s waiting for operation {operation_id}"
            ) from None

    async def wait_for_results(
        self,
        operation_ids: list[str],
        timeout: float | None = None,
    ) -> dict[str, OperationOutcome]:
        """
        Wait for several operations with one overall timeout.

        Raises:
            KeyError: if any operation is unknown
            SchedulerTimeoutError: if they do not all finish in time
        """
        pending: dict[str, asyncio.Future[OperationOutcome]] = {}
        results: dict[str, OperationOutcome] = {}
        for op_id in operation_ids:
            if op_id in self._outcomes:
                results[op_id] = self._outcomes[op_id]
            elif op_id in self._futures:
                pending[op_id] = self._futures[op_id]
            else:
                raise KeyError(f"Unknown operation: {op_id}")

        if pending:
            timeout = self.result_timeout if timeout is None else timeout
            try:
                outcomes = await asyncio.wait_for(
                    asyncio.gather(*(asyncio.shield(f) for f in pending.values())),
                    timeout,
                )
            except asyncio.TimeoutError:
                raise SchedulerTimeoutError(
                    f"Timed out after {timeout}s waiting for {len(pending)} operation(s)"
                ) from None
            results.update(zip(pending.keys(), outcomes))

        return {op_id: results[op_id] for op_id in operation_ids}

    async def cancel(self, operation_id: str) -> bool:
        """
        Cancel a queued operation.

        Returns:
            True if the operation was removed from a queue; False if it is
            unknown, already dispatched or finished
        """
        async with self._lock:
            job = self._jobs.get(operation_id)
            if job is None or job.state != OperationState.QUEUED:
                return False

            self._lanes[job.lane].remove(job)
            self._resolve(
                job,
                OperationOutcome(
                    operation_id=operation_id,
                    status=OutcomeStatus.CANCELLED,
                    model=job.plan.model,
                    error="Operation cancelled",
                ),
                OperationState.CANCELLED,
            )

        logger.info("Operation cancelled", operation_id=operation_id)
        await self._admit()
        return True

    async def record_on_completion(self, operation_id: str) -> bool:
        """
        Make a pending operation record its own cost entry when it finishes.

        Used by callers that stop waiting on an operation they meant to
        record themselves, so its spend still reaches the ledger.

        Returns:
            True if the operation is still pending; False if it is unknown or
            already finished
        """
        async with self._lock:
            job = self._jobs.get(operation_id)
            if job is None:
                return False
            job.record_cost = True
        return True

    # Introspection

    def get_outcome(self, operation_id: str) -> OperationOutcome | None:
        return self._outcomes.get(operation_id)

    def get_state(self, operation_id: str) -> OperationState | None:
        job = self._jobs.get(operation_id)
        if job is not None:
            return job.state
        outcome = self._outcomes.get(operation_id)
        if outcome is None:
            return None
        return OperationState(outcome.status.value)

    def get_plan(self, operation_id: str) -> DispatchPlan | None:
        job = self._jobs.get(operation_id)
        return job.plan if job else None

    def queued_ids(self, lane: QueueLane) -> list[str]:
        """Ids waiting in a queue, in admission order."""
        return [job.operation.id for job in self._lanes[lane]]

    def get_stats(self) -> SchedulerStats:
        """Get scheduler statistics."""
        return SchedulerStats(
            queued={lane.value: len(queue) for lane, queue in self._lanes.items()},
            in_flight=len(self._in_flight),
            completed=self._counts["completed"],
            failed=self._counts["failed"],
            cancelled=self._counts["cancelled"],
            cache_hits=self._counts["cache_hits"],
            priority_distribution={band: self._priority_counts[band] for band in ("high", "medium", "low")},
            model_usage=dict(self._model_usage),
            avg_wait_time_ms=self._total_wait_ms / self._dispatched if self._dispatched else 0.0,
            total_spent=self._spent,
            reserved=sum(self._reserved.values()),
            cost_budget=self.cost_budget,
        )

    def get_budget_status(self) -> dict[str, float]:
        reserved = sum(self._reserved.values())
        return {
            "cost_budget": self.cost_budget,
            "spent": self._spent,
            "reserved": reserved,
            "remaining": self.cost_budget - self._spent - reserved,
            "utilization": (self._spent / self.cost_budget) if self.cost_budget else 0.0,
        }

    async def update_budget(self, cost_budget: float) -> None:
        """Change the budget ceiling and re-run admission."""
        if cost_budget < 0:
            raise ValueError("cost_budget must not be negative")
        async with self._lock:
            self.cost_budget = cost_budget
        logger.info("Scheduler budget updated", cost_budget=cost_budget)
        await self._admit()

    async def clear(self) -> None:
        """
        Cancel every queued operation and drop recorded outcomes and statistics.

        In-flight operations and accumulated spend are left untouched.
        """
        async with self._lock:
            for lane, queue in self._lanes.items():
                for job in list(queue):
                    self._resolve(
                        job,
                        OperationOutcome(
                            operation_id=job.operation.id,
                            status=OutcomeStatus.CANCELLED,
                            model=job.plan.model,
                            error="Scheduler cleared",
                        ),
                        OperationState.CANCELLED,
                    )
                queue.clear()
            self._outcomes.clear()
            self._counts.clear()
            self._priority_counts.clear()
            self._model_usage.clear()
            self._total_wait_ms = 0.0
            self._dispatched = 0
