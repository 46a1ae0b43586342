"""
Cost tracking and budget management for provider usage.

Keeps a bounded per-caller ledger of cost entries, derives monthly budget
status from it, raises budget alerts, and turns the recorded history into
optimization suggestions.
"""

from __future__ import annotations

import calendar
import threading
import uuid
from collections import defaultdict, deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable

import structlog
from pydantic import BaseModel, ConfigDict, Field, model_validator

from tokenwise.core.models import calculate_cost

if TYPE_CHECKING:
    from tokenwise.routing.selector import ModelSelector

logger = structlog.get_logger()


class AlertSeverity(str, Enum):
    """Budget alert severity levels, lowest first."""

    WARNING = "warning"
    CRITICAL = "critical"
    EXCEEDED = "exceeded"


class BudgetState(str, Enum):
    """Budget status classification."""

    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"
    EXCEEDED = "exceeded"


_SEVERITY_ORDER = [AlertSeverity.WARNING, AlertSeverity.CRITICAL, AlertSeverity.EXCEEDED]

_ALERT_MESSAGES: dict[AlertSeverity, tuple[str, list[str]]] = {
    AlertSeverity.EXCEEDED: (
        "Monthly budget exceeded",
        [
            "Consider increasing monthly budget",
            "Enable auto-optimization to reduce costs",
            "Review and optimize high-cost operations",
        ],
    ),
    AlertSeverity.CRITICAL: (
        "Approaching budget limit",
        [
            "Monitor spending closely",
            "Consider deferring non-urgent operations",
            "Use more cost-efficient models",
        ],
    ),
    AlertSeverity.WARNING: (
        "Budget warning threshold reached",
        [
            "Review upcoming operations",
            "Consider cost optimization strategies",
            "Monitor daily spending rate",
        ],
    ),
}

BATCHABLE_OPERATIONS = frozenset({"analysis", "improvement"})


class Budget(BaseModel):
    """Per-caller monthly budget configuration."""

    model_config = ConfigDict(frozen=True)

    caller_id: str = Field(min_length=1)
    monthly_budget: float = Field(gt=0, description="Monthly spend limit in USD")
    warning_threshold: float = Field(default=0.8, gt=0, le=1, description="Alert at this share of the limit")
    critical_threshold: float = Field(default=0.95, gt=0, le=1, description="Critical alert threshold")
    alerts_enabled: bool = True
    auto_optimize: bool = True
    hard_limit: bool = Field(default=False, description="Hold admissions that would exceed the budget")

    @model_validator(mode="after")
    def _check_thresholds(self) -> "Budget":
        if self.warning_threshold > self.critical_threshold:
            raise ValueError("warning_threshold must not exceed critical_threshold")
        return self


@dataclass(frozen=True)
class CostEntry:
    """A single immutable ledger row."""

    id: str
    timestamp: datetime
    caller_id: str
    operation_type: str
    model: str
    input_tokens: int
    output_tokens: int
    actual_cost: float
    estimated_cost: float
    optimized_model: str | None = None
    potential_savings: float = 0.0
    quality_score: float | None = None
    response_time_ms: float = 0.0
    cache_hit: bool = False
    success: bool = True
    error: str | None = None
    batch_id: str | None = None
    template_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "caller_id": self.caller_id,
            "operation_type": self.operation_type,
            "model": self.model,
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "actual_cost": f"${self.actual_cost:.6f}",
            "estimated_cost": f"${self.estimated_cost:.6f}",
            "optimized_model": self.optimized_model,
            "potential_savings": f"${self.potential_savings:.6f}",
            "quality_score": self.quality_score,
            "response_time_ms": round(self.response_time_ms, 2),
            "cache_hit": self.cache_hit,
            "success": self.success,
            "error": self.error,
            "batch_id": self.batch_id,
            "template_id": self.template_id,
        }


@dataclass
class BudgetAlert:
    """A budget alert notification."""

    id: str
    caller_id: str
    severity: AlertSeverity
    message: str
    threshold: float
    current_spend: float
    recommendations: list[str] = field(default_factory=list)
    triggered_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "caller_id": self.caller_id,
            "severity": self.severity.value,
            "message": self.message,
            "threshold": self.threshold,
            "current_spend": f"${self.current_spend:.4f}",
            "recommendations": self.recommendations,
            "triggered_at": self.triggered_at.isoformat(),
        }


@dataclass
class BudgetStatus:
    """Snapshot of a caller's position against their monthly budget."""

    caller_id: str
    budget: Budget | None
    current_month_spend: float
    remaining_budget: float
    days_remaining: int
    projected_spend: float
    utilization: float
    status: BudgetState
    recommendations: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "caller_id": self.caller_id,
            "budget": self.budget.model_dump() if self.budget else None,
            "current_month_spend": round(self.current_month_spend, 6),
            "remaining_budget": round(self.remaining_budget, 6),
            "days_remaining": self.days_remaining,
            "projected_spend": round(self.projected_spend, 6),
            "utilization": round(self.utilization, 4),
            "status": self.status.value,
            "recommendations": self.recommendations,
        }


@dataclass
class OptimizationSuggestion:
    """A ranked cost optimization opportunity."""

    type: str
    impact: str
    estimated_savings: float
    description: str
    implementation: str
    difficulty: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "impact": self.impact,
            "estimated_savings": round(self.estimated_savings, 6),
            "description": self.description,
            "implementation": self.implementation,
            "difficulty": self.difficulty,
        }


@dataclass
class CostReport:
    """Aggregated analytics for a caller over a time range."""

    caller_id: str
    start: datetime | None
    end: datetime | None
    total_cost: float = 0.0
    total_operations: int = 0
    failed_operations: int = 0
    average_cost: float = 0.0
    top_cost_drivers: list[dict[str, Any]] = field(default_factory=list)
    model_breakdown: dict[str, dict[str, float]] = field(default_factory=dict)
    hourly_trends: list[dict[str, float]] = field(default_factory=list)
    suggestions: list[OptimizationSuggestion] = field(default_factory=list)
    projected_monthly_cost: float = 0.0
    budget_utilization: float = 0.0

    @property
    def failure_rate(self) -> float:
        if self.total_operations == 0:
            return 0.0
        return self.failed_operations / self.total_operations

    def to_dict(self) -> dict[str, Any]:
        return {
            "caller_id": self.caller_id,
            "start": self.start.isoformat() if self.start else None,
            "end": self.end.isoformat() if self.end else None,
            "total_cost": round(self.total_cost, 6),
            "total_operations": self.total_operations,
            "failed_operations": self.failed_operations,
            "failure_rate": round(self.failure_rate, 4),
            "average_cost": round(self.average_cost, 6),
            "top_cost_drivers": self.top_cost_drivers,
            "model_breakdown": self.model_breakdown,
            "hourly_trends": self.hourly_trends,
            "suggestions": [s.to_dict() for s in self.suggestions],
            "projected_monthly_cost": round(self.projected_monthly_cost, 6),
            "budget_utilization": round(self.budget_utilization, 4),
        }


def _month_key(moment: datetime) -> tuple[int, int]:
    return moment.year, moment.month


def _generate_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def identify_optimizations(entries: list[CostEntry]) -> list[OptimizationSuggestion]:
    """
    Derive optimization suggestions from ledger rows.

    Returns:
        Suggestions ranked by estimated savings, highest first
    """
    if not entries:
        return []

    suggestions: list[OptimizationSuggestion] = []

    total_savings = sum(e.potential_savings for e in entries)
    if total_savings > 0.01:
        suggestions.append(OptimizationSuggestion(
            type="model_downgrade",
            impact="high" if total_savings > 1 else "medium" if total_savings > 0.1 else "low",
            estimated_savings=total_savings,
            description="Use more cost-efficient models for suitable tasks",
            implementation="Enable auto-optimization or route simple tasks to the economy tier",
            difficulty="easy",
        ))

    untemplated = [e for e in entries if not e.template_id]
    if len(untemplated) > len(entries) * 0.3:
        suggestions.append(OptimizationSuggestion(
            type="template_optimization",
            impact="medium",
            estimated_savings=len(untemplated) * 0.001,
            description="Use optimized prompt templates to reduce token usage",
            implementation="Apply pre-built templates for common operations",
            difficulty="easy",
        ))

    batchable = [e for e in entries if e.operation_type in BATCHABLE_OPERATIONS and not e.batch_id]
    if len(batchable) > 10:
        suggestions.append(OptimizationSuggestion(
            type="batch_operations",
            impact="medium",
            estimated_savings=len(batchable) * 0.0005,
            description="Batch similar operations to reduce overhead",
            implementation="Queue operations and process in batches",
            difficulty="medium",
        ))

    hit_rate = sum(1 for e in entries if e.cache_hit) / len(entries)
    if hit_rate < 0.3:
        suggestions.append(OptimizationSuggestion(
            type="cache_usage",
            impact="high",
            estimated_savings=len(entries) * (0.3 - hit_rate) * 0.002,
            description="Improve cache hit rate to avoid redundant API calls",
            implementation="Enable caching for all operations and extend cache TTL",
            difficulty="easy",
        ))

    suggestions.sort(key=lambda s: s.estimated_savings, reverse=True)
    return suggestions


class CostAnalytics:
    """
    Per-caller cost ledger with budget tracking and alerting.

    Features:
    - Bounded per-caller ledger (most recent entries are kept)
    - Monthly budget status recomputed from the ledger
    - Budget alerts, one per severity per caller per billing month
    - Cost breakdowns and optimization suggestions

    Example:
        analytics = CostAnalytics()
        analytics.set_budget("acme", monthly_budget=10.0)

        analytics.record_cost(
            caller_id="acme",
            operation_type="analysis",
            model="claude-haiku-4-5-20251001",
            input_tokens=500,
            output_tokens=300,
        )

        status = analytics.get_budget_status("acme")
    """

    def __init__(
        self,
        selector: ModelSelector | None = None,
        max_entries_per_caller: int = 10_000,
        max_alerts: int = 100,
        alert_callback: Callable[[BudgetAlert], None] | None = None,
    ):
        self.selector = selector
        self.alert_callback = alert_callback
        self._max_entries = max_entries_per_caller
        self._entries: dict[str, deque[CostEntry]] = {}
        self._budgets: dict[str, Budget] = {}
        self._alerts: deque[BudgetAlert] = deque(maxlen=max_alerts)
        # caller -> (billing month, severities already raised or disarmed)
        self._alert_state: dict[str, tuple[tuple[int, int], set[AlertSeverity]]] = {}
        self._lock = threading.Lock()

    # Ledger

    def record_cost(
        self,
        caller_id: str,
        operation_type: str,
        model: str,
        input_tokens: int,
        output_tokens: int,
        actual_cost: float | None = None,
        estimated_cost: float | None = None,
        optimized_model: str | None = None,
        quality_score: float | None = None,
        response_time_ms: float = 0.0,
        cache_hit: bool = False,
        success: bool = True,
        error: str | None = None,
        batch_id: str | None = None,
        template_id: str | None = None,
        timestamp: datetime | None = None,
    ) -> CostEntry:
        """
        Append a cost entry and evaluate the caller's budget alerts.

        Args:
            caller_id: Caller the cost is attributed to
            operation_type: Operation type value
            model: Model that served the operation
            input_tokens: Input tokens consumed
            output_tokens: Output tokens produced
            actual_cost: Billed cost; priced from the registry when omitted
            estimated_cost: Cost estimated before dispatch
            optimized_model: Cheaper model that could have served the operation
            quality_score: Assessed output quality (1-10)
            response_time_ms: End-to-end latency
            cache_hit: Whether the result was served from cache
            success: Whether the operation succeeded
            error: Error text for failed operations
            batch_id: Batch the operation belonged to
            template_id: Prompt template used
            timestamp: Entry time; defaults to now (UTC)

        Returns:
            The recorded CostEntry
        """
        operation_type = str(getattr(operation_type, "value", operation_type))
        if actual_cost is None:
            actual_cost = 0.0 if cache_hit or not success else calculate_cost(
                model, input_tokens, output_tokens
            )

        potential_savings = 0.0
        if optimized_model and optimized_model != model:
            hypothetical = calculate_cost(optimized_model, input_tokens, output_tokens)
            potential_savings = max(0.0, actual_cost - hypothetical)

        entry = CostEntry(
            id=_generate_id("cost"),
            timestamp=timestamp or datetime.now(timezone.utc),
            caller_id=caller_id,
            operation_type=operation_type,
            model=model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            actual_cost=actual_cost,
            estimated_cost=estimated_cost if estimated_cost is not None else actual_cost,
            optimized_model=optimized_model,
            potential_savings=potential_savings,
            quality_score=quality_score,
            response_time_ms=response_time_ms,
            cache_hit=cache_hit,
            success=success,
            error=error,
            batch_id=batch_id,
            template_id=template_id,
        )

        with self._lock:
            ledger = self._entries.get(caller_id)
            if ledger is None:
                ledger = self._entries[caller_id] = deque(maxlen=self._max_entries)
            ledger.append(entry)

        logger.debug(
            "Cost recorded",
            caller_id=caller_id,
            operation_type=operation_type,
            model=model,
            cost=actual_cost,
            success=success,
        )

        if self.selector is not None and quality_score is not None and success:
            self.selector.record_performance(
                model, operation_type, actual_cost, quality_score, response_time_ms
            )

        alert = self._check_budget_alerts(caller_id)
        if alert is not None and self.alert_callback is not None:
            self.alert_callback(alert)

        return entry

    def get_entries(
        self,
        caller_id: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[CostEntry]:
        """Ledger rows in a time range, for one caller or all callers."""
        with self._lock:
            if caller_id is None:
                rows = [e for ledger in self._entries.values() for e in ledger]
            else:
                rows = list(self._entries.get(caller_id, ()))

        return [
            e for e in rows
            if (start is None or e.timestamp >= start) and (end is None or e.timestamp <= end)
        ]

    def callers(self) -> list[str]:
        with self._lock:
            return list(self._entries)

    # Budgets

    def set_budget(self, caller_id: str, **fields: Any) -> Budget:
        """
        Create or update a caller's budget.

        Unspecified fields keep their current value. Re-arms the caller's
        alerts for the current billing month.
        """
        with self._lock:
            current = self._budgets.get(caller_id)
            data = current.model_dump() if current else {}
            data.update(fields)
            data["caller_id"] = caller_id
            budget = Budget(**data)
            self._budgets[caller_id] = budget
            self._alert_state.pop(caller_id, None)

        logger.info(
            "Budget configured",
            caller_id=caller_id,
            monthly_budget=budget.monthly_budget,
            hard_limit=budget.hard_limit,
        )
        return budget

    def get_budget(self, caller_id: str) -> Budget | None:
        with self._lock:
            return self._budgets.get(caller_id)

    def get_current_month_spend(self, caller_id: str, now: datetime | None = None) -> float:
        """Spend in the current UTC calendar month, recomputed from the ledger."""
        month = _month_key(now or datetime.now(timezone.utc))
        with self._lock:
            return sum(
                e.actual_cost
                for e in self._entries.get(caller_id, ())
                if _month_key(e.timestamp) == month
            )

    def _project_monthly_spend(self, spend: float, now: datetime) -> float:
        days_in_month = calendar.monthrange(now.year, now.month)[1]
        return spend / now.day * days_in_month

    @staticmethod
    def _classify(spend: float, budget: Budget) -> BudgetState:
        utilization = spend / budget.monthly_budget
        if spend >= budget.monthly_budget:
            return BudgetState.EXCEEDED
        if utilization >= budget.critical_threshold:
            return BudgetState.CRITICAL
        if utilization >= budget.warning_threshold:
            return BudgetState.WARNING
        return BudgetState.HEALTHY

    def get_budget_status(self, caller_id: str, now: datetime | None = None) -> BudgetStatus:
        """
        Get a caller's budget position.

        Returns:
            BudgetStatus with spend, remaining budget, linear end-of-month
            projection, status classification and recommendations
        """
        now = now or datetime.now(timezone.utc)
        budget = self.get_budget(caller_id)
        spend = self.get_current_month_spend(caller_id, now)
        days_in_month = calendar.monthrange(now.year, now.month)[1]
        days_remaining = days_in_month - now.day
        projected = self._project_monthly_spend(spend, now)

        if budget is None:
            return BudgetStatus(
                caller_id=caller_id,
                budget=None,
                current_month_spend=spend,
                remaining_budget=0.0,
                days_remaining=days_remaining,
                projected_spend=projected,
                utilization=0.0,
                status=BudgetState.HEALTHY,
                recommendations=["Set up a monthly budget to track spending"],
            )

        status = self._classify(spend, budget)

        recommendations: list[str] = []
        if status == BudgetState.EXCEEDED:
            recommendations.append("Budget exceeded: consider increasing the limit or reducing usage")
            recommendations.append("Enable auto-optimization to reduce future costs")
        elif status == BudgetState.CRITICAL:
            recommendations.append("Near budget limit: monitor spending closely")
            recommendations.append("Defer non-urgent operations until next month")
        elif status == BudgetState.WARNING:
            recommendations.append("Monitor spending rate to stay within budget")

        if projected > budget.monthly_budget:
            recommendations.append(
                f"Projected to exceed budget by ${projected - budget.monthly_budget:.2f}"
            )

        recent = self.get_entries(caller_id, start=now - timedelta(days=7))
        suggestions = identify_optimizations(recent)
        if suggestions:
            top = suggestions[0]
            recommendations.append(
                f"Top optimization: {top.description} (save ~${top.estimated_savings:.3f})"
            )

        return BudgetStatus(
            caller_id=caller_id,
            budget=budget,
            current_month_spend=spend,
            remaining_budget=budget.monthly_budget - spend,
            days_remaining=days_remaining,
            projected_spend=projected,
            utilization=spend / budget.monthly_budget,
            status=status,
            recommendations=recommendations,
        )

    # Alerts

    def _check_budget_alerts(self, caller_id: str) -> BudgetAlert | None:
        budget = self.get_budget(caller_id)
        if budget is None or not budget.alerts_enabled:
            return None

        now = datetime.now(timezone.utc)
        spend = self.get_current_month_spend(caller_id, now)
        state = self._classify(spend, budget)
        if state == BudgetState.HEALTHY:
            return None

        severity = AlertSeverity(state.value)
        month = _month_key(now)

        with self._lock:
            alert_month, raised = self._alert_state.get(caller_id, (month, set()))
            if alert_month != month:
                raised = set()
            if severity in raised:
                self._alert_state[caller_id] = (month, raised)
                return None

            # Lower severities are disarmed for the rest of the month
            raised.update(_SEVERITY_ORDER[: _SEVERITY_ORDER.index(severity) + 1])
            self._alert_state[caller_id] = (month, raised)

            message, recommendations = _ALERT_MESSAGES[severity]
            threshold = {
                AlertSeverity.WARNING: budget.warning_threshold,
                AlertSeverity.CRITICAL: budget.critical_threshold,
                AlertSeverity.EXCEEDED: 1.0,
            }[severity]

            alert = BudgetAlert(
                id=_generate_id("alert"),
                caller_id=caller_id,
                severity=severity,
                message=message,
                threshold=threshold,
                current_spend=spend,
                recommendations=list(recommendations),
                triggered_at=now,
            )
            self._alerts.append(alert)

        logger.warning(
            "Budget alert",
            caller_id=caller_id,
            severity=severity.value,
            spend=round(spend, 6),
            monthly_budget=budget.monthly_budget,
        )
        return alert

    def get_alerts(self, caller_id: str, limit: int = 10) -> list[BudgetAlert]:
        """Recent alerts for a caller, newest first."""
        with self._lock:
            alerts = [a for a in self._alerts if a.caller_id == caller_id]
        alerts.sort(key=lambda a: a.triggered_at, reverse=True)
        return alerts[:limit]

    # Analytics

    def get_analytics(
        self,
        caller_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> CostReport:
        """
        Aggregate a caller's ledger over a time range.

        Args:
            caller_id: Caller to report on
            start: Inclusive range start; unbounded when None
            end: Inclusive range end; unbounded when None

        Returns:
            CostReport with totals, breakdowns and ranked suggestions
        """
        entries = self.get_entries(caller_id, start, end)
        report = CostReport(caller_id=caller_id, start=start, end=end)

        now = datetime.now(timezone.utc)
        report.projected_monthly_cost = self._project_monthly_spend(
            self.get_current_month_spend(caller_id, now), now
        )
        budget = self.get_budget(caller_id)
        if budget is not None:
            report.budget_utilization = (
                self.get_current_month_spend(caller_id, now) / budget.monthly_budget
            )

        report.hourly_trends = [
            {"hour": hour, "cost": 0.0, "operations": 0, "average_cost": 0.0} for hour in range(24)
        ]
        if not entries:
            return report

        report.total_cost = sum(e.actual_cost for e in entries)
        report.total_operations = len(entries)
        report.failed_operations = sum(1 for e in entries if not e.success)
        report.average_cost = report.total_cost / report.total_operations

        by_type: dict[str, float] = defaultdict(float)
        for e in entries:
            by_type[e.operation_type] += e.actual_cost
        drivers = sorted(by_type.items(), key=lambda item: item[1], reverse=True)[:5]
        report.top_cost_drivers = [
            {
                "operation_type": op,
                "cost": cost,
                "percentage": (cost / report.total_cost * 100) if report.total_cost else 0.0,
            }
            for op, cost in drivers
        ]

        breakdown: dict[str, dict[str, float]] = {}
        for e in entries:
            data = breakdown.setdefault(e.model, {"operations": 0, "cost": 0.0, "savings": 0.0})
            data["operations"] += 1
            data["cost"] += e.actual_cost
            data["savings"] += e.potential_savings
        for data in breakdown.values():
            data["average_cost"] = data["cost"] / data["operations"]
            data["efficiency"] = 1 - data["savings"] / data["cost"] if data["cost"] > 0 else 1.0
            del data["savings"]
        report.model_breakdown = breakdown

        for e in entries:
            bucket = report.hourly_trends[e.timestamp.astimezone(timezone.utc).hour]
            bucket["cost"] += e.actual_cost
            bucket["operations"] += 1
        for bucket in report.hourly_trends:
            if bucket["operations"]:
                bucket["average_cost"] = bucket["cost"] / bucket["operations"]

        report.suggestions = identify_optimizations(entries)
        return report

    def get_recommendations(self, caller_id: str) -> dict[str, Any]:
        """Budget status, last-7-day analytics, top suggestions and recent alerts."""
        now = datetime.now(timezone.utc)
        status = self.get_budget_status(caller_id, now)
        analytics = self.get_analytics(caller_id, start=now - timedelta(days=7), end=now)
        return {
            "budget_status": status,
            "analytics": analytics,
            "top_suggestions": analytics.suggestions[:3],
            "alerts": self.get_alerts(caller_id, limit=5),
        }

    def clear(self) -> None:
        """Drop all ledger rows, budgets and alerts."""
        with self._lock:
            self._entries.clear()
            self._budgets.clear()
            self._alerts.clear()
            self._alert_state.clear()
