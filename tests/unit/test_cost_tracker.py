"""Tests for cost analytics, budgets and alerts."""

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from tokenwise.analytics.cost_tracker import (
    AlertSeverity,
    Budget,
    BudgetState,
    CostAnalytics,
    identify_optimizations,
)
from tokenwise.core.models import calculate_cost
from tokenwise.routing.selector import ModelSelector

from .conftest import HAIKU, SONNET


@pytest.fixture
def analytics():
    return CostAnalytics()


def _spend(analytics: CostAnalytics, amount: float, caller: str = "acme", **kwargs):
    return analytics.record_cost(
        caller_id=caller,
        operation_type=kwargs.pop("operation_type", "general"),
        model=kwargs.pop("model", SONNET),
        input_tokens=kwargs.pop("input_tokens", 100),
        output_tokens=kwargs.pop("output_tokens", 100),
        actual_cost=amount,
        **kwargs,
    )


class TestBudget:
    def test_defaults(self):
        budget = Budget(caller_id="acme", monthly_budget=10.0)
        assert budget.warning_threshold == 0.8
        assert budget.critical_threshold == 0.95
        assert budget.hard_limit is False

    def test_budget_must_be_positive(self):
        with pytest.raises(ValidationError):
            Budget(caller_id="acme", monthly_budget=0)

    def test_warning_above_critical_rejected(self):
        with pytest.raises(ValidationError):
            Budget(caller_id="acme", monthly_budget=10.0, warning_threshold=0.9, critical_threshold=0.8)


class TestRecordCost:
    """Tests for ledger recording."""

    def test_cost_priced_from_registry(self, analytics):
        entry = analytics.record_cost("acme", "analysis", HAIKU, 500, 300)
        assert entry.actual_cost == pytest.approx(calculate_cost(HAIKU, 500, 300))
        assert entry.estimated_cost == entry.actual_cost
        assert entry.success

    def test_failures_and_cache_hits_cost_nothing(self, analytics):
        failed = analytics.record_cost("acme", "analysis", HAIKU, 500, 300, success=False, error="boom")
        cached = analytics.record_cost("acme", "analysis", HAIKU, 500, 300, cache_hit=True)
        assert failed.actual_cost == 0.0
        assert cached.actual_cost == 0.0

    def test_potential_savings(self, analytics):
        entry = analytics.record_cost("acme", "analysis", SONNET, 1000, 1000, optimized_model=HAIKU)
        expected = calculate_cost(SONNET, 1000, 1000) - calculate_cost(HAIKU, 1000, 1000)
        assert entry.potential_savings == pytest.approx(expected)

    def test_ledger_is_bounded(self):
        analytics = CostAnalytics(max_entries_per_caller=3)
        for i in range(5):
            _spend(analytics, float(i))

        entries = analytics.get_entries("acme")
        assert [e.actual_cost for e in entries] == [2.0, 3.0, 4.0]

    def test_get_entries_filters(self, analytics):
        now = datetime.now(timezone.utc)
        _spend(analytics, 1.0, timestamp=now - timedelta(days=10))
        _spend(analytics, 2.0, timestamp=now)
        _spend(analytics, 3.0, caller="other")

        recent = analytics.get_entries("acme", start=now - timedelta(days=1))
        assert [e.actual_cost for e in recent] == [2.0]
        assert len(analytics.get_entries()) == 3
        assert sorted(analytics.callers()) == ["acme", "other"]

    def test_quality_feeds_selector_history(self):
        selector = ModelSelector()
        analytics = CostAnalytics(selector=selector)
        analytics.record_cost("acme", "analysis", HAIKU, 500, 300, quality_score=7.0)
        analytics.record_cost("acme", "analysis", HAIKU, 500, 300)

        assert selector.get_model_analytics()["model_usage"] == {HAIKU: 1}


class TestBudgetStatus:
    """Tests for budget status classification."""

    def test_no_budget(self, analytics):
        status = analytics.get_budget_status("acme")
        assert status.status == BudgetState.HEALTHY
        assert status.budget is None
        assert status.recommendations == ["Set up a monthly budget to track spending"]

    @pytest.mark.parametrize(
        "spend,expected",
        [
            (5.0, BudgetState.HEALTHY),
            (8.0, BudgetState.WARNING),
            (9.5, BudgetState.CRITICAL),
            (10.0, BudgetState.EXCEEDED),
        ],
    )
    def test_classification(self, analytics, spend, expected):
        analytics.set_budget("acme", monthly_budget=10.0)
        _spend(analytics, spend)

        status = analytics.get_budget_status("acme")
        assert status.status == expected
        assert status.current_month_spend == pytest.approx(spend)
        assert status.remaining_budget == pytest.approx(10.0 - spend)
        assert status.utilization == pytest.approx(spend / 10.0)

    def test_only_current_month_counts(self, analytics):
        analytics.set_budget("acme", monthly_budget=10.0)
        _spend(analytics, 9.0, timestamp=datetime.now(timezone.utc) - timedelta(days=62))

        assert analytics.get_current_month_spend("acme") == 0.0

    def test_projection(self, analytics):
        analytics.set_budget("acme", monthly_budget=10.0)
        now = datetime(2026, 4, 10, 12, tzinfo=timezone.utc)
        _spend(analytics, 2.0, timestamp=now)

        status = analytics.get_budget_status("acme", now=now)
        # 2.0 over 10 days projected across 30
        assert status.projected_spend == pytest.approx(6.0)
        assert status.days_remaining == 20

    def test_set_budget_merges(self, analytics):
        analytics.set_budget("acme", monthly_budget=10.0, hard_limit=True)
        budget = analytics.set_budget("acme", monthly_budget=20.0)
        assert budget.monthly_budget == 20.0
        assert budget.hard_limit is True


class TestBudgetAlerts:
    """Tests for threshold alerts."""

    def test_warning_then_critical(self, analytics):
        analytics.set_budget("acme", monthly_budget=10.0)
        _spend(analytics, 8.0)
        _spend(analytics, 1.5)

        severities = {a.severity for a in analytics.get_alerts("acme")}
        assert severities == {AlertSeverity.WARNING, AlertSeverity.CRITICAL}

    def test_alert_fires_once_per_month(self, analytics):
        analytics.set_budget("acme", monthly_budget=10.0)
        _spend(analytics, 8.0)
        _spend(analytics, 0.1)
        _spend(analytics, 0.1)

        alerts = analytics.get_alerts("acme")
        assert len(alerts) == 1
        assert alerts[0].severity == AlertSeverity.WARNING
        assert alerts[0].message == "Budget warning threshold reached"

    def test_jump_disarms_lower_severities(self, analytics):
        analytics.set_budget("acme", monthly_budget=10.0)
        _spend(analytics, 12.0)
        _spend(analytics, 1.0)

        alerts = analytics.get_alerts("acme")
        assert [a.severity for a in alerts] == [AlertSeverity.EXCEEDED]
        assert alerts[0].threshold == 1.0

    def test_set_budget_rearms(self, analytics):
        analytics.set_budget("acme", monthly_budget=10.0)
        _spend(analytics, 8.0)
        analytics.set_budget("acme", monthly_budget=10.0)
        _spend(analytics, 0.1)

        assert len(analytics.get_alerts("acme")) == 2

    def test_alerts_disabled(self, analytics):
        analytics.set_budget("acme", monthly_budget=10.0, alerts_enabled=False)
        _spend(analytics, 20.0)
        assert analytics.get_alerts("acme") == []

    def test_callback(self):
        received = []
        analytics = CostAnalytics(alert_callback=received.append)
        analytics.set_budget("acme", monthly_budget=1.0)
        _spend(analytics, 0.9)

        assert len(received) == 1
        assert received[0].caller_id == "acme"


class TestAnalytics:
    """Tests for reports and suggestions."""

    def test_report_totals(self, analytics):
        _spend(analytics, 1.0, operation_type="chapter")
        _spend(analytics, 3.0, operation_type="foundation")
        _spend(analytics, 0.0, success=False, error="boom")

        report = analytics.get_analytics("acme")
        assert report.total_cost == pytest.approx(4.0)
        assert report.total_operations == 3
        assert report.failed_operations == 1
        assert report.failure_rate == pytest.approx(1 / 3)
        assert report.top_cost_drivers[0]["operation_type"] == "foundation"
        assert report.top_cost_drivers[0]["percentage"] == pytest.approx(75.0)
        assert report.model_breakdown[SONNET]["operations"] == 3
        assert len(report.hourly_trends) == 24

    def test_empty_report(self, analytics):
        report = analytics.get_analytics("nobody")
        assert report.total_operations == 0
        assert report.suggestions == []

    def test_recommendations_bundle(self, analytics):
        analytics.set_budget("acme", monthly_budget=10.0)
        _spend(analytics, 9.0)

        bundle = analytics.get_recommendations("acme")
        assert bundle["budget_status"].status == BudgetState.WARNING
        assert bundle["analytics"].total_operations == 1
        assert len(bundle["alerts"]) == 1

    def test_clear(self, analytics):
        analytics.set_budget("acme", monthly_budget=10.0)
        _spend(analytics, 9.0)
        analytics.clear()

        assert analytics.get_entries() == []
        assert analytics.get_budget("acme") is None
        assert analytics.get_alerts("acme") == []


class TestIdentifyOptimizations:
    def test_no_entries(self):
        assert identify_optimizations([]) == []

    def test_suggestions_ranked(self, analytics):
        for _ in range(12):
            analytics.record_cost("acme", "analysis", SONNET, 10_000, 10_000, optimized_model=HAIKU)

        suggestions = identify_optimizations(analytics.get_entries("acme"))
        types = [s.type for s in suggestions]
        assert set(types) == {"model_downgrade", "template_optimization", "batch_operations", "cache_usage"}
        savings = [s.estimated_savings for s in suggestions]
        assert savings == sorted(savings, reverse=True)

    def test_templated_cached_batched_usage(self, analytics):
        for _ in range(5):
            analytics.record_cost(
                "acme", "analysis", HAIKU, 100, 100,
                cache_hit=True, template_id="optimized_analysis", batch_id="batch_1",
            )

        assert identify_optimizations(analytics.get_entries("acme")) == []
