"""Tests for the optimization hub."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from tokenwise.core.config import SchedulerSettings, Settings
from tokenwise.core.hub import OptimizationHub, OptimizationOptions, OptimizationRequest
from tokenwise.providers.base import InvalidRequestError
from tokenwise.queue.scheduler import OperationState

from .conftest import HAIKU, OPUS, FakeProvider

FAILURE_ADVICE = "Operation failed: consider retrying with simplified parameters"


def _hub(provider, settings: Settings | None = None) -> OptimizationHub:
    return OptimizationHub(provider, settings=settings or Settings())


def _analysis(content: str = "A tale of two cities", request_id: str | None = None, **options):
    return OptimizationRequest(
        id=request_id,
        caller_id="acme",
        type="analysis",
        params={"content": content},
        options=OptimizationOptions(**options),
    )


class TestProcessRequest:
    """Tests for the single-request pipeline."""

    @pytest.mark.asyncio
    async def test_analysis_selects_haiku(self, provider):
        hub = _hub(provider)

        result = await hub.process_request(_analysis())

        assert result.success
        assert result.content == "Generated text"
        assert result.optimizations.selected_model == HAIKU
        assert result.optimizations.template_used == "optimized_analysis"
        assert not result.optimizations.cache_hit
        assert not result.optimizations.batch_processed
        # 25% of the 800 token default estimate
        assert result.optimizations.tokens_saved == 200
        assert result.optimizations.cost_saved == pytest.approx(0.0006 + 0.00375)
        assert result.cost == pytest.approx(0.0011)
        assert result.performance.quality_score == 5.0
        assert "Used optimized template to reduce token usage" in result.recommendations
        assert provider.calls[0][1] == HAIKU

    @pytest.mark.asyncio
    async def test_records_cost_with_quality(self, provider):
        hub = _hub(provider)
        result = await hub.process_request(_analysis())

        entries = hub.analytics.get_entries("acme")
        assert len(entries) == 1
        assert entries[0].quality_score == result.performance.quality_score
        assert entries[0].template_id == "optimized_analysis"
        assert entries[0].actual_cost == pytest.approx(result.cost)
        assert hub.selector.get_model_analytics()["model_usage"] == {HAIKU: 1}

    @pytest.mark.asyncio
    async def test_cache_hit_skips_provider(self, provider):
        hub = _hub(provider)

        first = await hub.process_request(_analysis())
        second = await hub.process_request(_analysis(content="  a TALE of two   cities "))

        assert len(provider.calls) == 1
        assert not first.optimizations.cache_hit
        assert second.success
        assert second.optimizations.cache_hit
        assert second.cost == 0.0
        assert second.content == first.content
        assert second.optimizations.tokens_saved == 200 + 300

        entries = hub.analytics.get_entries("acme")
        assert [e.cache_hit for e in entries] == [False, True]
        assert entries[1].actual_cost == 0.0

    @pytest.mark.asyncio
    async def test_provider_failure_returns_result(self):
        provider = FakeProvider(error=InvalidRequestError("bad request"))
        hub = _hub(provider)

        result = await hub.process_request(_analysis())

        assert not result.success
        assert result.cost == 0.0
        assert result.error == "bad request"
        assert result.recommendations == [FAILURE_ADVICE]
        entries = hub.analytics.get_entries("acme")
        assert len(entries) == 1
        assert not entries[0].success
        assert entries[0].actual_cost == 0.0

    @pytest.mark.asyncio
    async def test_invalid_params_fail_fast(self, provider):
        hub = _hub(provider)

        result = await hub.process_request(
            OptimizationRequest(caller_id="acme", type="analysis", params={})
        )

        assert not result.success
        assert result.optimizations.selected_model == "none"
        assert result.recommendations == [FAILURE_ADVICE]
        assert provider.calls == []

        entries = hub.analytics.get_entries("acme")
        assert len(entries) == 1
        assert entries[0].model == "none"
        assert not entries[0].success
        assert entries[0].actual_cost == 0.0
        assert entries[0].error == result.error

    @pytest.mark.asyncio
    async def test_unknown_override_fails_fast(self, provider):
        hub = _hub(provider)
        result = await hub.process_request(_analysis(model_override="gpt-unknown"))

        assert not result.success
        assert "gpt-unknown" in result.error
        assert provider.calls == []
        assert [e.success for e in hub.analytics.get_entries("acme")] == [False]

    @pytest.mark.asyncio
    async def test_duplicate_id_is_recorded(self, provider):
        hub = _hub(provider)
        first = await hub.process_request(_analysis(request_id="op_dup"))
        second = await hub.process_request(_analysis(content="Different text", request_id="op_dup"))

        assert first.success
        assert not second.success
        assert "already submitted" in second.error
        assert second.recommendations == [FAILURE_ADVICE]
        assert len(provider.calls) == 1

        entries = hub.analytics.get_entries("acme")
        assert [e.success for e in entries] == [True, False]
        assert entries[1].actual_cost == 0.0

    @pytest.mark.asyncio
    async def test_override_records_recommended_model(self, provider):
        hub = _hub(provider)
        result = await hub.process_request(_analysis(model_override=OPUS))

        assert result.optimizations.selected_model == OPUS
        entry = hub.analytics.get_entries("acme")[0]
        assert entry.model == OPUS
        assert entry.optimized_model == HAIKU
        assert entry.potential_savings > 0

    @pytest.mark.asyncio
    async def test_immediate_request(self, provider):
        hub = _hub(provider)
        result = await hub.process_request(_analysis(urgency="immediate"))

        assert result.success
        assert "Consider batch processing for non-urgent requests to save costs" in result.recommendations

    @pytest.mark.asyncio
    async def test_without_optimized_prompts(self, provider):
        hub = _hub(provider)
        result = await hub.process_request(_analysis(use_optimized_prompts=False))

        assert result.optimizations.template_used is None
        assert result.optimizations.tokens_saved == 0
        assert "Enable optimized prompts to save ~20-30% on costs" in result.recommendations

    @pytest.mark.asyncio
    async def test_timeout_cancels_queued_operation(self, provider):
        settings = Settings(scheduler=SchedulerSettings(cost_budget=0.0, result_timeout_seconds=0.05))
        hub = _hub(provider, settings=settings)

        result = await hub.process_request(_analysis(request_id="op_slow"))

        assert not result.success
        assert "Timed out" in result.error
        assert hub.scheduler.get_state("op_slow") == OperationState.CANCELLED
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_timeout_after_dispatch_keeps_real_cost(self):
        gate = asyncio.Event()
        provider = FakeProvider(gate=gate)
        settings = Settings(scheduler=SchedulerSettings(result_timeout_seconds=0.05))
        hub = _hub(provider, settings=settings)

        result = await hub.process_request(_analysis(request_id="op_slow"))

        assert not result.success
        assert "Timed out" in result.error
        assert hub.scheduler.get_state("op_slow") == OperationState.DISPATCHED
        assert hub.analytics.get_entries("acme") == []

        gate.set()
        outcome = await hub.scheduler.wait_for_result("op_slow", timeout=5)

        entries = hub.analytics.get_entries("acme")
        assert len(entries) == 1
        assert entries[0].success
        assert entries[0].actual_cost == pytest.approx(outcome.cost)
        assert hub.analytics.get_current_month_spend("acme") == pytest.approx(0.0011)
        assert hub.scheduler.get_budget_status()["spent"] == pytest.approx(0.0011)

    @pytest.mark.asyncio
    async def test_immediate_request_waits_for_dependency(self, provider):
        hub = _hub(provider)

        child = asyncio.create_task(
            hub.process_request(
                _analysis(content="Child text", request_id="child", urgency="immediate", dependencies=["parent"])
            )
        )
        await asyncio.sleep(0.01)
        assert provider.calls == []

        parent = await hub.process_request(_analysis(content="Parent text", request_id="parent"))
        child_result = await child

        assert parent.success
        assert child_result.success
        assert "Parent text" in provider.prompts[0]
        assert len(provider.calls) == 2

    @pytest.mark.asyncio
    async def test_immediate_request_with_failed_dependency(self, provider):
        provider.error = InvalidRequestError("bad request")
        hub = _hub(provider)
        await hub.process_request(_analysis(request_id="parent"))
        provider.error = None

        child = await hub.process_request(
            _analysis(content="Something else", request_id="child", priority=9, dependencies=["parent"])
        )

        assert not child.success
        assert "parent" in child.error
        assert len(provider.calls) == 1

    @pytest.mark.asyncio
    async def test_failed_dependency(self, provider):
        provider.error = InvalidRequestError("bad request")
        hub = _hub(provider)

        parent = await hub.process_request(_analysis(request_id="parent"))
        provider.error = None
        child = await hub.process_request(
            _analysis(content="Something else", request_id="child", dependencies=["parent"])
        )

        assert not parent.success
        assert not child.success
        assert "parent" in child.error
        assert len(provider.calls) == 1


class TestBatchAndReports:
    """Tests for batches, budgets and the savings report."""

    @pytest.mark.asyncio
    async def test_process_batch_groups_by_type(self, provider):
        hub = _hub(provider)
        requests = [
            _analysis(content="first", request_id="r1"),
            OptimizationRequest(
                id="r2", caller_id="acme", type="foundation", params={"premise": "A lighthouse keeper"}
            ),
            _analysis(content="second", request_id="r3"),
        ]

        results = await hub.process_batch(requests)

        assert list(results) == ["r1", "r2", "r3"]
        assert all(r.success and r.optimizations.batch_processed for r in results.values())
        assert results["r2"].optimizations.selected_model == OPUS

        batch_ids = {e.operation_type: set() for e in hub.analytics.get_entries("acme")}
        for entry in hub.analytics.get_entries("acme"):
            batch_ids[entry.operation_type].add(entry.batch_id)
        assert len(batch_ids["analysis"]) == 1
        assert batch_ids["analysis"] != batch_ids["foundation"]

    @pytest.mark.asyncio
    async def test_process_batch_assigns_ids(self, provider):
        hub = _hub(provider)
        results = await hub.process_batch([_analysis(content="one"), _analysis(content="two")])

        assert len(results) == 2
        assert all(op_id.startswith("op_") for op_id in results)

    @pytest.mark.asyncio
    async def test_system_report(self, provider):
        hub = _hub(provider)
        await hub.process_request(_analysis())
        await hub.process_request(_analysis())

        report = hub.get_system_optimization_report()

        assert report.total_operations == 2
        assert report.breakdown["caching"]["operations"] == 1
        assert report.breakdown["prompt_templates"]["operations"] == 2
        assert report.breakdown["model_optimization"]["operations"] == 2
        saved = [item["total_saved"] for item in report.top_optimizations]
        assert saved == sorted(saved, reverse=True)
        assert report.caller_benefits[0]["caller_id"] == "acme"
        assert 0 < report.caller_benefits[0]["cost_reduction_percent"] <= 100
        assert report.to_dict()["total_operations"] == 2

    @pytest.mark.asyncio
    async def test_report_range(self, provider):
        hub = _hub(provider)
        await hub.process_request(_analysis())

        future = datetime.now(timezone.utc) + timedelta(days=1)
        assert hub.get_system_optimization_report(start=future).total_operations == 0

    def test_scheduler_built_from_settings(self, provider):
        settings = Settings(scheduler=SchedulerSettings(max_concurrency=2, max_retained_outcomes=25))
        hub = _hub(provider, settings=settings)
        assert hub.scheduler.max_concurrency == 2
        assert hub.scheduler.max_outcomes == 25

    def test_set_budget_uses_settings_defaults(self, provider):
        settings = Settings()
        hub = _hub(provider, settings=settings)

        budget = hub.set_budget("acme")
        assert budget.monthly_budget == settings.budget.default_monthly_budget_usd
        assert budget.warning_threshold == settings.budget.warning_threshold

        updated = hub.set_budget("acme", monthly_budget=5.0)
        assert updated.monthly_budget == 5.0

    @pytest.mark.asyncio
    async def test_context_manager(self, provider):
        async with _hub(provider) as hub:
            result = await hub.process_request(_analysis())
            assert result.success
        assert hub.scheduler.get_stats().in_flight == 0
