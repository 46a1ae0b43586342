"""Tests for the core data model."""

import pytest
from pydantic import ValidationError

from tokenwise.core.models import (
    MODEL_REGISTRY,
    AnalysisParams,
    ChapterParams,
    GeneralParams,
    Operation,
    OperationOutcome,
    OperationType,
    OperationValidationError,
    OutcomeStatus,
    Urgency,
    UsageStats,
    calculate_cost,
    generate_operation_id,
    get_model_profile,
    normalize_excerpt,
    parse_params,
)

from .conftest import HAIKU, OPUS, SONNET


class TestModelRegistry:
    """Tests for the model registry and pricing."""

    def test_registry_tiers(self):
        assert list(MODEL_REGISTRY) == [HAIKU, SONNET, OPUS]

    def test_prices(self):
        haiku = get_model_profile(HAIKU)
        assert haiku.input_cost_per_million == 1.0
        assert haiku.output_cost_per_million == 5.0
        assert get_model_profile(OPUS).output_cost_per_million == 25.0

    def test_calculate_cost(self):
        # 1M input at $3 plus 1M output at $15
        assert calculate_cost(SONNET, 1_000_000, 1_000_000) == pytest.approx(18.0)
        assert calculate_cost(HAIKU, 500, 300) == pytest.approx(0.002)

    def test_unknown_model_priced_as_sonnet(self):
        assert calculate_cost("mystery-model", 1000, 1000) == calculate_cost(SONNET, 1000, 1000)

    def test_unknown_profile(self):
        assert get_model_profile("mystery-model") is None


class TestParams:
    """Tests for per-type operation parameters."""

    def test_parse_analysis(self):
        params = parse_params("analysis", {"content": "A story", "focus": "pacing"})
        assert isinstance(params, AnalysisParams)
        assert params.kind == "analysis"
        assert "pacing" in params.to_prompt()

    def test_parse_chapter(self):
        params = parse_params(OperationType.CHAPTER, {"foundation": "World", "chapter_number": 2})
        assert isinstance(params, ChapterParams)
        assert params.chapter_number == 2

    def test_missing_required_field(self):
        with pytest.raises(OperationValidationError):
            parse_params("analysis", {})

    def test_empty_required_field(self):
        with pytest.raises(OperationValidationError):
            parse_params("general", {"prompt": ""})

    def test_unknown_field_rejected(self):
        with pytest.raises(OperationValidationError):
            parse_params("general", {"prompt": "hi", "colour": "blue"})

    def test_unknown_type(self):
        with pytest.raises(OperationValidationError):
            parse_params("poetry", {"prompt": "hi"})

    def test_non_mapping(self):
        with pytest.raises(OperationValidationError):
            parse_params("general", ["hi"])

    def test_chapter_number_must_be_positive(self):
        with pytest.raises(OperationValidationError):
            parse_params("chapter", {"foundation": "World", "chapter_number": 0})

    def test_cache_excerpt_fields(self):
        params = GeneralParams(prompt="  Hello   World ", system_prompt="Be Brief")
        assert params.cache_excerpt() == "hello world|be brief"

    def test_general_prompt_includes_system_prompt(self):
        params = GeneralParams(prompt="Hello", system_prompt="Be brief")
        assert params.to_prompt() == "Be brief\n\nHello"


class TestNormalizeExcerpt:
    def test_collapses_whitespace_and_case(self):
        assert normalize_excerpt("  The   QUICK\n fox ") == "the quick fox"

    def test_truncates(self):
        assert len(normalize_excerpt("x" * 500)) == 100

    def test_empty(self):
        assert normalize_excerpt(None) == ""
        assert normalize_excerpt("") == ""


class TestOperation:
    """Tests for the Operation model."""

    def test_params_tagged_from_type(self):
        op = Operation(type="general", params={"prompt": "Hello"}, caller_id="acme")
        assert isinstance(op.params, GeneralParams)
        assert op.id.startswith("op_")
        assert op.priority == 5
        assert op.urgency == Urgency.NORMAL

    def test_mismatched_params_rejected(self):
        with pytest.raises(ValidationError):
            Operation(
                type="analysis",
                params={"kind": "general", "prompt": "Hello"},
                caller_id="acme",
            )

    def test_priority_bounds(self):
        with pytest.raises(ValidationError):
            Operation(type="general", params={"prompt": "x"}, caller_id="acme", priority=11)
        with pytest.raises(ValidationError):
            Operation(type="general", params={"prompt": "x"}, caller_id="acme", priority=0)

    def test_cost_ceiling_must_be_positive(self):
        with pytest.raises(ValidationError):
            Operation(type="general", params={"prompt": "x"}, caller_id="acme", cost_ceiling=0)

    def test_self_dependency_rejected(self):
        with pytest.raises(ValidationError):
            Operation(
                id="op_1",
                type="general",
                params={"prompt": "x"},
                caller_id="acme",
                dependencies={"op_1"},
            )

    def test_is_immediate(self):
        base = {"type": "general", "params": {"prompt": "x"}, "caller_id": "acme"}
        assert Operation(**base, urgency="immediate").is_immediate
        assert Operation(**base, priority=8).is_immediate
        assert not Operation(**base, priority=7).is_immediate

    def test_frozen(self):
        op = Operation(type="general", params={"prompt": "x"}, caller_id="acme")
        with pytest.raises(ValidationError):
            op.priority = 9

    def test_generate_operation_id_unique(self):
        assert generate_operation_id() != generate_operation_id()


class TestOperationOutcome:
    def test_success_and_dict(self):
        outcome = OperationOutcome(
            operation_id="op_1",
            status=OutcomeStatus.COMPLETED,
            model=HAIKU,
            content="text",
            usage=UsageStats.of(10, 20),
            cost=0.001,
        )
        assert outcome.success
        data = outcome.to_dict()
        assert data["status"] == "completed"
        assert data["usage"]["total_tokens"] == 30

    def test_failed_outcome(self):
        outcome = OperationOutcome(operation_id="op_1", status=OutcomeStatus.FAILED, error="boom")
        assert not outcome.success
