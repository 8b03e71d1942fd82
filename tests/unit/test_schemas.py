"""
Unit Tests for Schemas and Helpers.

Tests:
- Reference snapshot helpers
- Result aggregation
- Currency helpers
- Logging setup
"""

from datetime import date
from decimal import Decimal

import pytest

from coverage_engine.core.config import CoverageSettings, get_coverage_settings, reset_coverage_settings
from coverage_engine.core.enums import CalculationStage, ConditionField, LayerType, WarningCode
from coverage_engine.schemas.calculation import CombinedCalculationResult, ServiceCalculationResult
from coverage_engine.schemas.insurance import InsurancePlan, PatientProfile
from coverage_engine.schemas.rules import CalculationContext
from coverage_engine.utils.logging import get_logger, setup_logging, setup_logging_from_settings
from coverage_engine.utils.money import clamp_percent, percent_of, ratio_percent, round_currency


class TestSnapshots:
    """Tests for reference snapshot helpers."""

    @pytest.mark.parametrize(
        "on_date, expected",
        [
            (date(2025, 5, 31), 44),
            (date(2025, 6, 1), 45),
            (date(2025, 12, 31), 45),
        ],
    )
    def test_age_on(self, on_date, expected):
        patient = PatientProfile(patient_id=1, birth_date=date(1980, 6, 1))
        assert patient.age_on(on_date) == expected

    def test_age_unknown_without_birth_date(self):
        assert PatientProfile(patient_id=1).age_on(date(2025, 1, 1)) is None

    def test_plan_validity(self):
        plan = InsurancePlan(
            plan_id=1,
            provider_id=1,
            default_coverage_percent=Decimal("70"),
            valid_from=date(2025, 1, 1),
            valid_to=date(2025, 12, 31),
            excluded_service_ids=frozenset({9}),
        )

        assert plan.is_valid_on(date(2025, 1, 1))
        assert not plan.is_valid_on(date(2026, 1, 1))
        assert not plan.model_copy(update={"is_active": False}).is_valid_on(date(2025, 6, 1))
        assert plan.covers_service(8)
        assert not plan.covers_service(9)

    def test_context_for_layer(self):
        context = CalculationContext(
            patient_id=1, service_id=2, service_amount=Decimal("10"), calculation_date=date(2025, 1, 1)
        )
        scoped = context.for_layer(10, LayerType.SUPPLEMENTARY)

        assert context.plan_id is None
        assert scoped.value_of(ConditionField.PLAN_ID) == 10
        assert scoped.value_of(ConditionField.LAYER_TYPE) == LayerType.SUPPLEMENTARY


class TestResultAggregation:
    """Tests for result totals."""

    def test_failed_service(self):
        result = ServiceCalculationResult(service_id=1, service_amount=Decimal("500"))
        result.add_warning(WarningCode.INVALID_AMOUNT, "bad amount")
        result.fail()

        assert result.failed_validation
        assert result.final_patient_share == Decimal("500")
        assert result.total_insurance_coverage == Decimal("0")
        assert result.warnings[0].service_id == 1

    def test_finalize(self):
        result = ServiceCalculationResult(service_id=1, service_amount=Decimal("500"))
        result.finalize(Decimal("125"))

        assert result.stage == CalculationStage.FINALIZED
        assert result.total_insurance_coverage == Decimal("375")
        assert result.coverage_percent == Decimal("75.00")
        assert result.patient_share_percent == Decimal("25.00")

    def test_all_failed_aggregates_reasons(self):
        first = ServiceCalculationResult(service_id=1, service_amount=Decimal("0"))
        first.add_warning(WarningCode.INVALID_AMOUNT, "amount must be positive")
        first.fail()
        second = ServiceCalculationResult(service_id=2, service_amount=Decimal("10"))
        second.add_warning(WarningCode.NO_ACTIVE_INSURANCE, "no insurance")
        second.fail()

        batch = CombinedCalculationResult(
            patient_id=1, calculation_date=date(2025, 1, 1), per_service=[first, second]
        )
        batch.calculate_totals()

        assert not batch.success
        assert batch.failure_reason == "service 1: amount must be positive; service 2: no insurance"
        assert batch.total_patient_share == Decimal("10")

    def test_zero_amount_percentages(self):
        result = ServiceCalculationResult(service_id=1, service_amount=Decimal("0"))
        assert result.coverage_percent == Decimal("0.00")


class TestMoney:
    """Tests for currency helpers."""

    def test_round_currency_half_even(self):
        settings = CoverageSettings(_env_file=None)
        assert round_currency(Decimal("2.5"), settings) == Decimal("2")
        assert round_currency(Decimal("3.5"), settings) == Decimal("4")

    def test_percent_helpers(self):
        assert percent_of(Decimal("200"), Decimal("12.5")) == Decimal("25")
        assert clamp_percent(Decimal("120")) == Decimal("100")
        assert clamp_percent(Decimal("-5")) == Decimal("0")
        assert ratio_percent(Decimal("1"), Decimal("3")) == Decimal("33.33")


class TestLogging:
    """Tests for logging setup."""

    def test_setup_from_settings_writes_file(self, tmp_path):
        log_file = tmp_path / "logs" / "engine.log"
        settings = CoverageSettings(_env_file=None, LOG_LEVEL="DEBUG", LOG_FILE=str(log_file))

        setup_logging_from_settings(settings)
        try:
            get_logger("tests").info("coverage engine logging ready")
            assert log_file.parent.exists()
        finally:
            setup_logging()

    def test_setup_from_cached_settings(self, monkeypatch):
        monkeypatch.setenv("COVERAGE_LOG_LEVEL", "WARNING")
        reset_coverage_settings()

        setup_logging_from_settings()
        try:
            assert get_coverage_settings().LOG_LEVEL == "WARNING"
        finally:
            reset_coverage_settings()
            setup_logging()
