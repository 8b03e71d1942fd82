"""
Unit Tests for the Validation Gate.

Tests:
- Precondition violations
- Batch shape checks
- Per-service validation failures
- Active insurance selection and ordering
"""

from datetime import date, datetime
from decimal import Decimal

import pytest

from coverage_engine.core.config import CoverageSettings
from coverage_engine.core.enums import CalculationStage, PrimaryConflictPolicy, WarningCode
from coverage_engine.schemas.calculation import ServiceCalculationResult
from coverage_engine.services.validation_gate import ValidationGate, select_insurances
from coverage_engine.utils.errors import PreconditionViolation

ON_DATE = date(2025, 3, 15)
PATIENT_ID = 1001


@pytest.fixture
def gate(settings) -> ValidationGate:
    return ValidationGate(settings)


def service_result(amount: str = "1000") -> ServiceCalculationResult:
    return ServiceCalculationResult(service_id=501, service_amount=Decimal(amount))


class TestPreconditions:
    """Tests for programmer-error checks."""

    def test_valid_inputs_pass(self, gate):
        gate.check_preconditions(PATIENT_ID, 501, Decimal("10"), ON_DATE)
        gate.check_preconditions(PATIENT_ID, 501, 0, ON_DATE)

    @pytest.mark.parametrize(
        "patient_id, service_id, amount, on_date",
        [
            (None, 501, Decimal("10"), ON_DATE),
            (PATIENT_ID, None, Decimal("10"), ON_DATE),
            (PATIENT_ID, 501, None, ON_DATE),
            (PATIENT_ID, 501, Decimal("10"), None),
            (PATIENT_ID, 501, Decimal("-0.01"), ON_DATE),
            (PATIENT_ID, 501, 10.5, ON_DATE),
            (PATIENT_ID, 501, True, ON_DATE),
            (PATIENT_ID, 501, Decimal("NaN"), ON_DATE),
            ("1001", 501, Decimal("10"), ON_DATE),
            (PATIENT_ID, 501, Decimal("10"), datetime(2025, 3, 15, 9, 30)),
        ],
    )
    def test_invalid_inputs_raise(self, gate, patient_id, service_id, amount, on_date):
        with pytest.raises(PreconditionViolation):
            gate.check_preconditions(patient_id, service_id, amount, on_date)


class TestBatchShape:
    """Tests for service list shape checks."""

    def test_matching_lengths(self, gate):
        assert gate.check_batch_shape([1, 2], [Decimal("1"), Decimal("2")]) is None

    def test_mismatched_lengths(self, gate):
        reason = gate.check_batch_shape([1, 2, 3], [Decimal("1")])
        assert "different lengths" in reason

    def test_empty_batch(self, gate):
        assert gate.check_batch_shape([], []) == "No services to calculate"

    def test_missing_lists_raise(self, gate):
        with pytest.raises(PreconditionViolation):
            gate.check_batch_shape(None, [])


class TestValidateService:
    """Tests for per-service validation."""

    def test_valid_service_moves_to_primary_stage(self, gate, make_insurance):
        insurances = select_insurances([make_insurance(1, 10, is_primary=True)], PATIENT_ID, ON_DATE)
        result = service_result()

        assert gate.validate_service(result, True, insurances)
        assert result.stage == CalculationStage.PRIMARY_LAYER
        assert result.warnings == []

    def test_zero_amount(self, gate, make_insurance):
        insurances = select_insurances([make_insurance(1, 10, is_primary=True)], PATIENT_ID, ON_DATE)
        result = service_result("0")

        assert not gate.validate_service(result, True, insurances)
        assert result.stage == CalculationStage.FAILED
        assert [w.code for w in result.warnings] == [WarningCode.INVALID_AMOUNT]

    def test_amount_above_limit(self, gate, make_insurance):
        insurances = select_insurances([make_insurance(1, 10, is_primary=True)], PATIENT_ID, ON_DATE)
        result = service_result("100000001")

        assert not gate.validate_service(result, True, insurances)
        assert result.warnings[0].code == WarningCode.AMOUNT_EXCEEDS_LIMIT
        assert result.final_patient_share == Decimal("100000001")
        assert result.total_insurance_coverage == Decimal("0")

    def test_amount_at_limit_accepted(self, gate, make_insurance):
        insurances = select_insurances([make_insurance(1, 10, is_primary=True)], PATIENT_ID, ON_DATE)
        assert gate.validate_service(service_result("100000000"), True, insurances)

    def test_patient_not_found(self, gate):
        insurances = select_insurances([], PATIENT_ID, ON_DATE)
        result = service_result()

        assert not gate.validate_service(result, False, insurances)
        assert [w.code for w in result.warnings] == [WarningCode.PATIENT_NOT_FOUND]

    def test_no_active_insurance(self, gate, make_insurance):
        expired = make_insurance(1, 10, is_primary=True, valid_to=date(2024, 12, 31))
        insurances = select_insurances([expired], PATIENT_ID, ON_DATE)
        result = service_result()

        assert not gate.validate_service(result, True, insurances)
        assert result.warnings[0].code == WarningCode.NO_ACTIVE_INSURANCE
        assert result.warnings[0].service_id == 501

    def test_primary_conflict_rejected_by_policy(self, make_insurance):
        gate = ValidationGate(CoverageSettings(_env_file=None, PRIMARY_CONFLICT_POLICY=PrimaryConflictPolicy.REJECT))
        insurances = select_insurances(
            [make_insurance(1, 10, is_primary=True), make_insurance(2, 11, is_primary=True)],
            PATIENT_ID,
            ON_DATE,
        )
        result = service_result()

        assert not gate.validate_service(result, True, insurances)
        assert result.warnings[0].code == WarningCode.MULTIPLE_PRIMARY_INSURANCES

    def test_primary_conflict_allowed_by_default(self, gate, make_insurance):
        insurances = select_insurances(
            [make_insurance(1, 10, is_primary=True), make_insurance(2, 11, is_primary=True)],
            PATIENT_ID,
            ON_DATE,
        )
        assert gate.validate_service(service_result(), True, insurances)


class TestSelectInsurances:
    """Tests for active insurance selection."""

    def test_inactive_and_out_of_window_dropped(self, make_insurance):
        insurances = [
            make_insurance(1, 10, is_primary=True, is_active=False),
            make_insurance(2, 20, is_primary=False, valid_from=date(2025, 4, 1)),
            make_insurance(3, 21, is_primary=False, valid_to=date(2025, 3, 14)),
            make_insurance(4, 22, is_primary=False, valid_to=ON_DATE),
            make_insurance(5, 23, is_primary=False, patient_id=9999),
        ]
        selection = select_insurances(insurances, PATIENT_ID, ON_DATE)

        assert selection.primary is None
        assert [i.patient_insurance_id for i in selection.supplementary] == [4]
        assert selection.has_active

    def test_supplementary_order(self, make_insurance):
        insurances = [
            make_insurance(7, 20, is_primary=False, priority=2),
            make_insurance(9, 21, is_primary=False, priority=1, valid_from=date(2024, 6, 1)),
            make_insurance(8, 22, is_primary=False, priority=1, valid_from=date(2024, 6, 1)),
            make_insurance(6, 23, is_primary=False, priority=1, valid_from=date(2024, 7, 1)),
        ]
        selection = select_insurances(insurances, PATIENT_ID, ON_DATE)

        assert [i.patient_insurance_id for i in selection.supplementary] == [8, 9, 6, 7]

    def test_order_independent_of_storage(self, make_insurance):
        insurances = [make_insurance(i, 20 + i, is_primary=False) for i in range(1, 5)]

        forward = select_insurances(insurances, PATIENT_ID, ON_DATE)
        backward = select_insurances(list(reversed(insurances)), PATIENT_ID, ON_DATE)

        assert forward == backward

    def test_multiple_primaries_resolved_with_warning(self, make_insurance):
        insurances = [
            make_insurance(3, 12, is_primary=True, priority=2),
            make_insurance(5, 11, is_primary=True, priority=1, valid_from=date(2024, 3, 1)),
            make_insurance(4, 10, is_primary=True, priority=1, valid_from=date(2024, 3, 1)),
        ]
        selection = select_insurances(insurances, PATIENT_ID, ON_DATE)

        assert selection.primary.patient_insurance_id == 4
        assert selection.supplementary == []
        assert selection.has_primary_conflict
        assert len(selection.conflicting_primaries) == 3
        assert selection.warnings[0].code == WarningCode.MULTIPLE_PRIMARY_INSURANCES
        assert selection.warnings[0].plan_id == 10

    def test_nothing_active(self):
        selection = select_insurances([], PATIENT_ID, ON_DATE)

        assert not selection.has_active
        assert not selection.has_primary_conflict
