"""
Validation Gate.

Checks run before any layer is applied:
- Caller preconditions (raised as PreconditionViolation)
- Batch shape (mismatched or empty service lists)
- Per-service validation (amount range, patient, active insurance)

Also selects the insurances active on the calculation date and orders them
into primary and supplementary layers.
"""

from collections.abc import Iterable, Sequence
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional

from coverage_engine.core.config import CoverageSettings, get_coverage_settings
from coverage_engine.core.enums import CalculationStage, WarningCode
from coverage_engine.schemas.calculation import (
    ActiveInsurances,
    CalculationWarning,
    ServiceCalculationResult,
)
from coverage_engine.schemas.insurance import PatientInsurance
from coverage_engine.utils.errors import PreconditionViolation
from coverage_engine.utils.logging import get_logger

logger = get_logger(__name__)


# =============================================================================
# Insurance Selection
# =============================================================================


def select_insurances(
    insurances: Iterable[PatientInsurance],
    patient_id: int,
    on_date: date,
) -> ActiveInsurances:
    """
    Order a patient's insurances into layers for one date.

    Inactive and out-of-window enrollments are dropped. Among several active
    primaries the first by (priority, valid_from, patient_insurance_id) is
    used and a MULTIPLE_PRIMARY_INSURANCES warning is attached; the others
    take no part in the calculation.

    Args:
        insurances: Enrollments returned by the lookup (may be unfiltered)
        patient_id: Patient being calculated
        on_date: Calculation date

    Returns:
        ActiveInsurances in layer order
    """
    active = sorted(
        (i for i in insurances if i.patient_id == patient_id and i.is_active_on(on_date)),
        key=lambda i: i.ordering_key,
    )

    primaries = [i for i in active if i.is_primary]
    selection = ActiveInsurances(
        patient_id=patient_id,
        calculation_date=on_date,
        primary=primaries[0] if primaries else None,
        supplementary=[i for i in active if not i.is_primary],
    )

    if len(primaries) > 1:
        selection.conflicting_primaries = primaries
        ids = ", ".join(str(i.patient_insurance_id) for i in primaries)
        message = (
            f"Patient {patient_id} has {len(primaries)} active primary insurances "
            f"({ids}) on {on_date.isoformat()}; using {primaries[0].patient_insurance_id}"
        )
        logger.warning(message)
        selection.warnings.append(CalculationWarning(
            code=WarningCode.MULTIPLE_PRIMARY_INSURANCES,
            message=message,
            plan_id=primaries[0].plan_id,
        ))

    return selection


# =============================================================================
# Validation Gate
# =============================================================================


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


class ValidationGate:
    """Rejects bad calls and records per-service validation failures."""

    def __init__(self, settings: Optional[CoverageSettings] = None):
        self.settings = settings or get_coverage_settings()

    def check_preconditions(
        self,
        patient_id: Any,
        service_id: Any,
        service_amount: Any,
        calculation_date: Any,
    ) -> None:
        """
        Fail fast on programmer errors.

        Raises:
            PreconditionViolation: None, wrongly typed or negative inputs
        """
        if not _is_int(patient_id):
            raise PreconditionViolation(f"patient_id must be an integer, got {patient_id!r}")
        if not _is_int(service_id):
            raise PreconditionViolation(f"service_id must be an integer, got {service_id!r}")
        if isinstance(service_amount, bool) or not isinstance(service_amount, (int, Decimal)):
            raise PreconditionViolation(
                f"service_amount must be a Decimal or integer, got {service_amount!r}"
            )
        if isinstance(service_amount, Decimal) and not service_amount.is_finite():
            raise PreconditionViolation(f"service_amount must be finite, got {service_amount}")
        if service_amount < 0:
            raise PreconditionViolation(f"service_amount must not be negative, got {service_amount}")
        if not isinstance(calculation_date, date) or isinstance(calculation_date, datetime):
            raise PreconditionViolation(
                f"calculation_date must be a date, got {calculation_date!r}"
            )

    def check_batch_shape(
        self,
        service_ids: Optional[Sequence[Any]],
        service_amounts: Optional[Sequence[Any]],
    ) -> Optional[str]:
        """
        Check the two service lists line up.

        Returns:
            Failure reason, or None when the batch can be calculated

        Raises:
            PreconditionViolation: Either list is None
        """
        if service_ids is None or service_amounts is None:
            raise PreconditionViolation("service_ids and service_amounts are required")
        if len(service_ids) != len(service_amounts):
            return (
                f"Service ids ({len(service_ids)}) and service amounts "
                f"({len(service_amounts)}) have different lengths"
            )
        if not service_ids:
            return "No services to calculate"
        return None

    def validate_service(
        self,
        service_result: ServiceCalculationResult,
        patient_exists: bool,
        insurances: ActiveInsurances,
    ) -> bool:
        """
        Validate one service before its layers are applied.

        Failures are attached to ``service_result`` as warnings and the
        result is moved to the FAILED stage.

        Args:
            service_result: Result being built for the service
            patient_exists: Whether the patient lookup found the patient
            insurances: Insurances active on the calculation date

        Returns:
            True if the service can be calculated
        """
        amount = service_result.service_amount

        if amount == 0:
            service_result.add_warning(WarningCode.INVALID_AMOUNT, "Service amount must be greater than zero")
        elif amount > self.settings.MAX_SERVICE_AMOUNT:
            service_result.add_warning(
                WarningCode.AMOUNT_EXCEEDS_LIMIT,
                f"Service amount {amount} exceeds the maximum of {self.settings.MAX_SERVICE_AMOUNT}",
            )

        if not patient_exists:
            service_result.add_warning(
                WarningCode.PATIENT_NOT_FOUND,
                f"Patient {insurances.patient_id} not found",
            )
        elif not insurances.has_active:
            service_result.add_warning(
                WarningCode.NO_ACTIVE_INSURANCE,
                f"No active insurance on {insurances.calculation_date.isoformat()}",
            )
        elif insurances.has_primary_conflict and self.settings.rejects_primary_conflicts:
            service_result.add_warning(
                WarningCode.MULTIPLE_PRIMARY_INSURANCES,
                f"{len(insurances.conflicting_primaries)} active primary insurances; "
                "conflicting primaries are rejected",
            )

        if service_result.warnings:
            logger.info(
                f"Service {service_result.service_id} failed validation: "
                + ", ".join(w.code.value for w in service_result.warnings)
            )
            service_result.fail()
            return False

        service_result.stage = CalculationStage.PRIMARY_LAYER
        return True
