"""
Pydantic Schemas for Coverage Calculation Results.

Results are pure data: they carry no timestamps or timings, so identical
inputs over an unchanged snapshot serialize to identical JSON.
"""

from datetime import date
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field
from pydantic.alias_generators import to_camel

from coverage_engine.core.enums import CalculationStage, LayerType, WarningCode
from coverage_engine.schemas.insurance import PatientInsurance
from coverage_engine.utils.money import ZERO, ratio_percent


class ResultModel(BaseModel):
    """Base for result schemas; serializes with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =============================================================================
# Warnings
# =============================================================================


class CalculationWarning(ResultModel):
    """Non-fatal condition surfaced to the caller."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    code: WarningCode
    message: str
    service_id: Optional[int] = None
    plan_id: Optional[int] = None
    rule_id: Optional[int] = None


# =============================================================================
# Layer & Service Results
# =============================================================================


class LayerResult(ResultModel):
    """Contribution of one insurance layer to one service."""

    layer_type: LayerType
    plan_id: int
    patient_insurance_id: Optional[int] = None
    tariff_id: Optional[int] = None

    amount_received: Decimal = Field(..., ge=0, description="Amount handed to this layer")
    deductible_applied: Decimal = Field(default=ZERO, ge=0)
    coverage_percent: Optional[Decimal] = Field(None, description="Effective percent, None for veto/fixed")

    covered_amount: Decimal = Field(..., ge=0)
    residual_after_layer: Decimal = Field(..., ge=0)

    applied_rule_id: Optional[int] = None
    capped_by_max_payment: bool = False


class ServiceCalculationResult(ResultModel):
    """Coverage breakdown for a single service."""

    service_id: int
    service_amount: Decimal

    total_insurance_coverage: Decimal = ZERO
    final_patient_share: Decimal = ZERO

    layers: list[LayerResult] = Field(default_factory=list)
    warnings: list[CalculationWarning] = Field(default_factory=list)

    stage: CalculationStage = CalculationStage.VALIDATING

    @computed_field  # type: ignore[prop-decorator]
    @property
    def coverage_percent(self) -> Decimal:
        """Share of the service amount covered by insurance."""
        return ratio_percent(self.total_insurance_coverage, self.service_amount)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def patient_share_percent(self) -> Decimal:
        """Share of the service amount paid by the patient."""
        return ratio_percent(self.final_patient_share, self.service_amount)

    @property
    def failed_validation(self) -> bool:
        """Check if the service stopped at the validation stage."""
        return self.stage == CalculationStage.FAILED

    def add_warning(
        self,
        code: WarningCode,
        message: str,
        plan_id: Optional[int] = None,
        rule_id: Optional[int] = None,
    ) -> None:
        """Attach a warning to this service."""
        self.warnings.append(CalculationWarning(
            code=code,
            message=message,
            service_id=self.service_id,
            plan_id=plan_id,
            rule_id=rule_id,
        ))

    def finalize(self, final_residual: Decimal) -> None:
        """Close the pipeline with the last layer's residual."""
        self.final_patient_share = final_residual
        self.total_insurance_coverage = self.service_amount - final_residual
        self.stage = CalculationStage.FINALIZED

    def fail(self) -> None:
        """Record a validation failure: zero coverage, patient pays all."""
        self.layers = []
        self.total_insurance_coverage = ZERO
        self.final_patient_share = self.service_amount
        self.stage = CalculationStage.FAILED


class CombinedCalculationResult(ResultModel):
    """Combined (multi-layer, multi-service) calculation result."""

    patient_id: int
    calculation_date: date

    per_service: list[ServiceCalculationResult] = Field(default_factory=list)

    total_patient_share: Decimal = ZERO
    total_insurance_coverage: Decimal = ZERO

    success: bool = True
    failure_reason: Optional[str] = None

    # Batch-level anomalies (e.g. overlapping primary insurances)
    warnings: list[CalculationWarning] = Field(default_factory=list)

    def calculate_totals(self) -> None:
        """Calculate totals and batch success from per-service results."""
        self.total_patient_share = sum((r.final_patient_share for r in self.per_service), ZERO)
        self.total_insurance_coverage = sum(
            (r.total_insurance_coverage for r in self.per_service), ZERO
        )

        failed = [r for r in self.per_service if r.failed_validation]
        if self.per_service and len(failed) == len(self.per_service):
            self.success = False
            self.failure_reason = "; ".join(
                f"service {r.service_id}: " + ", ".join(w.message for w in r.warnings)
                for r in failed
            )

    @classmethod
    def failed(cls, patient_id: int, calculation_date: date, reason: str) -> "CombinedCalculationResult":
        """Build a whole-batch failure with no per-service results."""
        return cls(
            patient_id=patient_id,
            calculation_date=calculation_date,
            success=False,
            failure_reason=reason,
        )

    def to_response(self) -> dict[str, Any]:
        """JSON-ready dict with camelCase keys and decimals as strings."""
        return self.model_dump(mode="json", by_alias=True)


class InsuranceOptionComparison(ResultModel):
    """One entry of an insurance option comparison."""

    label: str
    primary_plan_id: Optional[int] = None
    result: CombinedCalculationResult

    @property
    def patient_share(self) -> Decimal:
        """Total patient share under this option."""
        return self.result.total_patient_share


class ActiveInsurances(ResultModel):
    """A patient's insurances active on a date, in layer order."""

    patient_id: int
    calculation_date: date

    primary: Optional[PatientInsurance] = None
    supplementary: list[PatientInsurance] = Field(default_factory=list)

    # Every active primary when more than one was found
    conflicting_primaries: list[PatientInsurance] = Field(default_factory=list)
    warnings: list[CalculationWarning] = Field(default_factory=list)

    @property
    def has_active(self) -> bool:
        """Check if any insurance is active on the date."""
        return self.primary is not None or bool(self.supplementary)

    @property
    def has_primary_conflict(self) -> bool:
        return len(self.conflicting_primaries) > 1
