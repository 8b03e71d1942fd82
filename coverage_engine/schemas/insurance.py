"""
Pydantic Schemas for Insurance Reference Data.

Read-only snapshots of plans, tariffs, patient enrollments and identity data.
They are fetched from the persistence collaborators at the start of a
calculation, referenced by integer id and discarded afterwards.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


def is_within(on_date: date, valid_from: Optional[date], valid_to: Optional[date]) -> bool:
    """Check ``valid_from <= on_date <= valid_to`` with open ends treated as unbounded."""
    if valid_from is not None and on_date < valid_from:
        return False
    if valid_to is not None and on_date > valid_to:
        return False
    return True


class SnapshotModel(BaseModel):
    """Base for immutable reference snapshots."""

    model_config = ConfigDict(frozen=True)


# =============================================================================
# Plans & Enrollments
# =============================================================================


class InsurancePlan(SnapshotModel):
    """Insurance plan contract template (not a patient's enrollment)."""

    plan_id: int
    provider_id: int
    name: str = ""
    default_coverage_percent: Decimal = Field(..., ge=0, le=100, description="Default coverage %")
    deductible: Decimal = Field(default=Decimal("0"), ge=0, description="Per-service deductible")
    is_primary_capable: bool = True
    is_supplementary_capable: bool = False
    is_active: bool = True
    valid_from: Optional[date] = None
    valid_to: Optional[date] = None

    # Services the plan never pays for
    excluded_service_ids: frozenset[int] = Field(default_factory=frozenset)

    def is_valid_on(self, on_date: date) -> bool:
        """Check the plan is active and inside its validity window."""
        return self.is_active and is_within(on_date, self.valid_from, self.valid_to)

    def covers_service(self, service_id: int) -> bool:
        """Check the service is not excluded by this plan."""
        return service_id not in self.excluded_service_ids


class PatientInsurance(SnapshotModel):
    """A patient's enrollment in a plan."""

    patient_insurance_id: int
    patient_id: int
    plan_id: int
    policy_number: str = ""
    is_primary: bool = False
    priority: int = Field(default=1, description="Lower is applied first")
    valid_from: date
    valid_to: Optional[date] = Field(None, description="None means open-ended")
    is_active: bool = True

    def is_active_on(self, on_date: date) -> bool:
        """Check the enrollment is active on the given date."""
        return self.is_active and is_within(on_date, self.valid_from, self.valid_to)

    @property
    def ordering_key(self) -> tuple[int, date, int]:
        """Total order used for layer sequencing: priority, start date, id."""
        return (self.priority, self.valid_from, self.patient_insurance_id)


# =============================================================================
# Tariffs
# =============================================================================


class InsuranceTariff(SnapshotModel):
    """Plan- and service-specific price/coverage agreement."""

    tariff_id: int
    plan_id: int
    service_id: Optional[int] = Field(None, description="None applies to all services")

    price_override: Optional[Decimal] = Field(None, ge=0)
    patient_share: Optional[Decimal] = Field(None, ge=0)
    insurer_share: Optional[Decimal] = Field(None, ge=0)

    coverage_percent_override: Optional[Decimal] = Field(None, ge=0, le=100)
    supplementary_coverage_percent: Optional[Decimal] = Field(None, ge=0, le=100)
    supplementary_max_payment: Optional[Decimal] = Field(None, ge=0)

    valid_from: date
    valid_to: Optional[date] = None
    is_active: bool = True
    created_at: datetime = Field(default_factory=lambda: datetime(1970, 1, 1))

    @property
    def is_wildcard(self) -> bool:
        """Check the tariff applies to every service of its plan."""
        return self.service_id is None

    def is_valid_on(self, on_date: date) -> bool:
        """Check the tariff is active and inside its validity window."""
        return self.is_active and is_within(on_date, self.valid_from, self.valid_to)

    @model_validator(mode="after")
    def validate_window(self) -> "InsuranceTariff":
        """Reject tariffs whose validity window ends before it starts."""
        if self.valid_to is not None and self.valid_to < self.valid_from:
            raise ValueError("valid_to must not be earlier than valid_from")
        return self


# =============================================================================
# Identity Snapshots (black-box lookups)
# =============================================================================


class PatientProfile(SnapshotModel):
    """Patient identity data used by rule conditions."""

    patient_id: int
    birth_date: Optional[date] = None
    gender: Optional[str] = None

    def age_on(self, on_date: date) -> Optional[int]:
        """Age in whole years on the given date."""
        if self.birth_date is None:
            return None
        had_birthday = (on_date.month, on_date.day) >= (self.birth_date.month, self.birth_date.day)
        return on_date.year - self.birth_date.year - (0 if had_birthday else 1)


class ServiceProfile(SnapshotModel):
    """Clinical service master data used by rule conditions."""

    service_id: int
    name: str = ""
    service_category_id: Optional[int] = None
