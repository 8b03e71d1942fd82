"""
Pytest Configuration and Fixtures.
Shared test fixtures for all test modules.
"""

from datetime import date
from decimal import Decimal
from typing import Optional

import pytest

from coverage_engine.core.config import CoverageSettings
from coverage_engine.schemas.insurance import (
    InsurancePlan,
    InsuranceTariff,
    PatientInsurance,
    PatientProfile,
    ServiceProfile,
)
from coverage_engine.services.combined_calculator import CombinedInsuranceCalculator
from coverage_engine.services.lookups import InMemoryInsuranceRepository

CALCULATION_DATE = date(2025, 3, 15)
PATIENT_ID = 1001
SERVICE_ID = 501
PRIMARY_PLAN_ID = 10
SUPPLEMENTARY_PLAN_ID = 20


@pytest.fixture
def calculation_date() -> date:
    return CALCULATION_DATE


@pytest.fixture
def settings() -> CoverageSettings:
    """Default settings, isolated from any local .env file."""
    return CoverageSettings(_env_file=None)


@pytest.fixture
def primary_plan() -> InsurancePlan:
    """Basic plan covering 70% by default."""
    return InsurancePlan(
        plan_id=PRIMARY_PLAN_ID,
        provider_id=1,
        name="Basic Health",
        default_coverage_percent=Decimal("70"),
    )


@pytest.fixture
def supplementary_plan() -> InsurancePlan:
    """Top-up plan covering 50% of the residual by default."""
    return InsurancePlan(
        plan_id=SUPPLEMENTARY_PLAN_ID,
        provider_id=2,
        name="Complementary Plus",
        default_coverage_percent=Decimal("50"),
        is_primary_capable=False,
        is_supplementary_capable=True,
    )


@pytest.fixture
def make_insurance():
    """Factory for patient enrollments."""

    def _make(
        patient_insurance_id: int,
        plan_id: int,
        is_primary: bool,
        priority: int = 1,
        valid_from: date = date(2024, 1, 1),
        valid_to: Optional[date] = None,
        is_active: bool = True,
        patient_id: int = PATIENT_ID,
    ) -> PatientInsurance:
        return PatientInsurance(
            patient_insurance_id=patient_insurance_id,
            patient_id=patient_id,
            plan_id=plan_id,
            policy_number=f"POL-{patient_insurance_id:05d}",
            is_primary=is_primary,
            priority=priority,
            valid_from=valid_from,
            valid_to=valid_to,
            is_active=is_active,
        )

    return _make


@pytest.fixture
def make_tariff():
    """Factory for tariffs valid from 2024 onwards."""

    def _make(tariff_id: int, plan_id: int, service_id: Optional[int] = SERVICE_ID, **kwargs) -> InsuranceTariff:
        kwargs.setdefault("valid_from", date(2024, 1, 1))
        return InsuranceTariff(tariff_id=tariff_id, plan_id=plan_id, service_id=service_id, **kwargs)

    return _make


@pytest.fixture
def repository(primary_plan, supplementary_plan) -> InMemoryInsuranceRepository:
    """Snapshot with both plans, one patient and one service; no enrollments."""
    repo = InMemoryInsuranceRepository()
    repo.add_plan(primary_plan)
    repo.add_plan(supplementary_plan)
    repo.add_patient(PatientProfile(patient_id=PATIENT_ID, birth_date=date(1980, 6, 1), gender="F"))
    repo.add_service(ServiceProfile(service_id=SERVICE_ID, name="MRI Scan", service_category_id=7))
    return repo


@pytest.fixture
def insured_repository(repository, make_insurance, make_tariff) -> InMemoryInsuranceRepository:
    """Patient with a 70% primary and a 50% supplementary insurance."""
    repository.add_patient_insurance(make_insurance(1, PRIMARY_PLAN_ID, is_primary=True))
    repository.add_patient_insurance(make_insurance(2, SUPPLEMENTARY_PLAN_ID, is_primary=False))
    repository.add_tariff(make_tariff(100, PRIMARY_PLAN_ID, coverage_percent_override=Decimal("70")))
    repository.add_tariff(make_tariff(200, SUPPLEMENTARY_PLAN_ID, supplementary_coverage_percent=Decimal("50")))
    return repository


@pytest.fixture
def calculator(insured_repository, settings) -> CombinedInsuranceCalculator:
    return CombinedInsuranceCalculator.from_repository(insured_repository, settings=settings)


# Configure pytest markers
def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )
