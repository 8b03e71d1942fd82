"""
Lookup Collaborators.

Read-only query interfaces the engine consumes:
- Plans, tariffs, patient insurances and business rules
- Black-box patient and service identity lookups

Also provides the per-batch read-through cache and an in-memory snapshot
repository used for demo mode and tests.
"""

from collections.abc import Awaitable, Callable, Iterable, Mapping
from datetime import date
from typing import Any, Optional, Protocol, TypeVar

from coverage_engine.schemas.calculation import CalculationWarning
from coverage_engine.schemas.insurance import (
    InsurancePlan,
    InsuranceTariff,
    PatientInsurance,
    PatientProfile,
    ServiceProfile,
)
from coverage_engine.schemas.rules import BusinessRule
from coverage_engine.services.business_rules import load_business_rules
from coverage_engine.utils.errors import CoverageEngineError, LookupUnavailableError
from coverage_engine.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


# =============================================================================
# Collaborator Protocols
# =============================================================================


class PlanLookup(Protocol):
    async def get_plan(self, plan_id: int) -> Optional[InsurancePlan]:
        ...


class TariffLookup(Protocol):
    async def get_tariffs(
        self, plan_id: int, service_id: int, on_date: date
    ) -> list[InsuranceTariff]:
        ...


class PatientInsuranceLookup(Protocol):
    async def get_patient_insurances(
        self, patient_id: int, on_date: date
    ) -> list[PatientInsurance]:
        ...


class BusinessRuleLookup(Protocol):
    async def get_rules(
        self, plan_id: int, service_id: int, on_date: date
    ) -> list[BusinessRule]:
        ...


class PatientLookup(Protocol):
    async def get_patient(self, patient_id: int) -> Optional[PatientProfile]:
        ...


class ServiceLookup(Protocol):
    async def get_service(self, service_id: int) -> Optional[ServiceProfile]:
        ...


# =============================================================================
# Per-batch Read-through Cache
# =============================================================================


class BatchLookupCache:
    """
    Read-through cache living for exactly one calculation batch.

    Plan/tariff/rule lookups are pure functions of (plan, service, date), so
    one batch may reuse them. A new cache is built for every call; nothing is
    shared across calls or calculation dates. Collaborator failures are
    normalised to ``LookupUnavailableError``.
    """

    def __init__(
        self,
        plan_lookup: PlanLookup,
        tariff_lookup: TariffLookup,
        rule_lookup: BusinessRuleLookup,
    ):
        self.plan_lookup = plan_lookup
        self.tariff_lookup = tariff_lookup
        self.rule_lookup = rule_lookup

        self._plans: dict[int, Optional[InsurancePlan]] = {}
        self._tariffs: dict[tuple[int, int, date], list[InsuranceTariff]] = {}
        self._rules: dict[tuple[int, int, date], list[BusinessRule]] = {}

    async def get_plan(self, plan_id: int) -> Optional[InsurancePlan]:
        if plan_id not in self._plans:
            self._plans[plan_id] = await guarded_lookup(
                "plan", lambda: self.plan_lookup.get_plan(plan_id)
            )
        return self._plans[plan_id]

    async def get_tariffs(
        self, plan_id: int, service_id: int, on_date: date
    ) -> list[InsuranceTariff]:
        key = (plan_id, service_id, on_date)
        if key not in self._tariffs:
            self._tariffs[key] = list(await guarded_lookup(
                "tariff", lambda: self.tariff_lookup.get_tariffs(plan_id, service_id, on_date)
            ) or [])
        return self._tariffs[key]

    async def get_rules(
        self, plan_id: int, service_id: int, on_date: date
    ) -> list[BusinessRule]:
        key = (plan_id, service_id, on_date)
        if key not in self._rules:
            self._rules[key] = list(await guarded_lookup(
                "business_rule", lambda: self.rule_lookup.get_rules(plan_id, service_id, on_date)
            ) or [])
        return self._rules[key]

    @property
    def size(self) -> int:
        """Number of cached entries."""
        return len(self._plans) + len(self._tariffs) + len(self._rules)


async def guarded_lookup(name: str, call: Callable[[], Awaitable[T]]) -> T:
    """
    Await a collaborator call, normalising its failures.

    Any error raised by the collaborator (transport, driver, ORM) is wrapped;
    the engine's own errors pass through unchanged.

    Raises:
        LookupUnavailableError: The collaborator was unreachable or failed
    """
    try:
        return await call()
    except CoverageEngineError:
        raise
    except Exception as e:
        logger.error(f"{name} lookup failed: {type(e).__name__}: {e}")
        raise LookupUnavailableError(f"{name} lookup unavailable: {e}", lookup=name) from e


# =============================================================================
# In-memory Snapshot Repository
# =============================================================================


class InMemoryInsuranceRepository:
    """
    Snapshot repository implementing every lookup protocol.

    Used in demo mode and tests; production wires database-backed lookups.
    """

    def __init__(self):
        self._plans: dict[int, InsurancePlan] = {}
        self._tariffs: list[InsuranceTariff] = []
        self._insurances: list[PatientInsurance] = []
        self._rules: list[BusinessRule] = []
        self._patients: dict[int, PatientProfile] = {}
        self._services: dict[int, ServiceProfile] = {}

        # Rule records rejected at load time
        self.rejected_rules: list[CalculationWarning] = []

    # ---- population -------------------------------------------------------

    def add_plan(self, plan: InsurancePlan) -> None:
        """Add or replace a plan."""
        self._plans[plan.plan_id] = plan

    def add_tariff(self, tariff: InsuranceTariff) -> None:
        self._tariffs.append(tariff)

    def add_patient_insurance(self, insurance: PatientInsurance) -> None:
        self._insurances.append(insurance)

    def add_rule(self, rule: BusinessRule) -> None:
        self._rules.append(rule)

    def add_rule_records(self, records: Iterable[Mapping[str, Any]]) -> int:
        """
        Load raw rule records, keeping only valid ones.

        Returns number of rules loaded.
        """
        loaded = load_business_rules(records)
        self._rules.extend(loaded.rules)
        self.rejected_rules.extend(loaded.rejected)
        return len(loaded.rules)

    def add_patient(self, patient: PatientProfile) -> None:
        self._patients[patient.patient_id] = patient

    def add_service(self, service: ServiceProfile) -> None:
        self._services[service.service_id] = service

    # ---- lookups ----------------------------------------------------------

    async def get_plan(self, plan_id: int) -> Optional[InsurancePlan]:
        return self._plans.get(plan_id)

    async def get_tariffs(
        self, plan_id: int, service_id: int, on_date: date
    ) -> list[InsuranceTariff]:
        return [
            t for t in self._tariffs
            if t.plan_id == plan_id and (t.service_id is None or t.service_id == service_id)
        ]

    async def get_patient_insurances(
        self, patient_id: int, on_date: date
    ) -> list[PatientInsurance]:
        return [i for i in self._insurances if i.patient_id == patient_id]

    async def get_rules(
        self, plan_id: int, service_id: int, on_date: date
    ) -> list[BusinessRule]:
        return [r for r in self._rules if r.plan_id is None or r.plan_id == plan_id]

    async def get_patient(self, patient_id: int) -> Optional[PatientProfile]:
        return self._patients.get(patient_id)

    async def get_service(self, service_id: int) -> Optional[ServiceProfile]:
        return self._services.get(service_id)
