"""
Combined Insurance Calculator.

Calculates how a patient's primary and supplementary insurances share the
cost of one or more clinical services:
- Batch shape and precondition checks
- Per-service validation
- Primary layer on the full service amount
- Supplementary layers on the running residual
- Batch totals and failure aggregation

Also compares alternative primary plans and lists active insurances.
"""

import asyncio
from collections.abc import Sequence
from datetime import date
from decimal import Decimal
from typing import Any, Optional

from coverage_engine.core.config import CoverageSettings, get_coverage_settings
from coverage_engine.core.enums import CalculationStage, LayerType, WarningCode
from coverage_engine.schemas.calculation import (
    ActiveInsurances,
    CombinedCalculationResult,
    InsuranceOptionComparison,
    LayerResult,
    ServiceCalculationResult,
)
from coverage_engine.schemas.insurance import (
    InsurancePlan,
    PatientInsurance,
    PatientProfile,
)
from coverage_engine.schemas.rules import CalculationContext
from coverage_engine.services.business_rules import (
    BusinessRuleEvaluator,
    get_business_rule_evaluator,
)
from coverage_engine.services.layer_calculator import SingleLayerCalculator
from coverage_engine.services.lookups import (
    BatchLookupCache,
    BusinessRuleLookup,
    InMemoryInsuranceRepository,
    PatientInsuranceLookup,
    PatientLookup,
    PlanLookup,
    ServiceLookup,
    TariffLookup,
    guarded_lookup,
)
from coverage_engine.services.tariff_resolver import TariffResolver, tariff_of
from coverage_engine.services.validation_gate import ValidationGate, select_insurances
from coverage_engine.utils.errors import LookupUnavailableError
from coverage_engine.utils.logging import get_logger

logger = get_logger(__name__)

# Enrollment id used for the virtual primary in option comparisons
VIRTUAL_INSURANCE_ID = 0


class CombinedInsuranceCalculator:
    """
    Multi-layer coverage calculation engine.

    Stateless between calls: every batch gets its own lookup cache, so the
    same inputs over an unchanged snapshot always produce the same result.
    """

    def __init__(
        self,
        plan_lookup: PlanLookup,
        tariff_lookup: TariffLookup,
        insurance_lookup: PatientInsuranceLookup,
        rule_lookup: BusinessRuleLookup,
        patient_lookup: Optional[PatientLookup] = None,
        service_lookup: Optional[ServiceLookup] = None,
        settings: Optional[CoverageSettings] = None,
        rule_evaluator: Optional[BusinessRuleEvaluator] = None,
        layer_calculator: Optional[SingleLayerCalculator] = None,
        validation_gate: Optional[ValidationGate] = None,
    ):
        """
        Initialize combined calculator.

        Args:
            plan_lookup: Plan source
            tariff_lookup: Tariff source
            insurance_lookup: Patient enrollment source
            rule_lookup: Business rule source
            patient_lookup: Optional patient identity source (existence, age, gender)
            service_lookup: Optional service master data source (category)
            settings: Optional settings (defaults to the cached instance)
            rule_evaluator: Optional business rule evaluator
            layer_calculator: Optional single layer calculator
            validation_gate: Optional validation gate
        """
        self.plan_lookup = plan_lookup
        self.tariff_lookup = tariff_lookup
        self.insurance_lookup = insurance_lookup
        self.rule_lookup = rule_lookup
        self.patient_lookup = patient_lookup
        self.service_lookup = service_lookup

        self.settings = settings or get_coverage_settings()
        self.rule_evaluator = rule_evaluator or get_business_rule_evaluator()
        self.layer_calculator = layer_calculator or SingleLayerCalculator(self.settings)
        self.validation_gate = validation_gate or ValidationGate(self.settings)

    @classmethod
    def from_repository(
        cls,
        repository: InMemoryInsuranceRepository,
        settings: Optional[CoverageSettings] = None,
    ) -> "CombinedInsuranceCalculator":
        """Build a calculator whose every lookup is served by one repository."""
        return cls(
            plan_lookup=repository,
            tariff_lookup=repository,
            insurance_lookup=repository,
            rule_lookup=repository,
            patient_lookup=repository,
            service_lookup=repository,
            settings=settings,
        )

    # =========================================================================
    # Public API
    # =========================================================================

    async def calculate_combined_insurance(
        self,
        patient_id: int,
        service_id: int,
        service_amount: Decimal,
        calculation_date: date,
    ) -> CombinedCalculationResult:
        """
        Calculate combined coverage for a single service.

        Returns:
            CombinedCalculationResult with one per-service entry
        """
        return await self.calculate_combined_insurance_for_services(
            patient_id, [service_id], [service_amount], calculation_date
        )

    async def calculate_combined_insurance_for_services(
        self,
        patient_id: int,
        service_ids: Sequence[int],
        service_amounts: Sequence[Decimal],
        calculation_date: date,
    ) -> CombinedCalculationResult:
        """
        Calculate combined coverage for a batch of services.

        Args:
            patient_id: Patient receiving the services
            service_ids: Services, paired by position with service_amounts
            service_amounts: Gross amount of each service
            calculation_date: Date that selects insurances, tariffs and rules

        Returns:
            CombinedCalculationResult; success is False when the batch is
            malformed, every service failed validation, or a lookup
            collaborator was unreachable

        Raises:
            PreconditionViolation: None, wrongly typed or negative inputs
        """
        return await self._run(patient_id, service_ids, service_amounts, calculation_date)

    async def compare_insurance_options(
        self,
        patient_id: int,
        service_id: int,
        service_amount: Decimal,
        calculation_date: date,
        alternative_plan_ids: Sequence[int],
    ) -> list[InsuranceOptionComparison]:
        """
        Compare the current coverage with alternative primary plans.

        Each alternative replaces the patient's primary insurance with a
        virtual enrollment in that plan; supplementary insurances are kept.

        Returns:
            The current option first, then one entry per alternative plan
        """
        current = await self.calculate_combined_insurance(
            patient_id, service_id, service_amount, calculation_date
        )
        comparisons = [
            InsuranceOptionComparison(
                label="current",
                primary_plan_id=_primary_plan_of(current),
                result=current,
            )
        ]

        for plan_id in alternative_plan_ids:
            result = await self._run(
                patient_id,
                [service_id],
                [service_amount],
                calculation_date,
                replace_primary_plan_id=plan_id,
            )
            comparisons.append(InsuranceOptionComparison(
                label=f"plan {plan_id}",
                primary_plan_id=plan_id,
                result=result,
            ))

        logger.info(
            f"Compared {len(comparisons)} insurance options for patient {patient_id}, "
            f"service {service_id}"
        )
        return comparisons

    async def get_active_insurances(
        self,
        patient_id: int,
        calculation_date: date,
    ) -> ActiveInsurances:
        """
        List the patient's insurances active on a date, in layer order.

        Raises:
            LookupUnavailableError: The insurance lookup could not be reached
        """
        insurances = await self._load_insurances(patient_id, calculation_date)
        return select_insurances(insurances, patient_id, calculation_date)

    # =========================================================================
    # Batch Pipeline
    # =========================================================================

    async def _run(
        self,
        patient_id: int,
        service_ids: Sequence[Any],
        service_amounts: Sequence[Any],
        calculation_date: date,
        replace_primary_plan_id: Optional[int] = None,
    ) -> CombinedCalculationResult:
        """Check the call, run the batch and map collaborator failures."""
        shape_error = self.validation_gate.check_batch_shape(service_ids, service_amounts)
        if shape_error:
            logger.warning(f"Rejected batch for patient {patient_id}: {shape_error}")
            return CombinedCalculationResult.failed(patient_id, calculation_date, shape_error)

        service_ids = list(service_ids)
        service_amounts = list(service_amounts)
        for service_id, amount in zip(service_ids, service_amounts):
            self.validation_gate.check_preconditions(patient_id, service_id, amount, calculation_date)

        logger.info(
            f"Calculating combined coverage: patient={patient_id}, "
            f"services={len(service_ids)}, date={calculation_date.isoformat()}"
        )

        try:
            result = await self._calculate_batch(
                patient_id,
                service_ids,
                [Decimal(a) for a in service_amounts],
                calculation_date,
                replace_primary_plan_id,
            )
        except LookupUnavailableError as e:
            logger.error(f"Coverage calculation failed for patient {patient_id}: {e.detail}")
            return CombinedCalculationResult.failed(patient_id, calculation_date, e.detail)

        logger.info(
            f"Combined coverage calculated: patient={patient_id}, success={result.success}, "
            f"coverage={result.total_insurance_coverage}, "
            f"patient_share={result.total_patient_share}"
        )
        return result

    async def _calculate_batch(
        self,
        patient_id: int,
        service_ids: list[int],
        service_amounts: list[Decimal],
        calculation_date: date,
        replace_primary_plan_id: Optional[int],
    ) -> CombinedCalculationResult:
        cache = BatchLookupCache(self.plan_lookup, self.tariff_lookup, self.rule_lookup)

        insurances = await self._load_insurances(patient_id, calculation_date)
        if replace_primary_plan_id is not None:
            insurances = _with_virtual_primary(
                insurances, patient_id, replace_primary_plan_id, calculation_date
            )
        selection = select_insurances(insurances, patient_id, calculation_date)

        patient_exists, patient = await self._load_patient(patient_id)

        result = CombinedCalculationResult(
            patient_id=patient_id,
            calculation_date=calculation_date,
            warnings=list(selection.warnings),
        )

        pairs = list(zip(service_ids, service_amounts))
        if self.settings.PARALLEL_SERVICE_EVALUATION and len(pairs) > 1:
            outcomes = await asyncio.gather(
                *(
                    self._calculate_service(cache, selection, patient_exists, patient, sid, amount)
                    for sid, amount in pairs
                ),
                return_exceptions=True,
            )
            for outcome in outcomes:
                if isinstance(outcome, BaseException):
                    raise outcome
            result.per_service = list(outcomes)
        else:
            for sid, amount in pairs:
                result.per_service.append(
                    await self._calculate_service(cache, selection, patient_exists, patient, sid, amount)
                )

        result.calculate_totals()
        return result

    async def _calculate_service(
        self,
        cache: BatchLookupCache,
        selection: ActiveInsurances,
        patient_exists: bool,
        patient: Optional[PatientProfile],
        service_id: int,
        service_amount: Decimal,
    ) -> ServiceCalculationResult:
        """Run one service through validation and every layer."""
        service_result = ServiceCalculationResult(
            service_id=service_id,
            service_amount=service_amount,
        )

        if not self.validation_gate.validate_service(service_result, patient_exists, selection):
            return service_result

        context = await self._build_context(
            selection.patient_id, service_id, service_amount, selection.calculation_date, patient
        )
        remaining = service_amount

        # Primary layer (self-pay when there is none)
        if selection.primary is not None:
            layer = await self._apply_insurance_layer(
                cache, context, selection.primary, LayerType.PRIMARY, remaining, service_result
            )
            if layer is not None:
                service_result.layers.append(layer)
                remaining = layer.residual_after_layer

        # Supplementary layers on the running residual
        for insurance in selection.supplementary:
            if remaining <= 0:
                break
            service_result.stage = CalculationStage.SUPPLEMENTARY_LAYER
            layer = await self._apply_insurance_layer(
                cache, context, insurance, LayerType.SUPPLEMENTARY, remaining, service_result
            )
            if layer is not None:
                service_result.layers.append(layer)
                remaining = layer.residual_after_layer

        service_result.finalize(remaining)
        return service_result

    async def _apply_insurance_layer(
        self,
        cache: BatchLookupCache,
        context: CalculationContext,
        insurance: PatientInsurance,
        layer_type: LayerType,
        remaining: Decimal,
        service_result: ServiceCalculationResult,
    ) -> Optional[LayerResult]:
        """
        Apply one enrollment's plan to the remaining amount.

        Returns:
            LayerResult, or None when the plan cannot take part (warning added)
        """
        plan = await cache.get_plan(insurance.plan_id)
        if not self._plan_is_eligible(plan, insurance, layer_type, context, service_result):
            return None

        resolution = await TariffResolver(cache).resolve(
            plan.plan_id, context.service_id, context.calculation_date
        )
        service_result.warnings.extend(resolution.warnings)
        if not resolution.found:
            service_result.add_warning(
                WarningCode.TARIFF_NOT_FOUND,
                f"No tariff for plan {plan.plan_id}; using plan default "
                f"{plan.default_coverage_percent}%",
                plan_id=plan.plan_id,
            )

        rules = await cache.get_rules(plan.plan_id, context.service_id, context.calculation_date)
        outcome = self.rule_evaluator.evaluate(context.for_layer(plan.plan_id, layer_type), rules)
        for warning in outcome.warnings:
            logger.warning(warning.message)
        service_result.warnings.extend(outcome.warnings)

        return self.layer_calculator.apply_layer(
            remaining_amount=remaining,
            plan=plan,
            tariff=tariff_of(resolution),
            rule_outcome=outcome,
            layer_type=layer_type,
            patient_insurance_id=insurance.patient_insurance_id,
        )

    def _plan_is_eligible(
        self,
        plan: Optional[InsurancePlan],
        insurance: PatientInsurance,
        layer_type: LayerType,
        context: CalculationContext,
        service_result: ServiceCalculationResult,
    ) -> bool:
        """Check the plan can act as this layer for this service."""
        if plan is None:
            code = WarningCode.PLAN_NOT_FOUND
            message = f"Plan {insurance.plan_id} of insurance {insurance.patient_insurance_id} not found"
        elif not plan.is_valid_on(context.calculation_date):
            code = WarningCode.PLAN_INACTIVE
            message = f"Plan {plan.plan_id} is not active on {context.calculation_date.isoformat()}"
        elif layer_type == LayerType.PRIMARY and not plan.is_primary_capable:
            code = WarningCode.PLAN_ROLE_MISMATCH
            message = f"Plan {plan.plan_id} cannot act as a primary insurance"
        elif layer_type == LayerType.SUPPLEMENTARY and not plan.is_supplementary_capable:
            code = WarningCode.PLAN_ROLE_MISMATCH
            message = f"Plan {plan.plan_id} cannot act as a supplementary insurance"
        elif not plan.covers_service(context.service_id):
            code = WarningCode.SERVICE_NOT_COVERED
            message = f"Plan {plan.plan_id} does not cover service {context.service_id}"
        else:
            return True

        logger.warning(f"Skipping {layer_type.value} layer: {message}")
        service_result.add_warning(code, message, plan_id=insurance.plan_id)
        return False

    # =========================================================================
    # Lookups
    # =========================================================================

    async def _load_insurances(self, patient_id: int, on_date: date) -> list[PatientInsurance]:
        insurances = await guarded_lookup(
            "patient_insurance",
            lambda: self.insurance_lookup.get_patient_insurances(patient_id, on_date),
        )
        return list(insurances or [])

    async def _load_patient(self, patient_id: int) -> tuple[bool, Optional[PatientProfile]]:
        """Patient existence and profile; unknown when no patient lookup is wired."""
        if self.patient_lookup is None:
            return True, None
        patient = await guarded_lookup(
            "patient", lambda: self.patient_lookup.get_patient(patient_id)
        )
        return patient is not None, patient

    async def _build_context(
        self,
        patient_id: int,
        service_id: int,
        service_amount: Decimal,
        calculation_date: date,
        patient: Optional[PatientProfile],
    ) -> CalculationContext:
        """Collect the facts business rules may test."""
        service_category_id = None
        if self.service_lookup is not None:
            service = await guarded_lookup(
                "service", lambda: self.service_lookup.get_service(service_id)
            )
            if service is not None:
                service_category_id = service.service_category_id

        return CalculationContext(
            patient_id=patient_id,
            service_id=service_id,
            service_amount=service_amount,
            calculation_date=calculation_date,
            patient_age=patient.age_on(calculation_date) if patient else None,
            patient_gender=patient.gender.strip().lower() if patient and patient.gender else None,
            service_category_id=service_category_id,
        )


# =============================================================================
# Helpers
# =============================================================================


def _with_virtual_primary(
    insurances: list[PatientInsurance],
    patient_id: int,
    plan_id: int,
    on_date: date,
) -> list[PatientInsurance]:
    """Replace every primary enrollment with one in ``plan_id``."""
    virtual = PatientInsurance(
        patient_insurance_id=VIRTUAL_INSURANCE_ID,
        patient_id=patient_id,
        plan_id=plan_id,
        is_primary=True,
        priority=0,
        valid_from=on_date,
    )
    return [virtual] + [i for i in insurances if not i.is_primary]


def _primary_plan_of(result: CombinedCalculationResult) -> Optional[int]:
    """Plan id of the first primary layer in a result."""
    for service in result.per_service:
        for layer in service.layers:
            if layer.layer_type == LayerType.PRIMARY:
                return layer.plan_id
    return None
