"""
Single Layer Calculator.

Applies one insurance plan to the amount it receives:
- Veto short-circuit
- Deductible application
- Coverage percent selection (rule, tariff, plan default)
- Supplementary max-payment cap
- Fixed insurer amounts

Pure arithmetic: no lookups, no state. Rounding happens once per layer.
"""

from decimal import Decimal
from typing import Optional

from coverage_engine.core.config import CoverageSettings, get_coverage_settings
from coverage_engine.core.enums import LayerType
from coverage_engine.schemas.calculation import LayerResult
from coverage_engine.schemas.insurance import InsurancePlan, InsuranceTariff
from coverage_engine.schemas.rules import RuleOutcome
from coverage_engine.utils.errors import PreconditionViolation
from coverage_engine.utils.logging import get_logger
from coverage_engine.utils.money import ZERO, clamp_percent, percent_of, round_currency

logger = get_logger(__name__)


class SingleLayerCalculator:
    """
    Computes the covered portion and residual of one insurance layer.

    For every result: ``0 <= covered_amount <= amount_received`` and
    ``residual_after_layer == amount_received - covered_amount``.
    """

    def __init__(self, settings: Optional[CoverageSettings] = None):
        """
        Initialize layer calculator.

        Args:
            settings: Optional settings (defaults to the cached instance)
        """
        self.settings = settings or get_coverage_settings()

    def apply_layer(
        self,
        remaining_amount: Decimal,
        plan: InsurancePlan,
        tariff: Optional[InsuranceTariff],
        rule_outcome: RuleOutcome,
        layer_type: LayerType,
        patient_insurance_id: Optional[int] = None,
    ) -> LayerResult:
        """
        Apply one plan to the amount it receives.

        Args:
            remaining_amount: Service amount (primary) or previous residual
            plan: Plan of this layer
            tariff: Resolved tariff, None when no tariff applies
            rule_outcome: Business rule outcome for this layer
            layer_type: Primary or supplementary
            patient_insurance_id: Enrollment the plan was reached through

        Returns:
            LayerResult for this layer

        Raises:
            PreconditionViolation: remaining_amount is negative
        """
        if remaining_amount < 0:
            raise PreconditionViolation(f"Layer received a negative amount: {remaining_amount}")

        result = LayerResult(
            layer_type=layer_type,
            plan_id=plan.plan_id,
            patient_insurance_id=patient_insurance_id,
            tariff_id=tariff.tariff_id if tariff else None,
            amount_received=remaining_amount,
            covered_amount=ZERO,
            residual_after_layer=remaining_amount,
            applied_rule_id=rule_outcome.rule_id if rule_outcome.matched else None,
        )

        # Step 1: Veto
        if rule_outcome.is_veto:
            logger.debug(
                f"Layer vetoed: plan={plan.plan_id}, rule={rule_outcome.rule_id}, "
                f"layer={layer_type.value}"
            )
            return result

        # Step 2: Deductible
        deductible = self._get_deductible(plan, tariff, rule_outcome, layer_type)
        result.deductible_applied = min(deductible, remaining_amount)
        payable = remaining_amount - result.deductible_applied

        # Step 3: Coverage
        fixed_amount = rule_outcome.fixed_amount
        if fixed_amount is not None:
            covered = round_currency(min(fixed_amount, payable), self.settings)
        else:
            percent = self.resolve_coverage_percent(plan, tariff, rule_outcome, layer_type)
            result.coverage_percent = percent
            covered = round_currency(percent_of(payable, percent), self.settings)

            # Step 4: Supplementary cap
            max_payment = self._get_max_payment(tariff, layer_type)
            if max_payment is not None and covered > max_payment:
                covered = max_payment
                result.capped_by_max_payment = True

        # Rounding may push past the payable amount on fractional inputs
        covered = max(ZERO, min(covered, payable))

        result.covered_amount = covered
        result.residual_after_layer = remaining_amount - covered

        logger.debug(
            f"Layer applied: plan={plan.plan_id}, layer={layer_type.value}, "
            f"received={remaining_amount}, deductible={result.deductible_applied}, "
            f"percent={result.coverage_percent}, covered={covered}, "
            f"capped={result.capped_by_max_payment}"
        )
        return result

    def resolve_coverage_percent(
        self,
        plan: InsurancePlan,
        tariff: Optional[InsuranceTariff],
        rule_outcome: RuleOutcome,
        layer_type: LayerType,
    ) -> Decimal:
        """
        Pick the coverage percent for a layer.

        Order: rule override, supplementary tariff percent (supplementary
        layers only), tariff override, plan default. Clamped to 0-100.
        """
        if rule_outcome.coverage_percent is not None:
            return clamp_percent(rule_outcome.coverage_percent)

        if tariff is not None:
            if (
                layer_type == LayerType.SUPPLEMENTARY
                and tariff.supplementary_coverage_percent is not None
            ):
                return clamp_percent(tariff.supplementary_coverage_percent)
            if tariff.coverage_percent_override is not None:
                return clamp_percent(tariff.coverage_percent_override)

        return clamp_percent(plan.default_coverage_percent)

    def _get_deductible(
        self,
        plan: InsurancePlan,
        tariff: Optional[InsuranceTariff],
        rule_outcome: RuleOutcome,
        layer_type: LayerType,
    ) -> Decimal:
        """
        Rule deductible, else the plan deductible.

        The plan deductible only applies to a primary layer priced without a
        tariff; tariff prices already include it.
        """
        if rule_outcome.deductible is not None:
            return max(ZERO, rule_outcome.deductible)
        if (
            self.settings.APPLY_PLAN_DEDUCTIBLE
            and layer_type == LayerType.PRIMARY
            and tariff is None
        ):
            return max(ZERO, plan.deductible)
        return ZERO

    def _get_max_payment(
        self,
        tariff: Optional[InsuranceTariff],
        layer_type: LayerType,
    ) -> Optional[Decimal]:
        if layer_type != LayerType.SUPPLEMENTARY or tariff is None:
            return None
        return tariff.supplementary_max_payment
