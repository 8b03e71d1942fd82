"""
Pydantic Schemas for Business Rules.

Rule conditions are a closed set of typed variants, one per operator, over a
typed field enum. Raw persistence records are converted into these variants
at load time (see ``coverage_engine.services.business_rules``), so evaluation
never dispatches on operator strings.
"""

from datetime import date
from decimal import Decimal
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from coverage_engine.core.enums import ConditionField, ConditionOperator, LayerType, RuleType
from coverage_engine.schemas.calculation import CalculationWarning
from coverage_engine.schemas.insurance import is_within


# =============================================================================
# Calculation Context
# =============================================================================


class CalculationContext(BaseModel):
    """Facts a rule can test. Built fresh for every service."""

    model_config = ConfigDict(frozen=True)

    patient_id: int
    service_id: int
    service_amount: Decimal = Field(..., ge=0)
    calculation_date: date

    # Layer scope (set per layer via for_layer)
    plan_id: Optional[int] = None
    layer_type: Optional[LayerType] = None

    # Enrichment from identity lookups
    patient_age: Optional[int] = None
    patient_gender: Optional[str] = None
    service_category_id: Optional[int] = None

    def for_layer(self, plan_id: int, layer_type: LayerType) -> "CalculationContext":
        """Copy of this context scoped to one insurance layer."""
        return self.model_copy(update={"plan_id": plan_id, "layer_type": layer_type})

    def value_of(self, field: ConditionField) -> Any:
        """Current value of a condition field (None when unknown)."""
        return {
            ConditionField.SERVICE_AMOUNT: self.service_amount,
            ConditionField.SERVICE_ID: self.service_id,
            ConditionField.SERVICE_CATEGORY: self.service_category_id,
            ConditionField.PATIENT_ID: self.patient_id,
            ConditionField.PATIENT_AGE: self.patient_age,
            ConditionField.PATIENT_GENDER: self.patient_gender,
            ConditionField.PLAN_ID: self.plan_id,
            ConditionField.LAYER_TYPE: self.layer_type,
            ConditionField.CALCULATION_DATE: self.calculation_date,
        }[field]


# =============================================================================
# Conditions
# =============================================================================


class ConditionBase(BaseModel):
    """A single predicate clause."""

    model_config = ConfigDict(frozen=True)

    field: ConditionField

    def matches(self, actual: Any) -> bool:
        """Test the clause against a context value."""
        raise NotImplementedError


class EqualsCondition(ConditionBase):
    operator: Literal[ConditionOperator.EQUALS] = ConditionOperator.EQUALS
    value: Any

    def matches(self, actual: Any) -> bool:
        return actual == self.value


class NotEqualsCondition(ConditionBase):
    operator: Literal[ConditionOperator.NOT_EQUALS] = ConditionOperator.NOT_EQUALS
    value: Any

    def matches(self, actual: Any) -> bool:
        return actual != self.value


class GreaterThanCondition(ConditionBase):
    operator: Literal[ConditionOperator.GREATER_THAN] = ConditionOperator.GREATER_THAN
    value: Any

    def matches(self, actual: Any) -> bool:
        return actual > self.value


class LessThanCondition(ConditionBase):
    operator: Literal[ConditionOperator.LESS_THAN] = ConditionOperator.LESS_THAN
    value: Any

    def matches(self, actual: Any) -> bool:
        return actual < self.value


class BetweenCondition(ConditionBase):
    """Inclusive range test."""

    operator: Literal[ConditionOperator.BETWEEN] = ConditionOperator.BETWEEN
    lower: Any
    upper: Any

    def matches(self, actual: Any) -> bool:
        return self.lower <= actual <= self.upper


class InSetCondition(ConditionBase):
    operator: Literal[ConditionOperator.IN_SET] = ConditionOperator.IN_SET
    values: tuple[Any, ...]

    def matches(self, actual: Any) -> bool:
        return actual in self.values


RuleCondition = Annotated[
    Union[
        EqualsCondition,
        NotEqualsCondition,
        GreaterThanCondition,
        LessThanCondition,
        BetweenCondition,
        InSetCondition,
    ],
    Field(discriminator="operator"),
]


# =============================================================================
# Effects
# =============================================================================


class CoveragePercentEffect(BaseModel):
    """Override the layer's coverage percent."""

    model_config = ConfigDict(frozen=True)

    rule_type: Literal[RuleType.COVERAGE_PERCENT] = RuleType.COVERAGE_PERCENT
    percent: Decimal = Field(..., ge=0, le=100)


class FixedAmountEffect(BaseModel):
    """Insurer pays exactly ``amount`` (capped at the payable amount)."""

    model_config = ConfigDict(frozen=True)

    rule_type: Literal[RuleType.FIXED_AMOUNT] = RuleType.FIXED_AMOUNT
    amount: Decimal = Field(..., ge=0)


class DeductibleEffect(BaseModel):
    """Subtract ``amount`` from the payable amount before coverage."""

    model_config = ConfigDict(frozen=True)

    rule_type: Literal[RuleType.DEDUCTIBLE] = RuleType.DEDUCTIBLE
    amount: Decimal = Field(..., ge=0)


class VetoEffect(BaseModel):
    """Layer contributes nothing (plan-service exclusion)."""

    model_config = ConfigDict(frozen=True)

    rule_type: Literal[RuleType.VETO] = RuleType.VETO
    reason: Optional[str] = None


RuleEffect = Annotated[
    Union[CoveragePercentEffect, FixedAmountEffect, DeductibleEffect, VetoEffect],
    Field(discriminator="rule_type"),
]


# =============================================================================
# Rules & Outcomes
# =============================================================================


class BusinessRule(BaseModel):
    """A configurable condition -> effect pair. Stateless and read-only."""

    model_config = ConfigDict(frozen=True)

    rule_id: int
    name: str = ""
    rule_type: RuleType
    conditions: tuple[RuleCondition, ...] = ()
    effect: RuleEffect
    priority: int = Field(default=100, description="Lower evaluates first")
    is_active: bool = True

    # Scope: None matches anything
    plan_id: Optional[int] = None
    service_id: Optional[int] = None
    service_category_id: Optional[int] = None

    # Validity window
    valid_from: Optional[date] = None
    valid_to: Optional[date] = None

    @model_validator(mode="after")
    def validate_effect_type(self) -> "BusinessRule":
        """The effect payload must match the declared rule type."""
        if self.effect.rule_type != self.rule_type:
            raise ValueError(
                f"effect {self.effect.rule_type.value} does not match rule type {self.rule_type.value}"
            )
        return self

    @property
    def sort_key(self) -> tuple[int, int]:
        """Evaluation order: priority, then rule id."""
        return (self.priority, self.rule_id)

    def is_valid_on(self, on_date: date) -> bool:
        """Check the rule is active and inside its validity window."""
        return self.is_active and is_within(on_date, self.valid_from, self.valid_to)

    def applies_to(self, context: CalculationContext) -> bool:
        """Check the rule's plan/service/category scope against a context."""
        if self.plan_id is not None and self.plan_id != context.plan_id:
            return False
        if self.service_id is not None and self.service_id != context.service_id:
            return False
        if (
            self.service_category_id is not None
            and self.service_category_id != context.service_category_id
        ):
            return False
        return True


class RuleOutcome(BaseModel):
    """Result of evaluating candidate rules for one layer."""

    model_config = ConfigDict(frozen=True)

    matched: bool = False
    rule_id: Optional[int] = None
    effect: Optional[RuleEffect] = None
    warnings: tuple[CalculationWarning, ...] = ()

    @classmethod
    def no_match(cls, warnings: tuple[CalculationWarning, ...] = ()) -> "RuleOutcome":
        """Outcome when no rule matched."""
        return cls(matched=False, warnings=warnings)

    @property
    def is_veto(self) -> bool:
        return isinstance(self.effect, VetoEffect)

    @property
    def coverage_percent(self) -> Optional[Decimal]:
        """Percent override when the matched effect is CoveragePercent."""
        if isinstance(self.effect, CoveragePercentEffect):
            return self.effect.percent
        return None

    @property
    def deductible(self) -> Optional[Decimal]:
        """Deductible when the matched effect is Deductible."""
        if isinstance(self.effect, DeductibleEffect):
            return self.effect.amount
        return None

    @property
    def fixed_amount(self) -> Optional[Decimal]:
        """Insurer amount when the matched effect is FixedAmount."""
        if isinstance(self.effect, FixedAmountEffect):
            return self.effect.amount
        return None
