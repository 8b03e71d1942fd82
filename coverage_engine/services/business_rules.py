"""
Business Rule Evaluator.

Evaluates configurable coverage rules against a calculation context:
- Coverage percent overrides
- Fixed insurer amounts
- Rule-level deductibles
- Plan-service vetoes

Also converts raw rule records from the persistence layer into typed rules,
rejecting unknown operators, fields and malformed values at load time.
"""

import json
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from pydantic import ValidationError

from coverage_engine.core.enums import (
    ConditionField,
    ConditionOperator,
    LayerType,
    RuleType,
    WarningCode,
)
from coverage_engine.schemas.calculation import CalculationWarning
from coverage_engine.schemas.rules import (
    BetweenCondition,
    BusinessRule,
    CalculationContext,
    ConditionBase,
    CoveragePercentEffect,
    DeductibleEffect,
    EqualsCondition,
    FixedAmountEffect,
    GreaterThanCondition,
    InSetCondition,
    LessThanCondition,
    NotEqualsCondition,
    RuleOutcome,
    VetoEffect,
)
from coverage_engine.utils.errors import RuleDefinitionError
from coverage_engine.utils.logging import get_logger
from coverage_engine.utils.money import clamp_percent

logger = get_logger(__name__)


# =============================================================================
# Rule Loading
# =============================================================================

# Shorthand operator names found in stored rules
OPERATOR_ALIASES: dict[str, ConditionOperator] = {
    "eq": ConditionOperator.EQUALS,
    "ne": ConditionOperator.NOT_EQUALS,
    "gt": ConditionOperator.GREATER_THAN,
    "lt": ConditionOperator.LESS_THAN,
    "in": ConditionOperator.IN_SET,
}

FIELD_ALIASES: dict[str, ConditionField] = {
    "insurance_plan": ConditionField.PLAN_ID,
    "service_category_id": ConditionField.SERVICE_CATEGORY,
}

RULE_TYPE_ALIASES: dict[str, RuleType] = {
    "coveragepercent": RuleType.COVERAGE_PERCENT,
    "fixedamount": RuleType.FIXED_AMOUNT,
    "deductible": RuleType.DEDUCTIBLE,
    "veto": RuleType.VETO,
}

# Keys that may carry the numeric payload of an action
ACTION_VALUE_KEYS: dict[RuleType, tuple[str, ...]] = {
    RuleType.COVERAGE_PERCENT: ("value", "percent", "coverage_percent", "set_coverage_percent"),
    RuleType.FIXED_AMOUNT: ("value", "amount", "fixed_amount"),
    RuleType.DEDUCTIBLE: ("value", "amount", "deductible", "set_deductible"),
}

DECIMAL_FIELDS = {ConditionField.SERVICE_AMOUNT}
INTEGER_FIELDS = {
    ConditionField.SERVICE_ID,
    ConditionField.SERVICE_CATEGORY,
    ConditionField.PATIENT_ID,
    ConditionField.PATIENT_AGE,
    ConditionField.PLAN_ID,
}


def _pick(record: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    """First present key among snake_case / camelCase spellings."""
    for key in keys:
        if key in record and record[key] is not None:
            return record[key]
    return default


def _maybe_json(raw: Any, rule_id: Optional[int]) -> Any:
    """Stored conditions/actions may be JSON text."""
    if isinstance(raw, str):
        try:
            return json.loads(raw) if raw.strip() else None
        except json.JSONDecodeError as e:
            raise RuleDefinitionError(f"Invalid JSON payload: {e}", rule_id=rule_id) from e
    return raw


def _to_decimal(raw: Any) -> Decimal:
    if isinstance(raw, bool):
        raise ValueError("boolean is not an amount")
    try:
        value = Decimal(str(raw))
    except InvalidOperation as e:
        raise ValueError(f"{raw!r} is not a number") from e
    if not value.is_finite():
        raise ValueError(f"{raw!r} is not a finite number")
    return value


def _to_int(raw: Any) -> int:
    if isinstance(raw, bool):
        raise ValueError("boolean is not an integer")
    value = _to_decimal(raw)
    if value != value.to_integral_value():
        raise ValueError(f"{raw!r} is not a whole number")
    return int(value)


def coerce_condition_value(condition_field: ConditionField, raw: Any) -> Any:
    """
    Convert a stored condition value to the type of its context field.

    Raises:
        ValueError: The value cannot represent the field's type
    """
    if raw is None:
        raise ValueError("condition value is missing")
    if condition_field in DECIMAL_FIELDS:
        return _to_decimal(raw)
    if condition_field in INTEGER_FIELDS:
        return _to_int(raw)
    if condition_field == ConditionField.PATIENT_GENDER:
        return str(raw).strip().lower()
    if condition_field == ConditionField.LAYER_TYPE:
        return LayerType(str(raw).strip().lower())
    if condition_field == ConditionField.CALCULATION_DATE:
        if isinstance(raw, date):
            return raw
        return date.fromisoformat(str(raw))
    raise ValueError(f"unsupported field {condition_field.value}")


def parse_condition(raw: Mapping[str, Any], rule_id: Optional[int] = None) -> ConditionBase:
    """
    Build a typed condition from a stored ``{field, operator, value}`` clause.

    Raises:
        RuleDefinitionError: Unknown field/operator or a malformed value
    """
    if not isinstance(raw, Mapping):
        raise RuleDefinitionError(f"Condition must be an object, got {raw!r}", rule_id=rule_id)

    field_name = str(raw.get("field", "")).strip().lower()
    try:
        condition_field = FIELD_ALIASES.get(field_name) or ConditionField(field_name)
    except ValueError as e:
        raise RuleDefinitionError(f"Unknown condition field: {field_name!r}", rule_id=rule_id) from e

    operator_name = str(raw.get("operator", "")).strip().lower()
    try:
        operator = OPERATOR_ALIASES.get(operator_name) or ConditionOperator(operator_name)
    except ValueError as e:
        raise RuleDefinitionError(f"Unknown condition operator: {operator_name!r}", rule_id=rule_id) from e

    value = raw.get("value")
    try:
        if operator == ConditionOperator.BETWEEN:
            if isinstance(value, Mapping):
                lower_raw, upper_raw = value.get("min"), value.get("max")
            elif isinstance(value, (list, tuple)) and len(value) == 2:
                lower_raw, upper_raw = value
            else:
                raise ValueError("between needs [lower, upper] or {min, max}")
            lower = coerce_condition_value(condition_field, lower_raw)
            upper = coerce_condition_value(condition_field, upper_raw)
            if lower > upper:
                raise ValueError(f"lower bound {lower} exceeds upper bound {upper}")
            return BetweenCondition(field=condition_field, lower=lower, upper=upper)

        if operator == ConditionOperator.IN_SET:
            if not isinstance(value, (list, tuple, set, frozenset)) or not value:
                raise ValueError("in_set needs a non-empty list of values")
            values = tuple(coerce_condition_value(condition_field, v) for v in value)
            return InSetCondition(field=condition_field, values=values)

        coerced = coerce_condition_value(condition_field, value)
    except (ValueError, TypeError) as e:
        raise RuleDefinitionError(
            f"Invalid value for {condition_field.value} {operator.value}: {e}",
            rule_id=rule_id,
        ) from e

    condition_types = {
        ConditionOperator.EQUALS: EqualsCondition,
        ConditionOperator.NOT_EQUALS: NotEqualsCondition,
        ConditionOperator.GREATER_THAN: GreaterThanCondition,
        ConditionOperator.LESS_THAN: LessThanCondition,
    }
    return condition_types[operator](field=condition_field, value=coerced)


def _parse_rule_type(raw: Any, rule_id: Optional[int]) -> RuleType:
    if isinstance(raw, RuleType):
        return raw
    key = str(raw or "").replace("_", "").replace("-", "").strip().lower()
    if key not in RULE_TYPE_ALIASES:
        raise RuleDefinitionError(f"Unknown rule type: {raw!r}", rule_id=rule_id)
    return RULE_TYPE_ALIASES[key]


def _parse_effect(rule_type: RuleType, actions: Any, rule_id: Optional[int]):
    """Build the effect payload that matches ``rule_type``."""
    if rule_type == RuleType.VETO:
        reason = actions.get("reason") if isinstance(actions, Mapping) else None
        return VetoEffect(reason=reason)

    if isinstance(actions, Mapping):
        raw_value = _pick(actions, *ACTION_VALUE_KEYS[rule_type])
    else:
        raw_value = actions
    if raw_value is None:
        raise RuleDefinitionError(f"{rule_type.value} rule has no action value", rule_id=rule_id)

    try:
        value = _to_decimal(raw_value)
        if rule_type == RuleType.COVERAGE_PERCENT:
            return CoveragePercentEffect(percent=clamp_percent(value))
        if rule_type == RuleType.FIXED_AMOUNT:
            return FixedAmountEffect(amount=value)
        return DeductibleEffect(amount=value)
    except (ValueError, ValidationError) as e:
        raise RuleDefinitionError(f"Invalid {rule_type.value} action value {raw_value!r}", rule_id=rule_id) from e


def _parse_date(raw: Any) -> Optional[date]:
    if raw is None or isinstance(raw, date):
        return raw
    return date.fromisoformat(str(raw)[:10])


def parse_business_rule(record: Mapping[str, Any]) -> BusinessRule:
    """
    Convert one stored rule record into a typed ``BusinessRule``.

    Accepts snake_case or camelCase keys; ``conditions`` and ``actions`` may
    be JSON strings as stored by the rule administration screens.

    Raises:
        RuleDefinitionError: The record cannot be represented as a typed rule
    """
    rule_id = _pick(record, "rule_id", "ruleId")
    if rule_id is None:
        raise RuleDefinitionError("Rule record has no rule_id")
    try:
        rule_id = _to_int(rule_id)
    except ValueError as e:
        raise RuleDefinitionError(f"Invalid rule_id {rule_id!r}") from e

    rule_type = _parse_rule_type(_pick(record, "rule_type", "ruleType"), rule_id)

    raw_conditions = _maybe_json(_pick(record, "conditions", default=[]), rule_id) or []
    if isinstance(raw_conditions, Mapping):
        # Legacy {field: value} objects: equality, or a {min, max} range
        raw_conditions = [
            {"field": k, "operator": "between" if isinstance(v, Mapping) else "equals", "value": v}
            for k, v in raw_conditions.items()
        ]
    if not isinstance(raw_conditions, (list, tuple)):
        raise RuleDefinitionError(
            f"conditions must be a list, got {type(raw_conditions).__name__}",
            rule_id=rule_id,
        )
    conditions = tuple(parse_condition(c, rule_id) for c in raw_conditions)

    actions = _maybe_json(_pick(record, "actions", "effect", default={}), rule_id)
    effect = _parse_effect(rule_type, actions, rule_id)

    try:
        return BusinessRule(
            rule_id=rule_id,
            name=_pick(record, "name", "rule_name", "ruleName", default=""),
            rule_type=rule_type,
            conditions=conditions,
            effect=effect,
            priority=_pick(record, "priority", default=100),
            is_active=_pick(record, "is_active", "isActive", default=True),
            plan_id=_pick(record, "plan_id", "planId"),
            service_id=_pick(record, "service_id", "serviceId"),
            service_category_id=_pick(record, "service_category_id", "serviceCategoryId"),
            valid_from=_parse_date(_pick(record, "valid_from", "validFrom", "start_date")),
            valid_to=_parse_date(_pick(record, "valid_to", "validTo", "end_date")),
        )
    except (ValidationError, ValueError) as e:
        raise RuleDefinitionError(f"Invalid rule record: {e}", rule_id=rule_id) from e


@dataclass
class RuleLoadResult:
    """Typed rules plus the records that were rejected."""

    rules: list[BusinessRule] = field(default_factory=list)
    rejected: list[CalculationWarning] = field(default_factory=list)


def load_business_rules(records: Iterable[Mapping[str, Any]]) -> RuleLoadResult:
    """
    Parse stored rule records, skipping (and reporting) invalid ones.

    Args:
        records: Raw rule records from the persistence layer

    Returns:
        RuleLoadResult with typed rules and one warning per rejected record
    """
    result = RuleLoadResult()
    for record in records:
        try:
            result.rules.append(parse_business_rule(record))
        except RuleDefinitionError as e:
            logger.warning(f"Rejected business rule {e.rule_id}: {e.detail}")
            result.rejected.append(CalculationWarning(
                code=WarningCode.INVALID_RULE_DEFINITION,
                message=e.detail,
                rule_id=e.rule_id,
            ))
    return result


# =============================================================================
# Rule Evaluation
# =============================================================================


class BusinessRuleEvaluator:
    """
    Evaluates prioritized business rules for one insurance layer.

    Rules are tried in ascending (priority, rule_id) order; the first rule
    whose every condition holds wins. Evaluation never raises for bad data.
    """

    def evaluate(
        self,
        context: CalculationContext,
        candidate_rules: Iterable[BusinessRule],
    ) -> RuleOutcome:
        """
        Evaluate candidate rules against the context.

        Args:
            context: Layer-scoped calculation context
            candidate_rules: Rules fetched for the plan/service/date

        Returns:
            RuleOutcome with the first matching rule's effect, or no match
        """
        warnings: list[CalculationWarning] = []

        applicable = sorted(
            (
                rule for rule in candidate_rules
                if rule.is_valid_on(context.calculation_date) and rule.applies_to(context)
            ),
            key=lambda r: r.sort_key,
        )

        for rule in applicable:
            if self._rule_matches(rule, context, warnings):
                logger.debug(
                    f"Rule matched: rule={rule.rule_id}, type={rule.rule_type.value}, "
                    f"plan={context.plan_id}, service={context.service_id}"
                )
                return RuleOutcome(
                    matched=True,
                    rule_id=rule.rule_id,
                    effect=rule.effect,
                    warnings=tuple(warnings),
                )

        return RuleOutcome.no_match(tuple(warnings))

    def _rule_matches(
        self,
        rule: BusinessRule,
        context: CalculationContext,
        warnings: list[CalculationWarning],
    ) -> bool:
        """All conditions must hold (conjunction)."""
        for condition in rule.conditions:
            if not self._condition_matches(rule, condition, context, warnings):
                return False
        return True

    def _condition_matches(
        self,
        rule: BusinessRule,
        condition: ConditionBase,
        context: CalculationContext,
        warnings: list[CalculationWarning],
    ) -> bool:
        """Evaluate one clause; unknown facts and bad comparisons do not match."""
        actual = context.value_of(condition.field)
        if actual is None:
            return False

        try:
            return bool(condition.matches(actual))
        except (TypeError, ValueError, ArithmeticError) as e:
            warnings.append(CalculationWarning(
                code=WarningCode.INVALID_RULE_CONDITION,
                message=f"Rule {rule.rule_id} condition on {condition.field.value} could not be evaluated: {e}",
                service_id=context.service_id,
                plan_id=context.plan_id,
                rule_id=rule.rule_id,
            ))
            return False


# =============================================================================
# Singleton Instance
# =============================================================================


_business_rule_evaluator: Optional[BusinessRuleEvaluator] = None


def get_business_rule_evaluator() -> BusinessRuleEvaluator:
    """Get singleton business rule evaluator instance."""
    global _business_rule_evaluator
    if _business_rule_evaluator is None:
        _business_rule_evaluator = BusinessRuleEvaluator()
    return _business_rule_evaluator
