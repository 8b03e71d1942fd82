"""
Core Enumerations for the Insurance Coverage Calculation Engine.
"""

from enum import Enum


# =============================================================================
# Layer & Rule Enums
# =============================================================================


class LayerType(str, Enum):
    """Role an insurance plan plays in a combined calculation."""

    PRIMARY = "primary"  # Base plan, applied to the full service amount
    SUPPLEMENTARY = "supplementary"  # Top-up plan, applied to the residual


class RuleType(str, Enum):
    """Kinds of business rule effects."""

    COVERAGE_PERCENT = "coverage_percent"  # Override layer coverage percent
    FIXED_AMOUNT = "fixed_amount"  # Insurer pays a fixed amount
    DEDUCTIBLE = "deductible"  # Subtract before coverage is applied
    VETO = "veto"  # Layer contributes nothing


class ConditionOperator(str, Enum):
    """Comparison operators supported in rule conditions."""

    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    BETWEEN = "between"  # Inclusive on both ends
    IN_SET = "in_set"


class ConditionField(str, Enum):
    """Calculation context fields a rule condition can test."""

    SERVICE_AMOUNT = "service_amount"
    SERVICE_ID = "service_id"
    SERVICE_CATEGORY = "service_category"
    PATIENT_ID = "patient_id"
    PATIENT_AGE = "patient_age"
    PATIENT_GENDER = "patient_gender"
    PLAN_ID = "plan_id"
    LAYER_TYPE = "layer_type"
    CALCULATION_DATE = "calculation_date"


# =============================================================================
# Calculation Pipeline Enums
# =============================================================================


class CalculationStage(str, Enum):
    """Per-service calculation stage.

    State Machine Transitions:
    VALIDATING -> PRIMARY_LAYER | FAILED
    PRIMARY_LAYER -> SUPPLEMENTARY_LAYER | FINALIZED
    SUPPLEMENTARY_LAYER -> SUPPLEMENTARY_LAYER | FINALIZED
    """

    VALIDATING = "validating"
    PRIMARY_LAYER = "primary_layer"
    SUPPLEMENTARY_LAYER = "supplementary_layer"
    FINALIZED = "finalized"
    FAILED = "failed"


class WarningCode(str, Enum):
    """Codes attached to non-fatal calculation warnings."""

    # Validation failures (service recorded with zero coverage)
    INVALID_AMOUNT = "invalid_amount"
    AMOUNT_EXCEEDS_LIMIT = "amount_exceeds_limit"
    PATIENT_NOT_FOUND = "patient_not_found"
    NO_ACTIVE_INSURANCE = "no_active_insurance"

    # Lookup degradation
    TARIFF_NOT_FOUND = "tariff_not_found"
    PLAN_NOT_FOUND = "plan_not_found"
    PLAN_INACTIVE = "plan_inactive"
    PLAN_ROLE_MISMATCH = "plan_role_mismatch"
    SERVICE_NOT_COVERED = "service_not_covered"

    # Data anomalies
    MULTIPLE_PRIMARY_INSURANCES = "multiple_primary_insurances"
    MULTIPLE_TARIFFS_MATCHED = "multiple_tariffs_matched"
    INVALID_RULE_CONDITION = "invalid_rule_condition"
    INVALID_RULE_DEFINITION = "invalid_rule_definition"


class PrimaryConflictPolicy(str, Enum):
    """How to treat several simultaneously active primary insurances."""

    AUTO_RESOLVE = "auto_resolve"  # Pick one deterministically and warn
    REJECT = "reject"  # Fail validation for every service

