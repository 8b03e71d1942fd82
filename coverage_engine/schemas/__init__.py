"""
Pydantic Schemas for the Coverage Engine.

This module exports reference snapshots, rule models and result schemas.
"""

from coverage_engine.schemas.insurance import (
    InsurancePlan,
    InsuranceTariff,
    PatientInsurance,
    PatientProfile,
    ServiceProfile,
)
from coverage_engine.schemas.rules import (
    BetweenCondition,
    BusinessRule,
    CalculationContext,
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
from coverage_engine.schemas.calculation import (
    ActiveInsurances,
    CalculationWarning,
    CombinedCalculationResult,
    InsuranceOptionComparison,
    LayerResult,
    ServiceCalculationResult,
)

__all__ = [
    # Reference snapshots
    "InsurancePlan",
    "InsuranceTariff",
    "PatientInsurance",
    "PatientProfile",
    "ServiceProfile",
    # Rules
    "BetweenCondition",
    "BusinessRule",
    "CalculationContext",
    "CoveragePercentEffect",
    "DeductibleEffect",
    "EqualsCondition",
    "FixedAmountEffect",
    "GreaterThanCondition",
    "InSetCondition",
    "LessThanCondition",
    "NotEqualsCondition",
    "RuleOutcome",
    "VetoEffect",
    # Results
    "ActiveInsurances",
    "CalculationWarning",
    "CombinedCalculationResult",
    "InsuranceOptionComparison",
    "LayerResult",
    "ServiceCalculationResult",
]
