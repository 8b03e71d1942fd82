"""
Services Layer for the Coverage Engine.

Exports tariff resolution, business rules, layer calculation, validation and
the combined calculator.
"""

from coverage_engine.services.lookups import (
    BatchLookupCache,
    BusinessRuleLookup,
    InMemoryInsuranceRepository,
    PatientInsuranceLookup,
    PatientLookup,
    PlanLookup,
    ServiceLookup,
    TariffLookup,
)
from coverage_engine.services.tariff_resolver import (
    TariffFound,
    TariffNotFound,
    TariffResolver,
    select_tariff,
)
from coverage_engine.services.business_rules import (
    BusinessRuleEvaluator,
    RuleLoadResult,
    get_business_rule_evaluator,
    load_business_rules,
    parse_business_rule,
)
from coverage_engine.services.layer_calculator import SingleLayerCalculator
from coverage_engine.services.validation_gate import ValidationGate, select_insurances
from coverage_engine.services.combined_calculator import CombinedInsuranceCalculator

__all__ = [
    # Lookups
    "BatchLookupCache",
    "BusinessRuleLookup",
    "InMemoryInsuranceRepository",
    "PatientInsuranceLookup",
    "PatientLookup",
    "PlanLookup",
    "ServiceLookup",
    "TariffLookup",
    # Tariffs
    "TariffFound",
    "TariffNotFound",
    "TariffResolver",
    "select_tariff",
    # Business Rules
    "BusinessRuleEvaluator",
    "RuleLoadResult",
    "get_business_rule_evaluator",
    "load_business_rules",
    "parse_business_rule",
    # Calculation
    "SingleLayerCalculator",
    "ValidationGate",
    "select_insurances",
    "CombinedInsuranceCalculator",
]
