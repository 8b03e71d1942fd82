"""
Insurance Coverage Calculation Engine.

Splits the cost of clinical services between a patient's primary insurance,
any supplementary insurances and the patient.
"""

from coverage_engine.services.combined_calculator import CombinedInsuranceCalculator
from coverage_engine.services.lookups import InMemoryInsuranceRepository

__version__ = "0.1.0"

__all__ = [
    "CombinedInsuranceCalculator",
    "InMemoryInsuranceRepository",
    "__version__",
]
