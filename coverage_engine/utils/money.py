"""
Currency rounding helpers.

All monetary values are ``Decimal``. Rounding is applied once per insurance
layer, never inside intermediate formulas.
"""

from decimal import Decimal
from typing import Optional

from coverage_engine.core.config import CoverageSettings, get_coverage_settings

ZERO = Decimal("0")
HUNDRED = Decimal("100")
PERCENT_QUANTUM = Decimal("0.01")


def round_currency(amount: Decimal, settings: Optional[CoverageSettings] = None) -> Decimal:
    """
    Round an amount to the configured currency minor unit.

    Args:
        amount: Unrounded amount
        settings: Optional settings (defaults to the cached instance)

    Returns:
        Amount quantized with the configured rounding mode
    """
    settings = settings or get_coverage_settings()
    return amount.quantize(settings.currency_quantum, rounding=settings.ROUNDING_MODE)


def percent_of(amount: Decimal, percent: Decimal) -> Decimal:
    """Unrounded ``percent`` % of ``amount``."""
    return amount * percent / HUNDRED


def clamp_percent(percent: Decimal) -> Decimal:
    """Limit a coverage percent to the 0-100 range."""
    return max(ZERO, min(HUNDRED, percent))


def ratio_percent(part: Decimal, whole: Decimal) -> Decimal:
    """Share of ``whole`` taken by ``part`` as a 2-place percent (0 when whole is 0)."""
    if whole <= 0:
        return ZERO.quantize(PERCENT_QUANTUM)
    return (part / whole * HUNDRED).quantize(PERCENT_QUANTUM)
