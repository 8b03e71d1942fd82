"""
Tariff Resolver.

Finds the tariff that applies to a (plan, service) pair on a date. A
service-specific tariff beats a wildcard tariff of the same plan; an absent
tariff is an explicit ``TariffNotFound`` result, never an exception.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date
from typing import Optional, Union

from coverage_engine.core.enums import WarningCode
from coverage_engine.schemas.calculation import CalculationWarning
from coverage_engine.schemas.insurance import InsuranceTariff
from coverage_engine.services.lookups import TariffLookup
from coverage_engine.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class TariffFound:
    """A tariff applies."""

    tariff: InsuranceTariff
    warnings: tuple[CalculationWarning, ...] = ()

    found = True


@dataclass(frozen=True)
class TariffNotFound:
    """No tariff applies; callers fall back to the plan default percent."""

    plan_id: int
    service_id: int
    warnings: tuple[CalculationWarning, ...] = ()

    found = False


TariffResolution = Union[TariffFound, TariffNotFound]


def _recency_key(tariff: InsuranceTariff) -> tuple:
    return (tariff.created_at, tariff.tariff_id)


def select_tariff(
    candidates: Iterable[InsuranceTariff],
    plan_id: int,
    service_id: int,
    on_date: date,
) -> TariffResolution:
    """
    Pick the applicable tariff among candidates.

    Args:
        candidates: Tariffs returned by the lookup (may be unfiltered)
        plan_id: Plan being applied
        service_id: Service being priced
        on_date: Calculation date

    Returns:
        TariffFound (with a MULTIPLE_TARIFFS_MATCHED warning on ties) or TariffNotFound
    """
    valid = [
        t for t in candidates
        if t.plan_id == plan_id
        and t.is_valid_on(on_date)
        and (t.service_id == service_id or t.is_wildcard)
    ]

    specific = [t for t in valid if t.service_id == service_id]
    pool = specific or [t for t in valid if t.is_wildcard]

    if not pool:
        return TariffNotFound(plan_id=plan_id, service_id=service_id)

    chosen = max(pool, key=_recency_key)
    if len(pool) == 1:
        return TariffFound(tariff=chosen)

    ids = ", ".join(str(t.tariff_id) for t in sorted(pool, key=lambda t: t.tariff_id))
    warning = CalculationWarning(
        code=WarningCode.MULTIPLE_TARIFFS_MATCHED,
        message=(
            f"{len(pool)} tariffs ({ids}) match plan {plan_id} service {service_id} "
            f"on {on_date.isoformat()}; using most recent tariff {chosen.tariff_id}"
        ),
        service_id=service_id,
        plan_id=plan_id,
    )
    return TariffFound(tariff=chosen, warnings=(warning,))


class TariffResolver:
    """Resolves tariffs through a ``TariffLookup`` collaborator."""

    def __init__(self, tariff_lookup: TariffLookup):
        """
        Initialize tariff resolver.

        Args:
            tariff_lookup: Read-only tariff source (usually the per-batch cache)
        """
        self.tariff_lookup = tariff_lookup

    async def resolve(
        self,
        plan_id: int,
        service_id: int,
        on_date: date,
    ) -> TariffResolution:
        """
        Resolve the tariff for a plan/service on a date.

        Returns:
            TariffFound or TariffNotFound
        """
        candidates = await self.tariff_lookup.get_tariffs(plan_id, service_id, on_date)
        resolution = select_tariff(candidates, plan_id, service_id, on_date)

        if isinstance(resolution, TariffFound):
            for warning in resolution.warnings:
                logger.warning(warning.message)
        else:
            logger.debug(f"No tariff: plan={plan_id}, service={service_id}, date={on_date}")

        return resolution


def tariff_of(resolution: TariffResolution) -> Optional[InsuranceTariff]:
    """The resolved tariff, or None when not found."""
    return resolution.tariff if isinstance(resolution, TariffFound) else None
