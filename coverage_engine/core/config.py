"""
Coverage Engine Configuration
Settings for the Insurance Coverage Calculation Engine.
Source: https://docs.pydantic.dev/latest/concepts/pydantic_settings/
"""

import decimal
from decimal import Decimal
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from coverage_engine.core.enums import PrimaryConflictPolicy


class CoverageSettings(BaseSettings):
    """
    Coverage calculation configuration settings.

    Every value can be overridden through a ``COVERAGE_``-prefixed
    environment variable or a local ``.env`` file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_prefix="COVERAGE_",
    )

    # =========================================================================
    # Currency & Rounding
    # =========================================================================
    CURRENCY_DECIMAL_PLACES: int = Field(
        default=0,
        ge=0,
        le=4,
        description="Minor-unit exponent used when rounding amounts (0 = whole units)",
    )
    ROUNDING_MODE: str = Field(
        default=decimal.ROUND_HALF_EVEN,
        description="decimal rounding mode applied once per layer",
    )

    # =========================================================================
    # Validation Limits
    # =========================================================================
    MAX_SERVICE_AMOUNT: Decimal = Field(
        default=Decimal("100000000"),
        gt=0,
        description="Largest service amount accepted for a single service",
    )

    # =========================================================================
    # Calculation Behaviour
    # =========================================================================
    PARALLEL_SERVICE_EVALUATION: bool = Field(
        default=True,
        description="Evaluate services of one batch concurrently",
    )
    PRIMARY_CONFLICT_POLICY: PrimaryConflictPolicy = Field(
        default=PrimaryConflictPolicy.AUTO_RESOLVE,
        description="Handling of several active primary insurances on one date",
    )
    APPLY_PLAN_DEDUCTIBLE: bool = Field(
        default=True,
        description="Apply the plan deductible to tariff-less primary layers when no deductible rule matches",
    )

    # =========================================================================
    # Logging
    # =========================================================================
    LOG_LEVEL: str = Field(default="INFO", description="Log level")
    JSON_LOGS: bool = Field(default=False, description="Emit JSON log records")
    LOG_FILE: Optional[str] = Field(default=None, description="Optional log file path")

    # =========================================================================
    # Validators
    # =========================================================================
    @field_validator("ROUNDING_MODE")
    @classmethod
    def validate_rounding_mode(cls, v: str) -> str:
        """Accept only rounding modes known to the decimal module."""
        mode = v.strip().upper()
        valid_modes = {
            decimal.ROUND_HALF_EVEN,
            decimal.ROUND_HALF_UP,
            decimal.ROUND_HALF_DOWN,
            decimal.ROUND_UP,
            decimal.ROUND_DOWN,
            decimal.ROUND_CEILING,
            decimal.ROUND_FLOOR,
            decimal.ROUND_05UP,
        }
        if mode not in valid_modes:
            raise ValueError(f"Unknown rounding mode: {v}")
        return mode

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Normalise the log level name."""
        level = v.strip().upper()
        if level not in {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level

    @property
    def currency_quantum(self) -> Decimal:
        """Smallest representable currency step, e.g. Decimal('1') or Decimal('0.01')."""
        return Decimal(1).scaleb(-self.CURRENCY_DECIMAL_PLACES)

    @property
    def rejects_primary_conflicts(self) -> bool:
        """Check if conflicting primary insurances fail validation."""
        return self.PRIMARY_CONFLICT_POLICY == PrimaryConflictPolicy.REJECT


# Singleton instance
_coverage_settings: Optional[CoverageSettings] = None


def get_coverage_settings() -> CoverageSettings:
    """
    Get cached coverage settings instance.

    Returns:
        CoverageSettings instance
    """
    global _coverage_settings
    if _coverage_settings is None:
        _coverage_settings = CoverageSettings()
    return _coverage_settings


def reset_coverage_settings() -> None:
    """Drop the cached settings so the next call re-reads the environment."""
    global _coverage_settings
    _coverage_settings = None
