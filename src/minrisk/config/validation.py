"""Configuration validation for startup checks.

Validates settings before a scheduler or worker starts recalculating.

Usage:
    from minrisk.config.validation import validate_or_raise

    validate_or_raise()
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any

from minrisk.config.settings import Settings, get_settings
from minrisk.core.logging import get_logger
from minrisk.utils.exceptions import ConfigurationError

logger = get_logger(__name__)


class ValidationSeverity(str, Enum):
    """Severity of configuration validation issues."""

    ERROR = "error"  # startup must abort
    WARNING = "warning"


@dataclass
class ValidationResult:
    """Result of a configuration validation check."""

    field: str
    severity: ValidationSeverity
    message: str
    suggestion: str | None = None

    def __str__(self) -> str:
        prefix = "ERROR" if self.severity == ValidationSeverity.ERROR else "WARNING"
        result = f"[{prefix}] {self.field}: {self.message}"
        if self.suggestion:
            result += f"\n  Suggestion: {self.suggestion}"
        return result


def validate_configuration(settings: Settings | None = None) -> list[ValidationResult]:
    """Run every configuration check.

    Args:
        settings: Settings to validate (default: global settings)

    Returns:
        List of validation results (empty if all checks pass)
    """
    if settings is None:
        settings = get_settings()

    results: list[ValidationResult] = []
    results.extend(_validate_database(settings))
    results.extend(_validate_engine(settings))
    results.extend(_validate_environment(settings))
    return results


def validate_or_raise(settings: Settings | None = None) -> None:
    """Validate configuration, raising on errors and logging warnings.

    Raises:
        ConfigurationError: If any validation errors are found
    """
    results = validate_configuration(settings)
    errors = [r for r in results if r.severity == ValidationSeverity.ERROR]

    if errors:
        error_messages = "\n".join(str(e) for e in errors)
        raise ConfigurationError(f"Configuration validation failed:\n{error_messages}")

    for warning in results:
        logger.warning("configuration_warning", field=warning.field, message=warning.message)


# =============================================================================
# Validators
# =============================================================================


def _validate_database(settings: Settings) -> list[ValidationResult]:
    results: list[ValidationResult] = []

    if not settings.DATABASE_URL:
        results.append(
            ValidationResult(
                field="DATABASE_URL",
                severity=ValidationSeverity.ERROR,
                message="Database URL is not configured",
                suggestion="Set DATABASE_URL environment variable",
            )
        )
    elif not settings.DATABASE_URL.startswith(("postgresql", "sqlite")):
        results.append(
            ValidationResult(
                field="DATABASE_URL",
                severity=ValidationSeverity.ERROR,
                message=f"Unsupported database in URL: {settings.DATABASE_URL.split(':', 1)[0]}",
                suggestion="The recalculation lock needs PostgreSQL or SQLite partial indexes",
            )
        )

    if settings.DATABASE_POOL_SIZE < 1:
        results.append(
            ValidationResult(
                field="DATABASE_POOL_SIZE",
                severity=ValidationSeverity.ERROR,
                message=f"Invalid pool size: {settings.DATABASE_POOL_SIZE}",
            )
        )

    return results


def _validate_engine(settings: Settings) -> list[ValidationResult]:
    results: list[ValidationResult] = []
    engine = settings.raf_engine

    pool_capacity = settings.DATABASE_POOL_SIZE + settings.DATABASE_MAX_OVERFLOW
    if (
        settings.DATABASE_URL.startswith("postgresql")
        and engine.max_concurrent_risk_updates > pool_capacity
    ):
        results.append(
            ValidationResult(
                field="raf_engine.max_concurrent_risk_updates",
                severity=ValidationSeverity.WARNING,
                message=(
                    f"{engine.max_concurrent_risk_updates} workers exceed the "
                    f"{pool_capacity} pooled database connections"
                ),
                suggestion="Lower the worker count or raise DATABASE_POOL_SIZE",
            )
        )

    if settings.ENVIRONMENT == "production" and engine.recalc_timeout_seconds is None:
        results.append(
            ValidationResult(
                field="raf_engine.recalc_timeout_seconds",
                severity=ValidationSeverity.WARNING,
                message="Recalculation runs have no timeout",
                suggestion="A hung run holds the organization's lock until it finishes",
            )
        )

    return results


def _validate_environment(settings: Settings) -> list[ValidationResult]:
    results: list[ValidationResult] = []

    if settings.ENVIRONMENT == "production" and settings.DEBUG:
        results.append(
            ValidationResult(
                field="DEBUG",
                severity=ValidationSeverity.ERROR,
                message="Debug mode must be disabled in production",
                suggestion="Set DEBUG=false for production",
            )
        )

    if settings.ENVIRONMENT == "production" and settings.log_level == "DEBUG":
        results.append(
            ValidationResult(
                field="log_level",
                severity=ValidationSeverity.WARNING,
                message="DEBUG log level in production is very verbose",
                suggestion="Use INFO or WARNING for production",
            )
        )

    return results


def get_configuration_summary(settings: Settings | None = None) -> dict[str, Any]:
    """Summary of the current configuration, without the database URL."""
    if settings is None:
        settings = get_settings()

    engine = settings.raf_engine
    return {
        "environment": settings.ENVIRONMENT,
        "debug": settings.DEBUG,
        "log_level": settings.log_level,
        "database_backend": settings.DATABASE_URL.split(":", 1)[0],
        "database_pool_size": settings.DATABASE_POOL_SIZE,
        "metrics_enabled": settings.METRICS_ENABLED,
        "recalc_timeout_seconds": engine.recalc_timeout_seconds,
        "max_concurrent_risk_updates": engine.max_concurrent_risk_updates,
        "kri_tightening_fraction": engine.kri_tightening_fraction,
        "default_appetite_level": engine.default_appetite_level,
    }
