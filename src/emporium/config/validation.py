"""Configuration validation for startup checks.

Validates that required configuration is present and valid before the
application starts accepting requests.

Usage:
    from emporium.config.validation import validate_or_raise

    # During startup
    validate_or_raise()
"""

from dataclasses import dataclass
from enum import Enum

from emporium.config.settings import Settings, get_settings
from emporium.core.logging import get_logger
from emporium.utils.exceptions import ConfigurationError

logger = get_logger(__name__)


class ValidationSeverity(str, Enum):
    """Severity of configuration validation issues."""

    ERROR = "error"  # Must be fixed, app cannot start
    WARNING = "warning"  # Should be fixed, app can start but may have issues


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
    """Validate application configuration.

    Args:
        settings: Settings to validate (default: global settings)

    Returns:
        List of validation results (empty if all checks pass)
    """
    if settings is None:
        settings = get_settings()

    results: list[ValidationResult] = []
    results.extend(_validate_database(settings))
    results.extend(_validate_cart(settings))
    results.extend(_validate_storage_access(settings))
    return results


def validate_or_raise(settings: Settings | None = None) -> None:
    """Validate configuration and raise if errors found.

    Raises:
        ConfigurationError: If any validation errors are found
    """
    results = validate_configuration(settings)
    errors = [r for r in results if r.severity == ValidationSeverity.ERROR]

    if errors:
        error_messages = "\n".join(str(e) for e in errors)
        raise ConfigurationError(f"Configuration validation failed:\n{error_messages}")

    for warning in (r for r in results if r.severity == ValidationSeverity.WARNING):
        logger.warning("configuration_warning", detail=str(warning))


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
                severity=ValidationSeverity.WARNING,
                message=f"Unexpected database type in URL: {settings.DATABASE_URL[:20]}...",
                suggestion="Emporium is designed for PostgreSQL or SQLite",
            )
        )
    elif settings.ENVIRONMENT == "production" and settings.DATABASE_URL.startswith("sqlite"):
        results.append(
            ValidationResult(
                field="DATABASE_URL",
                severity=ValidationSeverity.ERROR,
                message="SQLite has no row-level security and cannot isolate tenants in production",
                suggestion="Use a postgresql+asyncpg:// URL",
            )
        )

    if settings.DATABASE_POOL_SIZE < 1:
        results.append(
            ValidationResult(
                field="DATABASE_POOL_SIZE",
                severity=ValidationSeverity.ERROR,
                message=f"Pool size must be positive, got {settings.DATABASE_POOL_SIZE}",
            )
        )

    return results


def _validate_cart(settings: Settings) -> list[ValidationResult]:
    results: list[ValidationResult] = []
    cart = settings.cart

    if cart.transaction_timeout_seconds <= 0:
        results.append(
            ValidationResult(
                field="CART__TRANSACTION_TIMEOUT_SECONDS",
                severity=ValidationSeverity.ERROR,
                message="Inventory transactions require a positive timeout",
            )
        )
    elif cart.transaction_timeout_seconds > 30:
        results.append(
            ValidationResult(
                field="CART__TRANSACTION_TIMEOUT_SECONDS",
                severity=ValidationSeverity.WARNING,
                message=f"Timeout {cart.transaction_timeout_seconds}s holds serializable transactions open for long",
                suggestion="Keep inventory transactions to a few seconds",
            )
        )

    if cart.prune_after_days < 1:
        results.append(
            ValidationResult(
                field="CART__PRUNE_AFTER_DAYS",
                severity=ValidationSeverity.ERROR,
                message=f"Prune age must be at least one day, got {cart.prune_after_days}",
            )
        )

    if cart.prune_interval_seconds <= 0:
        results.append(
            ValidationResult(
                field="CART__PRUNE_INTERVAL_SECONDS",
                severity=ValidationSeverity.ERROR,
                message="Maintenance interval must be positive",
            )
        )

    return results


def _validate_storage_access(settings: Settings) -> list[ValidationResult]:
    results: list[ValidationResult] = []

    if settings.SLOW_QUERY_THRESHOLD_MS <= 0:
        results.append(
            ValidationResult(
                field="SLOW_QUERY_THRESHOLD_MS",
                severity=ValidationSeverity.WARNING,
                message="Non-positive threshold logs every storage operation as slow",
            )
        )

    if settings.TENANT_CACHE_TTL_SECONDS < 0:
        results.append(
            ValidationResult(
                field="TENANT_CACHE_TTL_SECONDS",
                severity=ValidationSeverity.ERROR,
                message="Tenant cache TTL cannot be negative",
            )
        )

    return results
