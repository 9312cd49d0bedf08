"""Core services and utilities for Emporium."""

from .context import (
    TenantContext,
    TenantPlan,
    get_current_tenant,
    platform_scope,
    require_tenant,
    reset_tenant,
    run_in_tenant,
    set_tenant,
    tenant_scope,
)
from .exceptions import (
    CartItemNotFoundError,
    CartNotFoundError,
    CartValidationError,
    ConflictError,
    ContextNotSetError,
    InsufficientStockError,
    InvalidOperationError,
    InvalidQuantityError,
    NotFoundError,
    RecordNotFoundError,
    SkuNotFoundError,
    SkuNotSellableError,
    TenantInactiveError,
    TenantNotFoundError,
    TransactionAbortedError,
)

__all__ = [
    # Context
    "TenantContext",
    "TenantPlan",
    "get_current_tenant",
    "platform_scope",
    "require_tenant",
    "reset_tenant",
    "run_in_tenant",
    "set_tenant",
    "tenant_scope",
    # Exceptions
    "CartItemNotFoundError",
    "CartNotFoundError",
    "CartValidationError",
    "ConflictError",
    "ContextNotSetError",
    "InsufficientStockError",
    "InvalidOperationError",
    "InvalidQuantityError",
    "NotFoundError",
    "RecordNotFoundError",
    "SkuNotFoundError",
    "SkuNotSellableError",
    "TenantInactiveError",
    "TenantNotFoundError",
    "TransactionAbortedError",
]
