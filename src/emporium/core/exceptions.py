"""Core exceptions for tenant scoping, storage access and cart operations."""

from emporium.utils.exceptions import EmporiumError


class ContextNotSetError(EmporiumError):
    """Raised when an operation requires a tenant context and none is set.

    This error indicates a programming error - tenant-scoped operations
    are being called outside of a tenant_scope() block.
    """

    def __init__(self, message: str = "Tenant context is not set"):
        super().__init__(message)


# =============================================================================
# Not found
# =============================================================================


class NotFoundError(EmporiumError):
    """Base class for missing (or not owned) records."""

    pass


class RecordNotFoundError(NotFoundError):
    """Raised by the storage driver when a single-row write matches nothing.

    Attributes:
        entity: Entity kind the operation targeted
        where: Filter that matched no row
    """

    def __init__(self, entity: str, where: dict | None = None):
        super().__init__(f"{entity} record not found")
        self.entity = entity
        self.where = dict(where or {})

    def __str__(self) -> str:
        return f"RecordNotFoundError({self.entity}): {self.where}"


class CartNotFoundError(NotFoundError):
    """Raised when the caller has no cart."""

    def __init__(self, user_id: str):
        super().__init__(f"Cart not found for user {user_id}")
        self.user_id = user_id


class CartItemNotFoundError(NotFoundError):
    """Raised when a cart item does not exist or belongs to another user.

    Both cases surface identically so callers cannot probe foreign carts.
    """

    def __init__(self, item_id: str):
        super().__init__(f"Cart item not found: {item_id}")
        self.item_id = item_id


class SkuNotFoundError(NotFoundError):
    """Raised when a referenced SKU does not exist for the current tenant."""

    def __init__(self, sku_id: str):
        super().__init__(f"SKU not found: {sku_id}")
        self.sku_id = sku_id


class TenantNotFoundError(NotFoundError):
    """Raised when a tenant cannot be resolved.

    Attributes:
        tenant_ref: The identifier or domain that was looked up
    """

    def __init__(self, tenant_ref: str):
        super().__init__(f"Tenant not found: {tenant_ref}")
        self.tenant_ref = tenant_ref

    def __str__(self) -> str:
        return f"TenantNotFoundError: {self.args[0]}"


class TenantInactiveError(EmporiumError):
    """Raised when attempting to use a suspended tenant.

    Attributes:
        tenant_id: The identifier of the inactive tenant
        reason: Suspension reason recorded on the tenant, if any
    """

    def __init__(self, tenant_id: str, reason: str | None = None):
        super().__init__(f"Tenant is inactive: {tenant_id}")
        self.tenant_id = tenant_id
        self.reason = reason

    def __str__(self) -> str:
        return f"TenantInactiveError: {self.args[0]}"


# =============================================================================
# Validation
# =============================================================================


class CartValidationError(EmporiumError):
    """Client-correctable cart error.

    Attributes:
        sku_id: SKU the request referenced
        available_stock: Stock currently available, so callers can retry
            with an adjusted quantity
    """

    def __init__(self, message: str, sku_id: str | None = None, available_stock: int | None = None):
        super().__init__(message)
        self.sku_id = sku_id
        self.available_stock = available_stock

    def __str__(self) -> str:
        if self.available_stock is None:
            return f"{type(self).__name__}: {self.args[0]}"
        return f"{type(self).__name__}: {self.args[0]} (available_stock={self.available_stock})"


class InsufficientStockError(CartValidationError):
    """Raised when the requested quantity exceeds current stock."""

    def __init__(self, sku_id: str, requested: int, available_stock: int):
        super().__init__(
            f"Insufficient stock for SKU {sku_id}: requested {requested}, available {available_stock}",
            sku_id=sku_id,
            available_stock=available_stock,
        )
        self.requested = requested


class SkuNotSellableError(CartValidationError):
    """Raised when a SKU exists but is not in a sellable status."""

    def __init__(self, sku_id: str, status: str, available_stock: int):
        super().__init__(
            f"SKU {sku_id} is not available for sale (status={status})",
            sku_id=sku_id,
            available_stock=available_stock,
        )
        self.status = status


class InvalidQuantityError(CartValidationError):
    """Raised when an add/merge quantity is not a positive integer."""

    def __init__(self, sku_id: str | None, quantity: int):
        super().__init__(f"Quantity must be at least 1, got {quantity}", sku_id=sku_id)
        self.quantity = quantity


# =============================================================================
# Storage
# =============================================================================


class ConflictError(EmporiumError):
    """Raised when the storage layer reports a uniqueness or integrity violation.

    Attributes:
        entity: Entity kind the failing operation targeted
    """

    def __init__(self, message: str, entity: str | None = None):
        super().__init__(message)
        self.entity = entity

    def __str__(self) -> str:
        return f"ConflictError({self.entity}): {self.args[0]}"


class TransactionAbortedError(EmporiumError):
    """Raised when a transaction is aborted by a serialization conflict or timeout.

    Not retried by this library; add and merge are safe to retry whole.

    Attributes:
        reason: "serialization_failure", "timeout" or "lock_timeout"
    """

    def __init__(self, message: str, reason: str):
        super().__init__(message)
        self.reason = reason

    def __str__(self) -> str:
        return f"TransactionAbortedError({self.reason}): {self.args[0]}"


class InvalidOperationError(EmporiumError):
    """Raised when a storage operation cannot be rewritten safely.

    Attributes:
        entity: Entity kind of the rejected operation
        operation: Operation type that was rejected
    """

    def __init__(self, message: str, entity: str, operation: str):
        super().__init__(message)
        self.entity = entity
        self.operation = operation

    def __str__(self) -> str:
        return f"InvalidOperationError({self.entity}.{self.operation}): {self.args[0]}"
