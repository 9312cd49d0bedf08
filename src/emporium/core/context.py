"""Ambient tenant context for async-safe multi-tenant operations.

The active tenant is carried by a ContextVar. Every asyncio task runs on a
copy of the context it was created from, so a value set for one inbound call
is visible across all of its awaits (and the tasks it spawns) but never leaks
into a concurrent call.

Usage:
    from emporium.core.context import TenantContext, tenant_scope, get_current_tenant

    ctx = TenantContext(tenant_id="t-1", plan=TenantPlan.PRO)

    with tenant_scope(ctx):
        current = get_current_tenant()

    # Or run a coroutine function under a tenant
    cart = await run_in_tenant(ctx, service.get_or_create_cart, user_id)
"""

from collections.abc import Awaitable, Callable, Iterator
from contextlib import contextmanager
from contextvars import ContextVar, Token
from enum import Enum
from typing import Any, ParamSpec, TypeVar

from pydantic import BaseModel, ConfigDict

from emporium.core.exceptions import ContextNotSetError

P = ParamSpec("P")
T = TypeVar("T")


class TenantPlan(str, Enum):
    """Subscription plan of a tenant."""

    BASIC = "BASIC"
    PRO = "PRO"
    ENTERPRISE = "ENTERPRISE"


class TenantContext(BaseModel):
    """Tenant attached to the logical scope of one inbound call.

    Never persisted; rebuilt per call from the resolved tenant row.
    """

    model_config = ConfigDict(frozen=True)

    tenant_id: str
    plan: TenantPlan = TenantPlan.BASIC
    is_active: bool = True
    db_url: str | None = None

    @classmethod
    def from_tenant(cls, tenant: Any) -> "TenantContext":
        """Build a context from a Tenant row (or any object with the same attributes)."""
        return cls(
            tenant_id=tenant.id,
            plan=tenant.plan,
            is_active=tenant.is_active,
            db_url=tenant.db_url,
        )


# =============================================================================
# Context Variable Management
# =============================================================================

_tenant_context: ContextVar[TenantContext | None] = ContextVar("tenant_context", default=None)


def get_current_tenant() -> TenantContext | None:
    """Get the active tenant, or None outside any tenant scope.

    Never raises: absence is the expected state for platform-level work.
    """
    return _tenant_context.get()


def require_tenant() -> TenantContext:
    """Get the active tenant.

    Raises:
        ContextNotSetError: If no tenant context is set
    """
    ctx = _tenant_context.get()
    if ctx is None:
        raise ContextNotSetError("No tenant context is set. Use tenant_scope() or run_in_tenant().")
    return ctx


def set_tenant(ctx: TenantContext | None) -> Token[TenantContext | None]:
    """Set the tenant context and return a token for restoration.

    This is a low-level API. Prefer the tenant_scope() context manager.
    """
    return _tenant_context.set(ctx)


def reset_tenant(token: Token[TenantContext | None]) -> None:
    """Restore the tenant context that was active before set_tenant()."""
    _tenant_context.reset(token)


@contextmanager
def tenant_scope(ctx: TenantContext | None) -> Iterator[TenantContext | None]:
    """Establish ``ctx`` (or no tenant) as current for the duration of the block.

    Nested scopes shadow the outer one and restore it on exit, also when the
    block raises.
    """
    token = set_tenant(ctx)
    try:
        yield ctx
    finally:
        reset_tenant(token)


async def run_in_tenant(
    ctx: TenantContext | None,
    fn: Callable[P, Awaitable[T]],
    *args: P.args,
    **kwargs: P.kwargs,
) -> T:
    """Await ``fn(*args, **kwargs)`` with ``ctx`` as the current tenant."""
    with tenant_scope(ctx):
        return await fn(*args, **kwargs)


@contextmanager
def platform_scope(reason: str) -> Iterator[None]:
    """Run a block with no tenant, bypassing tenant filtering.

    This is the only sanctioned way to perform cross-tenant work. Callers are
    responsible for their own authorization check before entering it.

    Args:
        reason: Why the bypass is needed; logged with the shadowed tenant
    """
    from emporium.core.logging import get_logger

    shadowed = _tenant_context.get()
    get_logger(__name__).warning(
        "tenant_scope_bypassed",
        reason=reason,
        shadowed_tenant_id=shadowed.tenant_id if shadowed else None,
    )
    with tenant_scope(None):
        yield
