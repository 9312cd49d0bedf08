"""Tenant resolution middleware."""

import time
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from emporium.config.settings import get_settings
from emporium.core.context import TenantContext, platform_scope, tenant_scope
from emporium.core.exceptions import TenantInactiveError, TenantNotFoundError
from emporium.core.logging import get_logger
from emporium.db.config import get_interceptor
from emporium.db.repositories.tenant import TenantRepository
from emporium.db.tenancy import TenancyInterceptor

logger = get_logger(__name__)

TENANT_DOMAIN_HEADER = "X-Tenant-Domain"

# Paths that don't require tenant resolution
SKIP_TENANT_PATHS = {
    "/health",
    "/health/db",
    "/health/ready",
    "/docs",
    "/redoc",
    "/openapi.json",
}

InterceptorFactory = Callable[[], AbstractAsyncContextManager[TenancyInterceptor]]


class TenantCache:
    """In-process cache of resolved tenants keyed by domain."""

    def __init__(self, ttl_seconds: float):
        self.ttl_seconds = ttl_seconds
        self._entries: dict[str, tuple[float, TenantContext]] = {}

    def get(self, domain: str) -> TenantContext | None:
        entry = self._entries.get(domain)
        if entry is None:
            return None
        expires_at, ctx = entry
        if time.monotonic() >= expires_at:
            del self._entries[domain]
            return None
        return ctx

    def set(self, domain: str, ctx: TenantContext) -> None:
        if self.ttl_seconds > 0:
            self._entries[domain] = (time.monotonic() + self.ttl_seconds, ctx)

    def clear(self) -> None:
        self._entries.clear()


class TenantContextMiddleware(BaseHTTPMiddleware):
    """Middleware that resolves the tenant from the request host.

    The domain comes from the X-Tenant-Domain header, falling back to the
    Host header without its port. The rest of the request runs inside
    ``tenant_scope`` for the resolved tenant, so every storage operation it
    issues is scoped to that tenant.

    Responses:
        403 "Store suspended" when the tenant is inactive
        403 "Unauthorized Tenant" when X-Tenant-Domain names no tenant
    """

    def __init__(
        self,
        app: ASGIApp,
        interceptor_factory: InterceptorFactory = get_interceptor,
        cache_ttl_seconds: float | None = None,
    ):
        super().__init__(app)
        if cache_ttl_seconds is None:
            cache_ttl_seconds = get_settings().TENANT_CACHE_TTL_SECONDS
        self.interceptor_factory = interceptor_factory
        self.cache = TenantCache(cache_ttl_seconds)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """Resolve the tenant and run the request in its scope."""
        if self._should_skip_resolution(request.url.path):
            return await call_next(request)

        requested = request.headers.get(TENANT_DOMAIN_HEADER, "")
        domain = (requested or request.headers.get("host", "")).split(":")[0].lower()

        try:
            ctx = await self._resolve(domain)
        except TenantInactiveError as e:
            logger.warning("inactive_tenant_access", tenant_id=e.tenant_id, domain=domain)
            return self._suspended(e)
        except TenantNotFoundError:
            if requested:
                logger.error("unauthorized_tenant_access", domain=domain, requested_domain=requested)
                return self._unauthorized(domain)
            return await call_next(request)

        with tenant_scope(ctx):
            request.state.tenant_id = ctx.tenant_id
            return await call_next(request)

    def _should_skip_resolution(self, path: str) -> bool:
        """Check if path should skip tenant resolution."""
        return path in SKIP_TENANT_PATHS or path.startswith(("/docs", "/redoc"))

    async def _resolve(self, domain: str) -> TenantContext:
        """Resolve a domain to an active tenant's context.

        Raises:
            TenantNotFoundError: If no tenant matches the domain
            TenantInactiveError: If the tenant is suspended
        """
        cached = self.cache.get(domain)
        if cached is not None:
            return cached

        with platform_scope("tenant resolution"):
            async with self.interceptor_factory() as db:
                tenant = await TenantRepository(db).find_by_domain(domain)

        if tenant is None:
            raise TenantNotFoundError(domain)
        if not tenant.is_active:
            raise TenantInactiveError(tenant.id, tenant.suspension_reason)

        ctx = TenantContext.from_tenant(tenant)
        self.cache.set(domain, ctx)
        return ctx

    def _suspended(self, error: TenantInactiveError) -> JSONResponse:
        """Create a 403 response for a suspended store."""
        return JSONResponse(
            status_code=403,
            content={
                "error": "Store suspended",
                "message": "This store is currently not active. Please contact support.",
                "reason": error.reason,
            },
        )

    def _unauthorized(self, domain: str) -> JSONResponse:
        """Create a 403 response for an unknown store domain."""
        return JSONResponse(
            status_code=403,
            content={
                "error": "Unauthorized Tenant",
                "message": "The requested store domain does not exist or is not registered.",
                "domain": domain,
            },
        )
