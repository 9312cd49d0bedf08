"""API middleware components."""

from .tenant import TenantCache, TenantContextMiddleware

__all__ = ["TenantCache", "TenantContextMiddleware"]
