"""Repository for tenants."""

from emporium.db.models.tenant import Tenant
from emporium.db.repositories.base import BaseRepository


class TenantRepository(BaseRepository[Tenant]):
    """Tenants are shared rows; lookups here are never tenant-filtered."""

    async def find_by_domain(self, domain: str) -> Tenant | None:
        """Resolve a request host to a tenant.

        Tries the custom domain, then the first label as a subdomain, then
        the platform domain. Domains are stored lower-case.
        """
        domain = domain.strip().lower()
        if not domain:
            return None

        tenant = await self.find_first({"custom_domain": domain})
        if tenant is None:
            tenant = await self.find_first({"subdomain": domain.split(".", 1)[0]})
        if tenant is None:
            tenant = await self.find_first({"domain": domain})
        return tenant
