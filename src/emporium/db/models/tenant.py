"""Tenant model for multi-tenancy support."""

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column

from emporium.core.context import TenantPlan

from .base import Base, TimestampMixin, new_id


class Tenant(TimestampMixin, Base):
    """Tenant (store) in the system.

    Each tenant represents one storefront using the platform. All
    tenant-owned data is isolated by tenant_id.
    """

    __tablename__ = "tenants"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)

    # Domain resolution
    domain: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    subdomain: Mapped[str | None] = mapped_column(String(100), nullable=True, unique=True)
    custom_domain: Mapped[str | None] = mapped_column(String(255), nullable=True, unique=True)

    # Subscription and status
    plan: Mapped[str] = mapped_column(String(20), nullable=False, default=TenantPlan.BASIC.value)
    is_active: Mapped[bool] = mapped_column(default=True, nullable=False)
    suspension_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Silo mode: tenants with a dedicated database
    db_url: Mapped[str | None] = mapped_column(String(512), nullable=True)

    def __repr__(self) -> str:
        return f"<Tenant(id={self.id}, slug={self.slug})>"
