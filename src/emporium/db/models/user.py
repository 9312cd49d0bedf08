"""Shopper accounts."""

from sqlalchemy import String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, SoftDeleteMixin, TenantOwnedMixin, TimestampMixin, new_id


class User(TenantOwnedMixin, SoftDeleteMixin, TimestampMixin, Base):
    """A shopper registered with one tenant."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    __table_args__ = (UniqueConstraint("tenant_id", "email", name="uq_user_tenant_email"),)

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email})>"
