"""Cart aggregate: one cart per (user, tenant) holding at most one line per SKU."""

from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, TenantOwnedMixin, TimestampMixin, new_id
from .catalog import Sku


class Cart(TenantOwnedMixin, TimestampMixin, Base):
    """Persistent shopping cart.

    Created lazily by upsert on first access and only removed by the
    abandoned-cart maintenance job.
    """

    __tablename__ = "carts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )

    items: Mapped[list["CartItem"]] = relationship(
        back_populates="cart",
        cascade="all, delete-orphan",
        order_by=lambda: (CartItem.created_at.desc(), CartItem.id.desc()),
    )

    __table_args__ = (
        UniqueConstraint("user_id", "tenant_id", name="uq_cart_user_tenant"),
        Index("idx_cart_updated", "updated_at"),
    )

    def __repr__(self) -> str:
        return f"<Cart(id={self.id}, user_id={self.user_id})>"


class CartItem(TenantOwnedMixin, Base):
    """One SKU line in a cart."""

    __tablename__ = "cart_items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    cart_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("carts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    sku_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("skus.id", ondelete="CASCADE"), nullable=False, index=True
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    cart: Mapped[Cart] = relationship(back_populates="items")
    sku: Mapped[Sku | None] = relationship()

    __table_args__ = (
        UniqueConstraint("cart_id", "sku_id", name="uq_cart_item_cart_sku"),
        CheckConstraint("quantity > 0", name="ck_cart_item_quantity_positive"),
    )

    def __repr__(self) -> str:
        return f"<CartItem(sku_id={self.sku_id}, quantity={self.quantity})>"
