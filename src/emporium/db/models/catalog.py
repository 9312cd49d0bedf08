"""Catalog models: products and their stock-keeping units."""

from decimal import Decimal
from enum import Enum

from sqlalchemy import CheckConstraint, ForeignKey, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, SoftDeleteMixin, TenantOwnedMixin, TimestampMixin, new_id


class SkuStatus(str, Enum):
    """Sellability of a SKU."""

    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    OUT_OF_STOCK = "OUT_OF_STOCK"


class Product(TenantOwnedMixin, SoftDeleteMixin, TimestampMixin, Base):
    """A product listed by a tenant."""

    __tablename__ = "products"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(255), nullable=False)

    skus: Mapped[list["Sku"]] = relationship(back_populates="product")

    __table_args__ = (UniqueConstraint("tenant_id", "slug", name="uq_product_tenant_slug"),)

    def __repr__(self) -> str:
        return f"<Product(id={self.id}, slug={self.slug})>"


class Sku(TenantOwnedMixin, TimestampMixin, Base):
    """Stock record for one purchasable variant.

    Owned by the catalog; the cart engine only reads it and relies on
    ``stock`` as read inside its own transactions.
    """

    __tablename__ = "skus"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    product_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("products.id", ondelete="CASCADE"), nullable=True, index=True
    )
    sku_code: Mapped[str] = mapped_column(String(100), nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    sale_price: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=SkuStatus.ACTIVE.value)

    product: Mapped[Product | None] = relationship(back_populates="skus")

    __table_args__ = (
        CheckConstraint("stock >= 0", name="ck_sku_stock_non_negative"),
        UniqueConstraint("tenant_id", "sku_code", name="uq_sku_tenant_code"),
    )

    @property
    def effective_price(self) -> Decimal:
        """Sale price when set and lower than the list price, else the list price."""
        if self.sale_price is not None and self.sale_price < self.price:
            return self.sale_price
        return self.price

    def __repr__(self) -> str:
        return f"<Sku(code={self.sku_code}, stock={self.stock})>"
