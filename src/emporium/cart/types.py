"""Result types returned by the cart engine."""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from emporium.db.models.cart import Cart, CartItem
from emporium.db.models.catalog import Sku


class SkuSnapshot(BaseModel):
    """SKU fields as read when the cart was loaded."""

    model_config = ConfigDict(frozen=True)

    id: str
    sku_code: str
    price: Decimal
    sale_price: Decimal | None = None
    effective_price: Decimal
    stock: int
    status: str
    product_id: str | None = None

    @classmethod
    def from_sku(cls, sku: Sku) -> "SkuSnapshot":
        return cls(
            id=sku.id,
            sku_code=sku.sku_code,
            price=sku.price,
            sale_price=sku.sale_price,
            effective_price=sku.effective_price,
            stock=sku.stock,
            status=sku.status,
            product_id=sku.product_id,
        )


class CartLine(BaseModel):
    """One line of a cart view."""

    model_config = ConfigDict(frozen=True)

    id: str
    sku_id: str
    quantity: int
    created_at: datetime
    sku: SkuSnapshot | None = None

    @property
    def line_total(self) -> Decimal:
        # A line whose SKU disappeared contributes nothing
        if self.sku is None:
            return Decimal("0")
        return self.sku.effective_price * self.quantity


class CartView(BaseModel):
    """A cart with its lines (newest first) and computed totals."""

    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str
    tenant_id: str
    created_at: datetime
    updated_at: datetime
    items: list[CartLine] = Field(default_factory=list)
    total_amount: Decimal = Decimal("0")
    total_items: int = 0

    @classmethod
    def from_cart(cls, cart: Cart) -> "CartView":
        lines = [
            CartLine(
                id=item.id,
                sku_id=item.sku_id,
                quantity=item.quantity,
                created_at=item.created_at,
                sku=SkuSnapshot.from_sku(item.sku) if item.sku is not None else None,
            )
            for item in cart.items
        ]
        return cls(
            id=cart.id,
            user_id=cart.user_id,
            tenant_id=cart.tenant_id,
            created_at=cart.created_at,
            updated_at=cart.updated_at,
            items=lines,
            total_amount=sum((line.line_total for line in lines), Decimal("0")),
            total_items=sum(line.quantity for line in lines),
        )


class CartItemResult(BaseModel):
    """Outcome of adding to or updating a cart line.

    ``capped`` is True when the quantity was reduced to the available stock.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    cart_id: str
    sku_id: str
    quantity: int
    capped: bool = False

    @classmethod
    def from_item(cls, item: CartItem, *, capped: bool = False) -> "CartItemResult":
        return cls(id=item.id, cart_id=item.cart_id, sku_id=item.sku_id, quantity=item.quantity, capped=capped)


class MergeCartItem(BaseModel):
    """One guest-cart line to merge into a user's cart."""

    sku_id: str
    quantity: int


class MergeItemResult(BaseModel):
    """Per-line outcome of a merge; failures do not stop the merge."""

    model_config = ConfigDict(frozen=True)

    sku_id: str
    success: bool
    item: CartItemResult | None = None
    capped: bool = False
    error: str | None = None
