"""Unit tests for cart view types."""

from datetime import UTC, datetime
from decimal import Decimal
from types import SimpleNamespace

import pytest
from pydantic import ValidationError

from emporium.cart.types import CartItemResult, CartView, MergeCartItem, SkuSnapshot

NOW = datetime(2026, 3, 1, tzinfo=UTC)


def _sku(price: str, sale_price: str | None = None, **fields) -> SimpleNamespace:
    list_price = Decimal(price)
    sale = Decimal(sale_price) if sale_price is not None else None
    effective = sale if sale is not None and sale < list_price else list_price
    return SimpleNamespace(
        id=fields.get("id", "sku-1"),
        sku_code=fields.get("sku_code", "MUG-RED"),
        price=list_price,
        sale_price=sale,
        effective_price=effective,
        stock=fields.get("stock", 10),
        status="ACTIVE",
        product_id=None,
    )


def _item(item_id: str, quantity: int, sku: SimpleNamespace | None) -> SimpleNamespace:
    return SimpleNamespace(
        id=item_id,
        cart_id="cart-1",
        sku_id=sku.id if sku is not None else "gone",
        quantity=quantity,
        created_at=NOW,
        sku=sku,
    )


def _cart(*items: SimpleNamespace) -> SimpleNamespace:
    return SimpleNamespace(
        id="cart-1",
        user_id="user-1",
        tenant_id="tenant-1",
        created_at=NOW,
        updated_at=NOW,
        items=list(items),
    )


class TestCartView:
    """Tests for CartView.from_cart."""

    def test_empty_cart(self):
        """Test an empty cart totals to zero."""
        view = CartView.from_cart(_cart())

        assert view.items == []
        assert view.total_amount == Decimal("0")
        assert view.total_items == 0

    def test_totals_use_effective_price(self):
        """Test line totals use the sale price when it is lower."""
        view = CartView.from_cart(
            _cart(
                _item("i1", 2, _sku("10.00", "7.50", id="a")),
                _item("i2", 3, _sku("4.00", id="b")),
            )
        )

        assert view.total_amount == Decimal("27.00")
        assert view.total_items == 5
        assert [line.id for line in view.items] == ["i1", "i2"]

    def test_higher_sale_price_ignored(self):
        """Test a sale price above the list price is not charged."""
        view = CartView.from_cart(_cart(_item("i1", 1, _sku("5.00", "9.00"))))

        assert view.total_amount == Decimal("5.00")

    def test_missing_sku_contributes_nothing(self):
        """Test a line whose SKU is gone counts items but not amount."""
        view = CartView.from_cart(_cart(_item("i1", 2, None), _item("i2", 1, _sku("3.00"))))

        assert view.items[0].sku is None
        assert view.items[0].line_total == Decimal("0")
        assert view.total_amount == Decimal("3.00")
        assert view.total_items == 3


class TestSnapshots:
    """Tests for the smaller result types."""

    def test_sku_snapshot(self):
        """Test SkuSnapshot copies the effective price."""
        snapshot = SkuSnapshot.from_sku(_sku("10.00", "8.00"))

        assert snapshot.effective_price == Decimal("8.00")
        assert snapshot.sku_code == "MUG-RED"

    def test_item_result_capped(self):
        """Test CartItemResult carries the capped flag."""
        result = CartItemResult.from_item(_item("i1", 5, _sku("1.00")), capped=True)

        assert result.capped is True
        assert result.quantity == 5
        assert result.cart_id == "cart-1"

    def test_merge_item_requires_integer_quantity(self):
        """Test merge input rejects non-numeric quantities."""
        with pytest.raises(ValidationError):
            MergeCartItem.model_validate({"sku_id": "a", "quantity": "lots"})
