"""Repositories for carts and cart items."""

from emporium.db.models.cart import Cart, CartItem
from emporium.db.operations import Increment
from emporium.db.repositories.base import BaseRepository

CART_WITH_ITEMS = ("items.sku",)


class CartRepository(BaseRepository[Cart]):
    """Carts, one per (user, tenant)."""

    async def upsert_for_user(self, user_id: str, *, include: tuple[str, ...] = ()) -> Cart:
        """Create the caller's cart, or touch the existing one, in one statement."""
        return await self.db.upsert(
            Cart,
            {"user_id": user_id},
            create={"user_id": user_id},
            update={},
            conflict_on=("user_id", "tenant_id"),
            include=include,
        )

    async def find_by_user(self, user_id: str, *, include: tuple[str, ...] = ()) -> Cart | None:
        return await self.find_first({"user_id": user_id}, include=include)


class CartItemRepository(BaseRepository[CartItem]):
    """Cart lines, unique per (cart, SKU)."""

    async def add_quantity(self, cart_id: str, sku_id: str, quantity: int) -> CartItem:
        """Insert a line, or atomically add ``quantity`` to the existing one."""
        return await self.db.upsert(
            CartItem,
            {"cart_id": cart_id, "sku_id": sku_id},
            create={"cart_id": cart_id, "sku_id": sku_id, "quantity": quantity},
            update={"quantity": Increment(quantity)},
            conflict_on=("cart_id", "sku_id"),
        )

    async def set_quantity(self, item_id: str, quantity: int) -> CartItem:
        return await self.update_by_id(item_id, {"quantity": quantity})

    async def find_owned(self, item_id: str, user_id: str) -> CartItem | None:
        """Fetch a line only if it sits in ``user_id``'s cart."""
        item = await self.find_by_id(item_id, include=("cart", "sku"))
        if item is None or item.cart is None or item.cart.user_id != user_id:
            return None
        return item

    async def clear(self, cart_id: str) -> int:
        return await self.delete_many({"cart_id": cart_id})
