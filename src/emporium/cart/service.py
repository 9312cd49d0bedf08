"""Cart and inventory engine.

Every operation runs for the tenant in the current context and goes through
the tenancy interceptor, so carts, lines and SKUs are always the caller's
tenant's rows.

Stock is validated inside the same SERIALIZABLE transaction that writes the
cart line: the SKU is read, the request checked, the line upserted with an
atomic increment, and the resulting quantity clamped to the stock that was
read. Two shoppers racing for the last units either serialize or one of them
gets ``TransactionAbortedError``; stock can never be oversold.

Usage:
    service = CartService(db)
    with tenant_scope(ctx):
        result = await service.add_item(user_id, sku_id, 2)
        cart = await service.get_or_create_cart(user_id)
"""

from collections.abc import Mapping, Sequence

from emporium.config.settings import CartConfig, get_settings
from emporium.core.context import require_tenant
from emporium.core.exceptions import (
    CartItemNotFoundError,
    CartValidationError,
    InsufficientStockError,
    InvalidQuantityError,
    SkuNotFoundError,
    SkuNotSellableError,
)
from emporium.core.logging import get_logger
from emporium.db.driver import IsolationLevel
from emporium.db.models.catalog import Sku, SkuStatus
from emporium.db.repositories import (
    CART_WITH_ITEMS,
    CartItemRepository,
    CartRepository,
    SkuRepository,
)
from emporium.db.tenancy import TenancyInterceptor

from .types import CartItemResult, CartView, MergeCartItem, MergeItemResult

logger = get_logger(__name__)


class CartService:
    """Persistent carts with stock-safe quantity changes.

    Args:
        db: Interceptor to issue operations through
        config: Cart settings (default: from application settings)
    """

    def __init__(self, db: TenancyInterceptor, config: CartConfig | None = None):
        self.db = db
        self.config = config or get_settings().cart

    def _inventory_transaction(self):
        return self.db.transaction(
            IsolationLevel.SERIALIZABLE,
            timeout=self.config.transaction_timeout_seconds,
        )

    async def get_or_create_cart(self, user_id: str) -> CartView:
        """Return the caller's cart, creating it if needed.

        A single upsert both creates and loads the cart, so concurrent first
        requests for the same user cannot create two carts.
        """
        require_tenant()
        cart = await CartRepository(self.db).upsert_for_user(user_id, include=CART_WITH_ITEMS)
        return CartView.from_cart(cart)

    async def add_item(self, user_id: str, sku_id: str, quantity: int) -> CartItemResult:
        """Add ``quantity`` units of a SKU, merging with an existing line.

        Raises:
            InvalidQuantityError: If quantity is below 1
            SkuNotFoundError: If the SKU does not exist for this tenant
            SkuNotSellableError: If the SKU is not ACTIVE
            InsufficientStockError: If quantity exceeds current stock
            TransactionAbortedError: On serialization conflict or timeout
        """
        require_tenant()
        if quantity < 1:
            raise InvalidQuantityError(sku_id, quantity)

        async with self._inventory_transaction() as tx:
            sku = _sellable(sku_id, await SkuRepository(tx).find_by_id(sku_id))
            logger.debug("add_to_cart_stock_check", sku_code=sku.sku_code, stock=sku.stock, quantity=quantity)
            if quantity > sku.stock:
                raise InsufficientStockError(sku_id, quantity, sku.stock)

            cart = await CartRepository(tx).upsert_for_user(user_id)
            return await _add_line(tx, cart.id, sku, quantity)

    async def update_item_quantity(self, user_id: str, item_id: str, quantity: int) -> CartItemResult | None:
        """Set a line's quantity; zero or less removes the line.

        Returns:
            The updated line, or None when the line was removed

        Raises:
            CartItemNotFoundError: If the line is not in the caller's cart
            InsufficientStockError: If quantity exceeds current stock
        """
        require_tenant()
        if quantity <= 0:
            await self.remove_item(user_id, item_id)
            return None

        async with self._inventory_transaction() as tx:
            items = CartItemRepository(tx)
            item = await items.find_owned(item_id, user_id)
            if item is None:
                raise CartItemNotFoundError(item_id)
            if item.sku is None:
                raise SkuNotFoundError(item.sku_id)

            logger.debug("update_cart_item_stock_check", sku_code=item.sku.sku_code, stock=item.sku.stock, quantity=quantity)
            if quantity > item.sku.stock:
                raise InsufficientStockError(item.sku_id, quantity, item.sku.stock)

            updated = await items.set_quantity(item.id, quantity)
            return CartItemResult.from_item(updated)

    async def remove_item(self, user_id: str, item_id: str) -> None:
        """Remove a line from the caller's cart.

        Raises:
            CartItemNotFoundError: If the line is not in the caller's cart
        """
        require_tenant()
        items = CartItemRepository(self.db)
        item = await items.find_owned(item_id, user_id)
        if item is None:
            raise CartItemNotFoundError(item_id)
        await items.delete_by_id(item.id)

    async def clear_cart(self, user_id: str) -> None:
        """Remove every line from the caller's cart, if they have one."""
        require_tenant()
        cart = await CartRepository(self.db).find_by_user(user_id)
        if cart is None:
            return
        removed = await CartItemRepository(self.db).clear(cart.id)
        logger.info("cart_cleared", cart_id=cart.id, removed_items=removed)

    async def merge_cart(
        self, user_id: str, items: Sequence[MergeCartItem | Mapping]
    ) -> list[MergeItemResult]:
        """Merge guest-cart lines into the caller's cart.

        Quantities add to existing lines and are clamped to stock. A line
        that cannot be merged is reported as failed and the rest continue;
        all successful lines commit together.
        """
        require_tenant()
        if not items:
            return []
        entries = [MergeCartItem.model_validate(item) for item in items]

        async with self._inventory_transaction() as tx:
            cart = await CartRepository(tx).upsert_for_user(user_id)
            skus = {sku.id: sku for sku in await SkuRepository(tx).find_by_ids(list({e.sku_id for e in entries}))}

            results: list[MergeItemResult] = []
            for entry in entries:
                try:
                    if entry.quantity < 1:
                        raise InvalidQuantityError(entry.sku_id, entry.quantity)
                    sku = _sellable(entry.sku_id, skus.get(entry.sku_id))
                    # Clamping to zero would leave an empty line behind
                    if sku.stock < 1:
                        raise InsufficientStockError(sku.id, entry.quantity, sku.stock)
                    line = await _add_line(tx, cart.id, sku, entry.quantity)
                except (CartValidationError, SkuNotFoundError) as exc:
                    results.append(MergeItemResult(sku_id=entry.sku_id, success=False, error=exc.args[0]))
                    continue
                results.append(MergeItemResult(sku_id=entry.sku_id, success=True, item=line, capped=line.capped))

        failed = sum(1 for r in results if not r.success)
        logger.info("cart_merged", cart_id=cart.id, merged=len(results) - failed, failed=failed)
        return results


def _sellable(sku_id: str, sku: Sku | None) -> Sku:
    if sku is None:
        raise SkuNotFoundError(sku_id)
    if sku.status != SkuStatus.ACTIVE:
        raise SkuNotSellableError(sku_id, sku.status, sku.stock)
    return sku


async def _add_line(tx: TenancyInterceptor, cart_id: str, sku: Sku, quantity: int) -> CartItemResult:
    """Increment-then-clamp against the stock read in this transaction."""
    items = CartItemRepository(tx)
    item = await items.add_quantity(cart_id, sku.id, quantity)
    if item.quantity <= sku.stock:
        return CartItemResult.from_item(item)

    requested = item.quantity
    item = await items.set_quantity(item.id, sku.stock)
    logger.warning("cart_item_capped", sku_code=sku.sku_code, requested_quantity=requested, capped_quantity=sku.stock)
    return CartItemResult.from_item(item, capped=True)
