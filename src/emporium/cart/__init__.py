"""Cart and inventory engine."""

from .maintenance import MaintenanceScheduler, create_maintenance_scheduler, prune_abandoned_carts
from .service import CartService
from .types import CartItemResult, CartLine, CartView, MergeCartItem, MergeItemResult, SkuSnapshot

__all__ = [
    "CartService",
    "MaintenanceScheduler",
    "create_maintenance_scheduler",
    "prune_abandoned_carts",
    "CartItemResult",
    "CartLine",
    "CartView",
    "MergeCartItem",
    "MergeItemResult",
    "SkuSnapshot",
]
