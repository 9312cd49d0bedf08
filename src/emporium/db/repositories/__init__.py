"""Repositories issuing storage operations through the tenancy interceptor."""

from .base import BaseRepository
from .cart import CART_WITH_ITEMS, CartItemRepository, CartRepository
from .catalog import SkuRepository
from .tenant import TenantRepository

__all__ = [
    "BaseRepository",
    "CART_WITH_ITEMS",
    "CartItemRepository",
    "CartRepository",
    "SkuRepository",
    "TenantRepository",
]
