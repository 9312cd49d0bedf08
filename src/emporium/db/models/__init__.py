"""Database models for Emporium."""

from .audit import AuditAction, AuditLog
from .base import Base, SoftDeleteMixin, TenantOwnedMixin, TimestampMixin, new_id
from .cart import Cart, CartItem
from .catalog import Product, Sku, SkuStatus
from .role import Role
from .tenant import Tenant
from .user import User

__all__ = [
    "Base",
    "SoftDeleteMixin",
    "TenantOwnedMixin",
    "TimestampMixin",
    "new_id",
    "AuditAction",
    "AuditLog",
    "Cart",
    "CartItem",
    "Product",
    "Sku",
    "SkuStatus",
    "Role",
    "Tenant",
    "User",
]
