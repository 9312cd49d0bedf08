"""Repository for stock-keeping units."""

from emporium.db.models.catalog import Sku
from emporium.db.repositories.base import BaseRepository


class SkuRepository(BaseRepository[Sku]):
    """SKU rows as seen by the cart engine; stock is always read fresh."""
