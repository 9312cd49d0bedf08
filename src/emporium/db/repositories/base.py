"""Base repository with common CRUD operations.

Repositories never touch the session directly: every call is issued as an
operation through a ``TenancyInterceptor``, so tenant scoping and soft
delete apply uniformly.

Usage:
    from emporium.db.repositories.base import BaseRepository

    class UserRepository(BaseRepository[User]):
        pass

    repo = UserRepository(db)
    user = await repo.find_by_id(user_id)
    users = await repo.find_many(limit=10, offset=0)
"""

from collections.abc import Sequence
from typing import Generic, TypeVar

from emporium.core.exceptions import RecordNotFoundError
from emporium.db.models.base import Base
from emporium.db.operations import Filter, Row
from emporium.db.tenancy import TenancyInterceptor

ModelType = TypeVar("ModelType", bound=Base)


class BaseRepository(Generic[ModelType]):
    """Generic repository for one entity kind.

    Type Parameters:
        ModelType: The SQLAlchemy model class

    Attributes:
        model: The model class
        db: The tenancy interceptor operations are issued through
    """

    model: type[ModelType]

    def __init__(self, db: TenancyInterceptor):
        self.db = db

    def __init_subclass__(cls, **kwargs):
        """Extract model type from generic parameter."""
        super().__init_subclass__(**kwargs)
        for base in getattr(cls, "__orig_bases__", []):
            args = getattr(base, "__args__", None)
            if args and len(args) >= 1:
                first_arg = args[0]
                # Check if it's an actual class (not a TypeVar)
                if isinstance(first_arg, type) and issubclass(first_arg, Base):
                    cls.model = first_arg
                    break

    @property
    def entity(self) -> str:
        return self.model.__name__

    async def find_by_id(self, pk: str, *, include: tuple[str, ...] = ()) -> ModelType | None:
        """Get a single record by primary key, or None."""
        return await self.db.find_unique(self.model, {"id": pk}, include=include)

    async def find_by_id_or_raise(self, pk: str, *, include: tuple[str, ...] = ()) -> ModelType:
        """Get a single record by primary key.

        Raises:
            RecordNotFoundError: If no visible record has that key
        """
        result = await self.find_by_id(pk, include=include)
        if result is None:
            raise RecordNotFoundError(self.entity, {"id": pk})
        return result

    async def find_by_ids(self, pks: Sequence[str]) -> list[ModelType]:
        """Get multiple records by primary keys.

        Returns:
            List of found models (may be fewer than requested if some not found)
        """
        if not pks:
            return []
        return await self.db.find_many(self.model, {"id": {"in": list(pks)}})

    async def find_first(
        self, where: Filter | None = None, *, include: tuple[str, ...] = (), order_by: tuple[str, ...] = ()
    ) -> ModelType | None:
        return await self.db.find_first(self.model, where, include=include, order_by=order_by)

    async def find_many(
        self,
        where: Filter | None = None,
        *,
        limit: int = 100,
        offset: int = 0,
        order_by: tuple[str, ...] = ("id",),
        include: tuple[str, ...] = (),
    ) -> list[ModelType]:
        """List records with pagination.

        Args:
            where: Row filter
            limit: Maximum records to return
            offset: Number of records to skip
            order_by: Column names, "-" prefix for descending
            include: Relationship paths to load
        """
        return await self.db.find_many(
            self.model, where, include=include, order_by=order_by, limit=limit, offset=offset
        )

    async def count(self, where: Filter | None = None) -> int:
        return await self.db.count(self.model, where)

    async def exists(self, pk: str) -> bool:
        return await self.count({"id": pk}) > 0

    async def create(self, data: Row, *, include: tuple[str, ...] = ()) -> ModelType:
        return await self.db.create(self.model, data, include=include)

    async def create_many(self, rows: list[Row]) -> int:
        result = await self.db.create_many(self.model, rows)
        return result.count

    async def update_by_id(self, pk: str, data: Row, *, include: tuple[str, ...] = ()) -> ModelType:
        """Update one record.

        Raises:
            RecordNotFoundError: If no visible record has that key
        """
        return await self.db.update(self.model, {"id": pk}, data, include=include)

    async def delete_by_id(self, pk: str) -> ModelType:
        """Delete one record (a tombstone update for soft-delete entities).

        Raises:
            RecordNotFoundError: If no visible record has that key
        """
        return await self.db.delete(self.model, {"id": pk})

    async def delete_many(self, where: Filter) -> int:
        result = await self.db.delete_many(self.model, where)
        return result.count

    def __repr__(self) -> str:
        return f"<{type(self).__name__}(model={self.entity})>"
