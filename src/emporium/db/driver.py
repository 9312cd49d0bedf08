"""SQLAlchemy storage driver.

Executes ``Operation`` descriptors against an ``AsyncSession`` and owns the
translation of storage-engine errors into Emporium exceptions. Tenant
scoping is not applied here; see ``emporium.db.tenancy``.

Outside ``transaction()`` every operation commits on its own. Inside, the
whole block commits on clean exit and rolls back on any exception.
"""

import asyncio
import re
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from enum import Enum
from typing import Any, Protocol

from sqlalchemy import ColumnElement, and_, delete, func, insert, select, text, update
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from emporium.core.exceptions import (
    ConflictError,
    InvalidOperationError,
    RecordNotFoundError,
    TransactionAbortedError,
)
from emporium.core.logging import get_logger
from emporium.db.models.base import Base
from emporium.db.operations import (
    AGGREGATE_FUNCTIONS,
    FILTER_OPERATORS,
    BatchResult,
    Filter,
    Increment,
    Operation,
    OperationType,
    Row,
)

logger = get_logger(__name__)

# Tenant ids bound into the session; empty means platform scope
_TENANT_ID_RE = re.compile(r"^[A-Za-z0-9_-]{0,128}$")

# SQLSTATEs that abort a transaction without it being the caller's fault
_ABORT_SQLSTATES = {
    "40001": "serialization_failure",
    "40P01": "serialization_failure",  # deadlock detected
    "55P03": "lock_timeout",
    "57014": "timeout",  # statement_timeout
}


class IsolationLevel(str, Enum):
    """Transaction isolation levels a caller may request."""

    READ_COMMITTED = "READ COMMITTED"
    REPEATABLE_READ = "REPEATABLE READ"
    SERIALIZABLE = "SERIALIZABLE"


class StorageDriver(Protocol):
    """Surface the tenancy interceptor wraps."""

    async def execute(self, op: Operation) -> Any: ...

    async def bind_tenant(self, tenant_id: str) -> None: ...

    async def rollback(self) -> None: ...

    @property
    def in_transaction(self) -> bool: ...

    def transaction(
        self,
        isolation_level: IsolationLevel = IsolationLevel.READ_COMMITTED,
        timeout: float | None = None,
    ) -> Any: ...


# =============================================================================
# Model resolution and expression building
# =============================================================================

_model_cache: dict[str, type[Base]] = {}


def resolve_model(entity: str) -> type[Base]:
    """Map an entity kind (model class name) to its mapped class.

    Raises:
        InvalidOperationError: If no mapped class has that name
    """
    model = _model_cache.get(entity)
    if model is None:
        for mapper in Base.registry.mappers:
            _model_cache[mapper.class_.__name__] = mapper.class_
        model = _model_cache.get(entity)
    if model is None:
        raise InvalidOperationError(f"Unknown entity kind {entity!r}", entity=entity, operation="resolve")
    return model


def _column(model: type[Base], name: str, op: Operation) -> Any:
    try:
        return model.__mapper__.columns[name]
    except KeyError:
        raise InvalidOperationError(
            f"{model.__name__} has no column {name!r}", entity=op.entity, operation=op.type.value
        ) from None


def build_criteria(model: type[Base], where: Filter | None, op: Operation) -> list[ColumnElement[bool]]:
    """Translate a filter mapping into SQL criteria."""
    criteria: list[ColumnElement[bool]] = []
    for name, value in (where or {}).items():
        column = _column(model, name, op)
        if isinstance(value, Mapping):
            unknown = set(value) - FILTER_OPERATORS
            if unknown:
                raise InvalidOperationError(
                    f"Unsupported filter operators {sorted(unknown)} on {name!r}",
                    entity=op.entity,
                    operation=op.type.value,
                )
            for operator, operand in value.items():
                criteria.append(_compare(column, operator, operand))
        elif value is None:
            criteria.append(column.is_(None))
        else:
            criteria.append(column == value)
    return criteria


def _compare(column: Any, operator: str, operand: Any) -> ColumnElement[bool]:
    match operator:
        case "in":
            return column.in_(list(operand))
        case "not_in":
            return column.not_in(list(operand))
        case "ne":
            return column.is_not(None) if operand is None else column != operand
        case "lt":
            return column < operand
        case "lte":
            return column <= operand
        case "gt":
            return column > operand
        case _:  # "gte"
            return column >= operand


def build_values(model: type[Base], payload: Row | None, op: Operation, *, allow_increment: bool) -> dict[str, Any]:
    """Translate a payload row into column values."""
    values: dict[str, Any] = {}
    for name, value in (payload or {}).items():
        column = _column(model, name, op)
        if isinstance(value, Increment):
            if not allow_increment:
                raise InvalidOperationError(
                    f"Increment is not valid in a {op.type.value} payload",
                    entity=op.entity,
                    operation=op.type.value,
                )
            values[name] = column + value.amount
        else:
            values[name] = value
    return values


def build_loaders(model: type[Base], include: tuple[str, ...], op: Operation) -> list[Any]:
    """Build selectinload options for dotted relationship paths."""
    loaders: list[Any] = []
    for path in include:
        current = model
        loader = None
        for part in path.split("."):
            relationship = current.__mapper__.relationships.get(part)
            if relationship is None:
                raise InvalidOperationError(
                    f"{current.__name__} has no relationship {part!r}",
                    entity=op.entity,
                    operation=op.type.value,
                )
            attr = getattr(current, part)
            loader = selectinload(attr) if loader is None else loader.selectinload(attr)
            current = relationship.mapper.class_
        if loader is not None:
            loaders.append(loader)
    return loaders


def _order_clauses(model: type[Base], order_by: tuple[str, ...], op: Operation) -> list[Any]:
    clauses = []
    for name in order_by:
        descending = name.startswith("-")
        column = _column(model, name.lstrip("-"), op)
        clauses.append(column.desc() if descending else column.asc())
    return clauses


def translate_error(exc: DBAPIError, entity: str | None = None) -> Exception:
    """Translate a storage-engine error into an Emporium exception.

    Returns the original exception when it is not one we classify.
    """
    if isinstance(exc, IntegrityError):
        return ConflictError(f"Integrity violation: {exc.orig}", entity=entity)

    orig = exc.orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate in _ABORT_SQLSTATES:
        return TransactionAbortedError(f"Transaction aborted by the database: {orig}", reason=_ABORT_SQLSTATES[sqlstate])

    message = str(orig).lower()
    if "database is locked" in message:
        return TransactionAbortedError(f"Transaction aborted by the database: {orig}", reason="lock_timeout")
    if "could not serialize" in message:
        return TransactionAbortedError(f"Transaction aborted by the database: {orig}", reason="serialization_failure")
    return exc


# =============================================================================
# Driver
# =============================================================================


class SQLAlchemyDriver:
    """Executes storage operations on one AsyncSession.

    The session factory must use ``expire_on_commit=False``; returned rows are
    used after their transaction commits.

    Attributes:
        session: The underlying async session
    """

    def __init__(self, session: AsyncSession, *, in_transaction: bool = False):
        self.session = session
        self._in_transaction = in_transaction

    @property
    def dialect_name(self) -> str:
        return self.session.get_bind().dialect.name

    @property
    def in_transaction(self) -> bool:
        return self._in_transaction

    async def bind_tenant(self, tenant_id: str) -> None:
        """Bind the tenant to the database session for row-level security.

        On PostgreSQL uses ``set_config(.., true)`` so the value is scoped to
        the current transaction. SQLite has no RLS, so this is a no-op there.

        Raises:
            InvalidOperationError: If tenant_id has unexpected characters
        """
        if self.dialect_name != "postgresql":
            return

        if not _TENANT_ID_RE.match(tenant_id):
            raise InvalidOperationError(
                f"Invalid tenant_id for session binding: {tenant_id!r}", entity="*", operation="bind_tenant"
            )

        await self.session.execute(
            text("SELECT set_config('app.current_tenant_id', :tid, true)"),
            {"tid": tenant_id},
        )

    async def rollback(self) -> None:
        """Discard whatever the session has open, including a tenant binding."""
        await self.session.rollback()

    async def execute(self, op: Operation) -> Any:
        """Execute one operation.

        Raises:
            ConflictError: On uniqueness or integrity violations
            TransactionAbortedError: On serialization failures and lock timeouts
            RecordNotFoundError: When a single-row update/delete matches nothing
            InvalidOperationError: When the operation references unknown columns
        """
        try:
            model = resolve_model(op.entity)
            handler = getattr(self, f"_{op.type.value}")
            result = await handler(model, op)
            if not self._in_transaction:
                await self.session.commit()
            return result
        except DBAPIError as exc:
            if not self._in_transaction:
                await self.session.rollback()
            translated = translate_error(exc, entity=op.entity)
            if translated is exc:
                raise
            raise translated from exc
        except Exception:
            if not self._in_transaction:
                await self.session.rollback()
            raise

    @asynccontextmanager
    async def transaction(
        self,
        isolation_level: IsolationLevel = IsolationLevel.READ_COMMITTED,
        timeout: float | None = None,
    ) -> AsyncIterator["SQLAlchemyDriver"]:
        """Run a block in one database transaction.

        Args:
            isolation_level: Requested isolation level
            timeout: Seconds before the transaction is aborted and rolled back

        Yields:
            A driver whose operations join this transaction

        Raises:
            TransactionAbortedError: On timeout or serialization failure
        """
        if self._in_transaction or self.session.in_transaction():
            raise InvalidOperationError(
                "A transaction is already in progress on this session", entity="*", operation="transaction"
            )

        level = self._dialect_isolation(isolation_level)
        try:
            async with asyncio.timeout(timeout):
                async with self.session.begin():
                    await self.session.connection(execution_options={"isolation_level": level})
                    yield SQLAlchemyDriver(self.session, in_transaction=True)
        except TimeoutError as exc:
            logger.warning("transaction_timeout", timeout_seconds=timeout, isolation_level=level)
            raise TransactionAbortedError(f"Transaction exceeded {timeout}s and was rolled back", reason="timeout") from exc
        except DBAPIError as exc:
            translated = translate_error(exc)
            if translated is exc:
                raise
            raise translated from exc

    def _dialect_isolation(self, isolation_level: IsolationLevel) -> str:
        # SQLite transactions are always serializable
        if self.dialect_name == "sqlite":
            return IsolationLevel.SERIALIZABLE.value
        return isolation_level.value

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def _select(self, model: type[Base], op: Operation) -> Any:
        stmt = select(model).where(*build_criteria(model, op.where, op))
        loaders = build_loaders(model, op.include, op)
        if loaders:
            stmt = stmt.options(*loaders)
        if op.order_by:
            stmt = stmt.order_by(*_order_clauses(model, op.order_by, op))
        # Never serve a row from the identity map; stock must be read fresh
        return stmt.execution_options(populate_existing=True)

    async def _find_unique(self, model: type[Base], op: Operation) -> Any:
        return await self._find_first(model, op)

    async def _find_first(self, model: type[Base], op: Operation) -> Any:
        result = await self.session.execute(self._select(model, op).limit(1))
        return result.scalars().first()

    async def _find_many(self, model: type[Base], op: Operation) -> list[Any]:
        stmt = self._select(model, op)
        if op.limit is not None:
            stmt = stmt.limit(op.limit)
        if op.offset:
            stmt = stmt.offset(op.offset)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def _count(self, model: type[Base], op: Operation) -> int:
        stmt = select(func.count()).select_from(model).where(*build_criteria(model, op.where, op))
        result = await self.session.execute(stmt)
        return result.scalar_one()

    async def _aggregate(self, model: type[Base], op: Operation) -> dict[str, dict[str, Any]]:
        if not op.aggregate:
            raise InvalidOperationError("Aggregate needs at least one function", entity=op.entity, operation=op.type.value)

        labels: list[tuple[str, str]] = []
        columns = []
        for fn_name, column_names in op.aggregate.items():
            if fn_name not in AGGREGATE_FUNCTIONS:
                raise InvalidOperationError(
                    f"Unsupported aggregate function {fn_name!r}", entity=op.entity, operation=op.type.value
                )
            for name in column_names:
                if fn_name == "count" and name == "*":
                    expr = func.count()
                else:
                    expr = getattr(func, fn_name)(_column(model, name, op))
                columns.append(expr.label(f"{fn_name}__{name}"))
                labels.append((fn_name, name))

        stmt = select(*columns).select_from(model).where(*build_criteria(model, op.where, op))
        row = (await self.session.execute(stmt)).one()

        aggregates: dict[str, dict[str, Any]] = {}
        for (fn_name, name), value in zip(labels, row, strict=True):
            aggregates.setdefault(fn_name, {})[name] = value
        return aggregates

    async def _reload(self, model: type[Base], op: Operation, pk: Any) -> Any:
        pk_column = model.__mapper__.primary_key[0]
        stmt = (
            select(model)
            .where(pk_column == pk)
            .options(*build_loaders(model, op.include, op))
            .execution_options(populate_existing=True)
        )
        return (await self.session.execute(stmt)).scalars().one()

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def _create(self, model: type[Base], op: Operation) -> Any:
        if not isinstance(op.data, Mapping):
            raise InvalidOperationError("create expects a single row", entity=op.entity, operation=op.type.value)

        obj = model(**build_values(model, op.data, op, allow_increment=False))
        self.session.add(obj)
        await self.session.flush()
        await self.session.refresh(obj)
        if op.include:
            return await self._reload(model, op, obj.__mapper__.primary_key_from_instance(obj)[0])
        return obj

    async def _create_many(self, model: type[Base], op: Operation) -> BatchResult:
        if not isinstance(op.data, list):
            raise InvalidOperationError("create_many expects a list of rows", entity=op.entity, operation=op.type.value)
        if not op.data:
            return BatchResult(count=0)

        rows = [build_values(model, row, op, allow_increment=False) for row in op.data]
        await self.session.execute(insert(model), rows)
        return BatchResult(count=len(rows))

    async def _target_pk(self, model: type[Base], op: Operation) -> Any:
        pk_column = model.__mapper__.primary_key[0]
        stmt = select(pk_column).where(*build_criteria(model, op.where, op)).limit(1)
        pk = (await self.session.execute(stmt)).scalar_one_or_none()
        if pk is None:
            raise RecordNotFoundError(op.entity, op.where)
        return pk

    async def _update(self, model: type[Base], op: Operation) -> Any:
        values = build_values(model, op.data, op, allow_increment=True)
        if not values:
            raise InvalidOperationError("update needs a non-empty payload", entity=op.entity, operation=op.type.value)

        pk_column = model.__mapper__.primary_key[0]
        pk = await self._target_pk(model, op)
        stmt = (
            update(model)
            .where(pk_column == pk, *build_criteria(model, op.where, op))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount == 0:
            raise RecordNotFoundError(op.entity, op.where)
        return await self._reload(model, op, pk)

    async def _update_many(self, model: type[Base], op: Operation) -> BatchResult:
        values = build_values(model, op.data, op, allow_increment=True)
        if not values:
            raise InvalidOperationError("update_many needs a non-empty payload", entity=op.entity, operation=op.type.value)

        stmt = (
            update(model)
            .where(*build_criteria(model, op.where, op))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return BatchResult(count=result.rowcount)

    async def _delete(self, model: type[Base], op: Operation) -> Any:
        pk_column = model.__mapper__.primary_key[0]
        pk = await self._target_pk(model, op)
        obj = await self._reload(model, op, pk)
        await self.session.execute(
            delete(model).where(pk_column == pk).execution_options(synchronize_session=False)
        )
        self.session.expunge(obj)
        return obj

    async def _delete_many(self, model: type[Base], op: Operation) -> BatchResult:
        stmt = delete(model).where(*build_criteria(model, op.where, op)).execution_options(synchronize_session=False)
        result = await self.session.execute(stmt)
        return BatchResult(count=result.rowcount)

    async def _upsert(self, model: type[Base], op: Operation) -> Any:
        """INSERT .. ON CONFLICT DO UPDATE .. RETURNING in one statement.

        ``where`` equality values for the conflict columns seed the insert;
        its remaining predicates guard which conflicting row may be updated.
        A conflicting row outside those predicates is a ConflictError.
        """
        if not op.conflict_on:
            raise InvalidOperationError("upsert needs conflict_on columns", entity=op.entity, operation=op.type.value)

        where = op.where or {}
        create_values = build_values(model, op.create, op, allow_increment=False)
        for name in op.conflict_on:
            if name not in create_values and name in where and not isinstance(where[name], Mapping):
                create_values[name] = where[name]

        guard = build_criteria(model, {k: v for k, v in where.items() if k not in op.conflict_on}, op)
        set_values = build_values(model, op.update, op, allow_increment=True)
        if "updated_at" in model.__mapper__.columns and "updated_at" not in set_values:
            set_values["updated_at"] = func.now()

        dialect_insert = self._dialect_insert()
        stmt = dialect_insert(model).values(**create_values)
        if not set_values:
            # DO UPDATE needs an assignment for RETURNING to yield the existing row
            key = op.conflict_on[0]
            set_values[key] = stmt.excluded[key]
        stmt = stmt.on_conflict_do_update(
            index_elements=[_column(model, name, op) for name in op.conflict_on],
            set_=set_values,
            where=and_(*guard) if guard else None,
        )

        result = await self.session.scalars(
            stmt.returning(model), execution_options={"populate_existing": True}
        )
        obj = result.first()
        if obj is None:
            raise ConflictError(
                f"Conflicting {op.entity} row on {op.conflict_on} is outside the operation's scope",
                entity=op.entity,
            )
        if op.include:
            return await self._reload(model, op, obj.__mapper__.primary_key_from_instance(obj)[0])
        return obj

    def _dialect_insert(self) -> Any:
        match self.dialect_name:
            case "postgresql":
                from sqlalchemy.dialects.postgresql import insert as pg_insert

                return pg_insert
            case "sqlite":
                from sqlalchemy.dialects.sqlite import insert as sqlite_insert

                return sqlite_insert
            case other:
                raise InvalidOperationError(f"upsert is not supported on {other}", entity="*", operation="upsert")
