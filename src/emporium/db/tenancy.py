"""Tenant isolation and soft-delete enforcement for storage operations.

Every operation issued through ``TenancyInterceptor`` is rewritten before the
driver sees it:

1. The active tenant (or "" for platform scope) is bound to the database
   session so row-level security policies apply.
2. Operations on tenant-owned entities are scoped to the active tenant:
   filters gain ``tenant_id``, create payloads are stamped with it, and
   ``find_unique`` is demoted to ``find_first`` since the compound filter is
   no longer a unique key.
3. Filtered operations on soft-delete entities exclude tombstoned rows unless
   the caller filters on ``deleted_at`` explicitly.
4. Deletes on soft-delete entities become updates that set ``deleted_at``.

With no active tenant (``platform_scope``) step 2 is skipped entirely; this
is how maintenance jobs and tenant resolution see every tenant's rows.
"""

import time
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from emporium.config.settings import get_settings
from emporium.core.context import TenantContext, get_current_tenant
from emporium.core.exceptions import InvalidOperationError
from emporium.core.logging import get_logger, log_slow_operation
from emporium.db.driver import IsolationLevel, StorageDriver
from emporium.db.models.base import Base
from emporium.db.operations import (
    DELETE_OPERATIONS,
    SOFT_DELETE_SUBSTITUTES,
    Filter,
    Operation,
    OperationType,
    Row,
)
from emporium.utils.exceptions import ConfigurationError

logger = get_logger(__name__)

TENANT_FIELD = "tenant_id"
TOMBSTONE_FIELD = "deleted_at"

# Argument keys whose values never reach the logs
SENSITIVE_KEYS = ("password", "token", "secret", "key")


@dataclass(frozen=True)
class EntityClassification:
    """Which entity kinds are shared across tenants and which soft-delete.

    Every entity kind not listed in ``shared`` is tenant-owned.
    """

    shared: frozenset[str] = frozenset({"Tenant", "Role", "AuditLog"})
    soft_delete: frozenset[str] = frozenset({"User", "Product"})

    def is_tenant_owned(self, entity: str) -> bool:
        return entity not in self.shared

    def is_soft_delete(self, entity: str) -> bool:
        return entity in self.soft_delete


DEFAULT_CLASSIFICATION = EntityClassification()


def validate_classification(
    classification: EntityClassification = DEFAULT_CLASSIFICATION,
    base: type[Base] = Base,
) -> None:
    """Check the classification against the mapped models.

    Tenant-owned models must carry ``tenant_id`` and soft-delete models must
    carry ``deleted_at``; shared models must not carry ``tenant_id`` as a
    required column.

    Raises:
        ConfigurationError: On the first mismatch found
    """
    models = {mapper.class_.__name__: mapper for mapper in base.registry.mappers}

    for name in classification.shared | classification.soft_delete:
        if name not in models:
            raise ConfigurationError(f"Entity classification names unknown model {name!r}")

    for name, mapper in models.items():
        columns = mapper.columns
        if classification.is_tenant_owned(name) and TENANT_FIELD not in columns:
            raise ConfigurationError(f"Tenant-owned model {name} has no {TENANT_FIELD} column")
        if not classification.is_tenant_owned(name) and TENANT_FIELD in columns and not columns[TENANT_FIELD].nullable:
            raise ConfigurationError(f"Shared model {name} has a required {TENANT_FIELD} column")
        if classification.is_soft_delete(name) and TOMBSTONE_FIELD not in columns:
            raise ConfigurationError(f"Soft-delete model {name} has no {TOMBSTONE_FIELD} column")


# =============================================================================
# Rewriting
# =============================================================================


def _stamp_tenant(row: Row | None, tenant_id: str) -> Row:
    stamped = dict(row or {})
    stamped.setdefault(TENANT_FIELD, tenant_id)
    return stamped


def _scope_to_tenant(op: Operation, tenant_id: str) -> Operation:
    if op.type == OperationType.CREATE:
        return op.replace(data=_stamp_tenant(op.data, tenant_id))  # type: ignore[arg-type]

    if op.type == OperationType.CREATE_MANY:
        return op.replace(data=[_stamp_tenant(row, tenant_id) for row in op.data or []])

    # The active tenant overrides any tenant_id the caller put in the filter
    changes: dict[str, Any] = {"where": {**(op.where or {}), TENANT_FIELD: tenant_id}}
    if op.type == OperationType.FIND_UNIQUE:
        changes["type"] = OperationType.FIND_FIRST
    if op.type == OperationType.UPSERT:
        changes["create"] = _stamp_tenant(op.create, tenant_id)
    return op.replace(**changes)


def rewrite_operation(
    op: Operation,
    tenant: TenantContext | None,
    classification: EntityClassification = DEFAULT_CLASSIFICATION,
    now: datetime | None = None,
) -> Operation:
    """Apply tenant scoping and soft-delete rules to an operation.

    Pure function; the input operation is never modified.

    Args:
        op: Operation as issued by application code
        tenant: Active tenant, None in platform scope
        classification: Entity classification
        now: Tombstone timestamp for substituted deletes

    Returns:
        The operation the driver should execute

    Raises:
        InvalidOperationError: If a soft-delete is issued without a filter
    """
    caller_where: Filter = op.where or {}

    if tenant is not None and classification.is_tenant_owned(op.entity):
        op = _scope_to_tenant(op, tenant.tenant_id)

    if not classification.is_soft_delete(op.entity):
        return op

    if op.is_filtered and TOMBSTONE_FIELD not in caller_where:
        op = op.replace(where={**(op.where or {}), TOMBSTONE_FIELD: None})

    if op.type in DELETE_OPERATIONS:
        if not caller_where:
            raise InvalidOperationError(
                f"Refusing to soft-delete {op.entity} rows without a filter",
                entity=op.entity,
                operation=op.type.value,
            )
        op = op.replace(
            type=SOFT_DELETE_SUBSTITUTES[op.type],
            data={TOMBSTONE_FIELD: now or datetime.now(UTC)},
            substituted_from=op.type,
        )

    return op


def redact(value: Any) -> Any:
    """Mask values under sensitive keys, recursively."""
    if isinstance(value, Mapping):
        return {
            key: "[REDACTED]" if any(s in str(key).lower() for s in SENSITIVE_KEYS) else redact(item)
            for key, item in value.items()
        }
    if isinstance(value, list | tuple):
        return [redact(item) for item in value]
    return value


# =============================================================================
# Interceptor
# =============================================================================


def _entity_name(entity: str | type[Base]) -> str:
    return entity if isinstance(entity, str) else entity.__name__


class TenancyInterceptor:
    """Wraps a storage driver and applies tenancy rules to every operation.

    Application code should hold one of these rather than the driver; the
    driver is only reached through ``dispatch``.

    Example:
        db = TenancyInterceptor(SQLAlchemyDriver(session))
        with tenant_scope(ctx):
            cart = await db.find_first(Cart, {"user_id": user_id}, include=("items.sku",))
    """

    def __init__(
        self,
        driver: StorageDriver,
        classification: EntityClassification = DEFAULT_CLASSIFICATION,
        slow_threshold_ms: float | None = None,
    ):
        if slow_threshold_ms is None:
            slow_threshold_ms = get_settings().SLOW_QUERY_THRESHOLD_MS

        self.driver = driver
        self.classification = classification
        self.slow_threshold_ms = slow_threshold_ms

    async def dispatch(self, op: Operation) -> Any:
        """Bind the tenant, rewrite the operation and execute it."""
        tenant = get_current_tenant()
        await self.driver.bind_tenant(tenant.tenant_id if tenant else "")

        try:
            rewritten = rewrite_operation(op, tenant, self.classification)
        except Exception:
            # On PostgreSQL the binding has already opened a transaction
            if not self.driver.in_transaction:
                await self.driver.rollback()
            raise

        if rewritten.substituted_from is not None:
            logger.debug(
                "soft_delete_substituted",
                entity=rewritten.entity,
                operation=rewritten.substituted_from.value,
            )

        started = time.perf_counter()
        try:
            return await self.driver.execute(rewritten)
        finally:
            duration_ms = (time.perf_counter() - started) * 1000
            if duration_ms > self.slow_threshold_ms:
                log_slow_operation(
                    logger,
                    rewritten.entity,
                    rewritten.type.value,
                    duration_ms,
                    args=redact(rewritten.describe()),
                )

    @asynccontextmanager
    async def transaction(
        self,
        isolation_level: IsolationLevel = IsolationLevel.READ_COMMITTED,
        timeout: float | None = None,
    ) -> AsyncIterator["TenancyInterceptor"]:
        """Run a block in one transaction; operations on the yielded
        interceptor join it and are rewritten the same way."""
        async with self.driver.transaction(isolation_level, timeout) as tx_driver:
            yield TenancyInterceptor(tx_driver, self.classification, self.slow_threshold_ms)

    # -------------------------------------------------------------------------
    # Operation helpers
    # -------------------------------------------------------------------------

    async def find_unique(self, entity: str | type[Base], where: Filter, *, include: tuple[str, ...] = ()) -> Any:
        return await self.dispatch(
            Operation(_entity_name(entity), OperationType.FIND_UNIQUE, where=where, include=include)
        )

    async def find_first(
        self,
        entity: str | type[Base],
        where: Filter | None = None,
        *,
        include: tuple[str, ...] = (),
        order_by: tuple[str, ...] = (),
    ) -> Any:
        return await self.dispatch(
            Operation(_entity_name(entity), OperationType.FIND_FIRST, where=where, include=include, order_by=order_by)
        )

    async def find_many(
        self,
        entity: str | type[Base],
        where: Filter | None = None,
        *,
        include: tuple[str, ...] = (),
        order_by: tuple[str, ...] = (),
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[Any]:
        return await self.dispatch(
            Operation(
                _entity_name(entity),
                OperationType.FIND_MANY,
                where=where,
                include=include,
                order_by=order_by,
                limit=limit,
                offset=offset,
            )
        )

    async def count(self, entity: str | type[Base], where: Filter | None = None) -> int:
        return await self.dispatch(Operation(_entity_name(entity), OperationType.COUNT, where=where))

    async def aggregate(
        self, entity: str | type[Base], where: Filter | None = None, **functions: tuple[str, ...]
    ) -> dict[str, dict[str, Any]]:
        """Aggregate columns, e.g. ``aggregate(CartItem, where, sum=("quantity",))``."""
        return await self.dispatch(
            Operation(_entity_name(entity), OperationType.AGGREGATE, where=where, aggregate=functions)
        )

    async def create(self, entity: str | type[Base], data: Row, *, include: tuple[str, ...] = ()) -> Any:
        return await self.dispatch(Operation(_entity_name(entity), OperationType.CREATE, data=data, include=include))

    async def create_many(self, entity: str | type[Base], rows: list[Row]) -> Any:
        return await self.dispatch(Operation(_entity_name(entity), OperationType.CREATE_MANY, data=rows))

    async def update(
        self, entity: str | type[Base], where: Filter, data: Row, *, include: tuple[str, ...] = ()
    ) -> Any:
        return await self.dispatch(
            Operation(_entity_name(entity), OperationType.UPDATE, where=where, data=data, include=include)
        )

    async def update_many(self, entity: str | type[Base], where: Filter | None, data: Row) -> Any:
        return await self.dispatch(Operation(_entity_name(entity), OperationType.UPDATE_MANY, where=where, data=data))

    async def delete(self, entity: str | type[Base], where: Filter) -> Any:
        return await self.dispatch(Operation(_entity_name(entity), OperationType.DELETE, where=where))

    async def delete_many(self, entity: str | type[Base], where: Filter | None) -> Any:
        return await self.dispatch(Operation(_entity_name(entity), OperationType.DELETE_MANY, where=where))

    async def upsert(
        self,
        entity: str | type[Base],
        where: Filter,
        *,
        create: Row,
        update: Row,
        conflict_on: tuple[str, ...],
        include: tuple[str, ...] = (),
    ) -> Any:
        return await self.dispatch(
            Operation(
                _entity_name(entity),
                OperationType.UPSERT,
                where=where,
                create=create,
                update=update,
                conflict_on=conflict_on,
                include=include,
            )
        )
