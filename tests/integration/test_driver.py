"""Integration tests for the SQLAlchemy storage driver."""

import asyncio
from decimal import Decimal

import pytest
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from emporium.core.context import TenantContext, tenant_scope
from emporium.core.exceptions import (
    ConflictError,
    InvalidOperationError,
    RecordNotFoundError,
    TransactionAbortedError,
)
from emporium.db.driver import SQLAlchemyDriver
from emporium.db.models import Tenant, User
from emporium.db.operations import BatchResult, Increment, Operation, OperationType
from emporium.db.tenancy import TenancyInterceptor


@pytest.fixture
def driver(db_session: AsyncSession) -> SQLAlchemyDriver:
    return SQLAlchemyDriver(db_session)


async def _skus(driver: SQLAlchemyDriver, tenant: Tenant, *stocks: int) -> list:
    created = []
    for i, stock in enumerate(stocks):
        sku = await driver.execute(
            Operation(
                "Sku",
                OperationType.CREATE,
                data={
                    "tenant_id": tenant.id,
                    "sku_code": f"CODE-{i}",
                    "price": Decimal("2.50"),
                    "stock": stock,
                },
            )
        )
        created.append(sku)
    return created


@pytest.mark.asyncio
async def test_filters_and_ordering(driver: SQLAlchemyDriver, tenant_a: Tenant):
    """Test equality, operator filters and descending order."""
    await _skus(driver, tenant_a, 0, 5, 10)

    rows = await driver.execute(
        Operation("Sku", OperationType.FIND_MANY, where={"stock": {"gt": 0}}, order_by=("-stock",))
    )
    assert [row.stock for row in rows] == [10, 5]

    rows = await driver.execute(
        Operation("Sku", OperationType.FIND_MANY, where={"sku_code": {"in": ["CODE-0", "CODE-2"]}}, order_by=("stock",))
    )
    assert [row.sku_code for row in rows] == ["CODE-0", "CODE-2"]

    count = await driver.execute(Operation("Sku", OperationType.COUNT, where={"stock": {"ne": 5}}))
    assert count == 2


@pytest.mark.asyncio
async def test_limit_and_offset(driver: SQLAlchemyDriver, tenant_a: Tenant):
    """Test find_many pagination."""
    await _skus(driver, tenant_a, 1, 2, 3, 4)

    rows = await driver.execute(
        Operation("Sku", OperationType.FIND_MANY, order_by=("stock",), limit=2, offset=1)
    )

    assert [row.stock for row in rows] == [2, 3]


@pytest.mark.asyncio
async def test_null_filter(driver: SQLAlchemyDriver, tenant_a: Tenant):
    """Test a None filter value matches NULL."""
    rows = await driver.execute(Operation("Tenant", OperationType.FIND_MANY, where={"domain": None}))

    assert [row.id for row in rows] == [tenant_a.id]


@pytest.mark.asyncio
async def test_aggregate(driver: SQLAlchemyDriver, tenant_a: Tenant):
    """Test aggregate returns values keyed by function and column."""
    await _skus(driver, tenant_a, 3, 7)

    result = await driver.execute(
        Operation("Sku", OperationType.AGGREGATE, aggregate={"sum": ("stock",), "max": ("stock",), "count": ("*",)})
    )

    assert result == {"sum": {"stock": 10}, "max": {"stock": 7}, "count": {"*": 2}}


@pytest.mark.asyncio
async def test_update_with_increment(driver: SQLAlchemyDriver, tenant_a: Tenant):
    """Test update applies an atomic increment and returns the fresh row."""
    (sku,) = await _skus(driver, tenant_a, 4)

    updated = await driver.execute(
        Operation("Sku", OperationType.UPDATE, where={"id": sku.id}, data={"stock": Increment(-3)})
    )

    assert updated.stock == 1


@pytest.mark.asyncio
async def test_update_missing_row(driver: SQLAlchemyDriver, tenant_a: Tenant):
    """Test single-row update on no match raises RecordNotFoundError."""
    with pytest.raises(RecordNotFoundError):
        await driver.execute(
            Operation("Sku", OperationType.UPDATE, where={"id": "missing"}, data={"stock": 1})
        )


@pytest.mark.asyncio
async def test_delete_returns_row(driver: SQLAlchemyDriver, tenant_a: Tenant):
    """Test delete removes one row and returns it."""
    (sku,) = await _skus(driver, tenant_a, 4)

    deleted = await driver.execute(Operation("Sku", OperationType.DELETE, where={"id": sku.id}))

    assert deleted.id == sku.id
    assert await driver.execute(Operation("Sku", OperationType.COUNT)) == 0


@pytest.mark.asyncio
async def test_batch_operations(driver: SQLAlchemyDriver, tenant_a: Tenant):
    """Test create_many, update_many and delete_many report row counts."""
    rows = [
        {"tenant_id": tenant_a.id, "sku_code": f"B-{i}", "price": Decimal("1.00"), "stock": i} for i in range(3)
    ]

    assert await driver.execute(Operation("Sku", OperationType.CREATE_MANY, data=rows)) == BatchResult(3)
    assert await driver.execute(
        Operation("Sku", OperationType.UPDATE_MANY, where={"stock": {"gte": 1}}, data={"status": "INACTIVE"})
    ) == BatchResult(2)
    assert await driver.execute(
        Operation("Sku", OperationType.DELETE_MANY, where={"status": "INACTIVE"})
    ) == BatchResult(2)


@pytest.mark.asyncio
async def test_unique_violation_is_conflict(driver: SQLAlchemyDriver, tenant_a: Tenant):
    """Test an integrity error surfaces as ConflictError and the session stays usable."""
    await _skus(driver, tenant_a, 1)

    with pytest.raises(ConflictError):
        await _skus(driver, tenant_a, 1)

    assert await driver.execute(Operation("Sku", OperationType.COUNT)) == 1


@pytest.mark.asyncio
async def test_unknown_column_rejected(driver: SQLAlchemyDriver, tenant_a: Tenant):
    """Test filters on columns the model lacks are refused."""
    with pytest.raises(InvalidOperationError):
        await driver.execute(Operation("Sku", OperationType.FIND_MANY, where={"colour": "red"}))


@pytest.mark.asyncio
async def test_include_loads_relationships(driver: SQLAlchemyDriver, tenant_a: Tenant, make_user, ctx_a):
    """Test include paths are loaded eagerly."""
    user = await make_user(ctx_a)
    (sku,) = await _skus(driver, tenant_a, 5)
    cart = await driver.execute(
        Operation("Cart", OperationType.CREATE, data={"tenant_id": tenant_a.id, "user_id": user.id})
    )
    await driver.execute(
        Operation(
            "CartItem",
            OperationType.CREATE,
            data={"tenant_id": tenant_a.id, "cart_id": cart.id, "sku_id": sku.id, "quantity": 2},
        )
    )

    loaded = await driver.execute(
        Operation("Cart", OperationType.FIND_FIRST, where={"id": cart.id}, include=("items.sku",))
    )

    assert [item.sku.sku_code for item in loaded.items] == ["CODE-0"]


@pytest.mark.asyncio
async def test_upsert_inserts_then_increments(driver: SQLAlchemyDriver, tenant_a: Tenant, make_user, ctx_a):
    """Test upsert creates the row once and increments it afterwards."""
    user = await make_user(ctx_a)
    (sku,) = await _skus(driver, tenant_a, 5)
    cart = await driver.execute(
        Operation("Cart", OperationType.CREATE, data={"tenant_id": tenant_a.id, "user_id": user.id})
    )

    def add(quantity: int) -> Operation:
        return Operation(
            "CartItem",
            OperationType.UPSERT,
            where={"cart_id": cart.id, "sku_id": sku.id, "tenant_id": tenant_a.id},
            create={"tenant_id": tenant_a.id, "quantity": quantity},
            update={"quantity": Increment(quantity)},
            conflict_on=("cart_id", "sku_id"),
        )

    first = await driver.execute(add(2))
    second = await driver.execute(add(3))

    assert first.id == second.id
    assert second.quantity == 5
    assert await driver.execute(Operation("CartItem", OperationType.COUNT)) == 1


@pytest.mark.asyncio
async def test_upsert_guard_refuses_foreign_row(
    driver: SQLAlchemyDriver, tenant_a: Tenant, tenant_b: Tenant, make_user, ctx_a
):
    """Test an upsert whose conflicting row fails the guard raises ConflictError."""
    user = await make_user(ctx_a)
    (sku,) = await _skus(driver, tenant_a, 5)
    cart = await driver.execute(
        Operation("Cart", OperationType.CREATE, data={"tenant_id": tenant_a.id, "user_id": user.id})
    )
    await driver.execute(
        Operation(
            "CartItem",
            OperationType.CREATE,
            data={"tenant_id": tenant_a.id, "cart_id": cart.id, "sku_id": sku.id, "quantity": 1},
        )
    )
    cart_id, sku_id, tenant_b_id = cart.id, sku.id, tenant_b.id

    with pytest.raises(ConflictError):
        await driver.execute(
            Operation(
                "CartItem",
                OperationType.UPSERT,
                where={"cart_id": cart_id, "sku_id": sku_id, "tenant_id": tenant_b_id},
                create={"tenant_id": tenant_b_id, "quantity": 1},
                update={"quantity": Increment(1)},
                conflict_on=("cart_id", "sku_id"),
            )
        )

    item = await driver.execute(Operation("CartItem", OperationType.FIND_FIRST, where={"cart_id": cart_id}))
    assert item.quantity == 1


@pytest.mark.asyncio
async def test_transaction_rolls_back_on_error(driver: SQLAlchemyDriver, tenant_a: Tenant):
    """Test writes inside a failed transaction are discarded."""
    with pytest.raises(RuntimeError):
        async with driver.transaction() as tx:
            await tx.execute(
                Operation(
                    "Sku",
                    OperationType.CREATE,
                    data={"tenant_id": tenant_a.id, "sku_code": "TX", "price": Decimal("1.00"), "stock": 1},
                )
            )
            raise RuntimeError("abort")

    assert await driver.execute(Operation("Sku", OperationType.COUNT)) == 0


@pytest.mark.asyncio
async def test_nested_transaction_rejected(driver: SQLAlchemyDriver):
    """Test a transaction cannot be opened inside another on the same session."""
    async with driver.transaction() as tx:
        with pytest.raises(InvalidOperationError):
            async with tx.transaction():
                pass


@pytest.mark.asyncio
async def test_transaction_timeout_rolls_back(driver: SQLAlchemyDriver, ctx_a: TenantContext, make_user):
    """Test a transaction over its timeout aborts with nothing written."""
    user_id = (await make_user(ctx_a)).id

    with pytest.raises(TransactionAbortedError) as exc_info:
        async with driver.transaction(timeout=0.05) as tx:
            await tx.execute(
                Operation("Cart", OperationType.CREATE, data={"tenant_id": ctx_a.tenant_id, "user_id": user_id})
            )
            await asyncio.sleep(1)

    assert exc_info.value.reason == "timeout"
    assert await driver.execute(Operation("Cart", OperationType.COUNT)) == 0


class BindingDriver(SQLAlchemyDriver):
    """Binds the tenant with a statement, opening a transaction as PostgreSQL does."""

    async def bind_tenant(self, tenant_id: str) -> None:
        await self.session.execute(text("SELECT :tid"), {"tid": tenant_id})


@pytest.mark.asyncio
class TestRejectedOperationReleasesSession:
    """Tests that a refused operation leaves no transaction open on the session."""

    async def test_unfiltered_soft_delete(self, db_session: AsyncSession, ctx_a: TenantContext):
        """Test a refused rewrite rolls back the transaction the binding opened."""
        db = TenancyInterceptor(BindingDriver(db_session), slow_threshold_ms=10_000)

        with tenant_scope(ctx_a):
            with pytest.raises(InvalidOperationError):
                await db.delete_many(User, None)

            assert db_session.in_transaction() is False
            async with db.transaction() as tx:
                assert await tx.count(User) == 0

    async def test_unknown_entity(self, db_session: AsyncSession, ctx_a: TenantContext):
        """Test an unknown entity is refused inside the driver's error handling."""
        db = TenancyInterceptor(BindingDriver(db_session), slow_threshold_ms=10_000)

        with tenant_scope(ctx_a):
            with pytest.raises(InvalidOperationError):
                await db.find_many("Wishlist")

            assert db_session.in_transaction() is False
            async with db.transaction() as tx:
                assert await tx.count(User) == 0
