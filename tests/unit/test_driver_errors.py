"""Unit tests for storage error translation and operation building."""

import pytest
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError

from emporium.core.exceptions import ConflictError, InvalidOperationError, TransactionAbortedError
from emporium.db.driver import build_criteria, build_values, resolve_model, translate_error
from emporium.db.models import CartItem, Sku
from emporium.db.operations import Increment, Operation, OperationType


class _PgError(Exception):
    def __init__(self, message: str, sqlstate: str):
        super().__init__(message)
        self.sqlstate = sqlstate


class TestTranslateError:
    """Tests for translate_error."""

    def test_integrity_error_is_conflict(self):
        """Test uniqueness violations become ConflictError."""
        exc = IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed"))

        translated = translate_error(exc, entity="Sku")

        assert isinstance(translated, ConflictError)
        assert translated.entity == "Sku"

    @pytest.mark.parametrize(
        ("sqlstate", "reason"),
        [
            ("40001", "serialization_failure"),
            ("40P01", "serialization_failure"),
            ("55P03", "lock_timeout"),
            ("57014", "timeout"),
        ],
    )
    def test_postgres_abort_codes(self, sqlstate, reason):
        """Test serialization and lock SQLSTATEs abort the transaction."""
        exc = DBAPIError("UPDATE", {}, _PgError("aborted", sqlstate))

        translated = translate_error(exc)

        assert isinstance(translated, TransactionAbortedError)
        assert translated.reason == reason

    def test_sqlite_locked(self):
        """Test SQLite lock contention is an aborted transaction."""
        exc = OperationalError("UPDATE", {}, Exception("database is locked"))

        translated = translate_error(exc)

        assert isinstance(translated, TransactionAbortedError)
        assert translated.reason == "lock_timeout"

    def test_unclassified_error_returned_unchanged(self):
        """Test errors we do not classify pass through."""
        exc = OperationalError("SELECT", {}, Exception("no such table: carts"))

        assert translate_error(exc) is exc


class TestBuilders:
    """Tests for filter and payload translation."""

    def test_resolve_unknown_entity(self):
        """Test unknown entity kinds are rejected."""
        with pytest.raises(InvalidOperationError):
            resolve_model("Wishlist")

    def test_unknown_filter_operator(self):
        """Test unsupported operators are rejected."""
        op = Operation("Sku", OperationType.FIND_MANY, where={"stock": {"between": [1, 2]}})

        with pytest.raises(InvalidOperationError, match="between"):
            build_criteria(Sku, op.where, op)

    def test_filter_produces_one_criterion_per_predicate(self):
        """Test each operator contributes its own criterion."""
        op = Operation("Sku", OperationType.FIND_MANY, where={"stock": {"gte": 1, "lt": 5}, "status": "ACTIVE"})

        assert len(build_criteria(Sku, op.where, op)) == 3

    def test_increment_rejected_in_create(self):
        """Test Increment is only valid where a current value exists."""
        op = Operation("CartItem", OperationType.CREATE, data={"quantity": Increment(1)})

        with pytest.raises(InvalidOperationError):
            build_values(CartItem, op.data, op, allow_increment=False)

    def test_increment_becomes_expression(self):
        """Test Increment renders as column + amount."""
        op = Operation("CartItem", OperationType.UPDATE, data={"quantity": Increment(2)})

        values = build_values(CartItem, op.data, op, allow_increment=True)

        assert "quantity +" in str(values["quantity"])
