"""Storage operation descriptors.

Every data access issued by application code is described as an immutable
``Operation`` so it can be inspected and rewritten (tenant scoping, soft
delete) before the driver executes it.

Filter mapping (``where``):
    {"user_id": "u-1"}                  equality
    {"deleted_at": None}                IS NULL
    {"id": {"in": ["a", "b"]}}          operators: in, not_in, ne, lt, lte, gt, gte

Payload values (``data``/``update``) are plain values or ``Increment(n)``.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

Filter = dict[str, Any]
Row = dict[str, Any]

FILTER_OPERATORS = frozenset({"in", "not_in", "ne", "lt", "lte", "gt", "gte"})
AGGREGATE_FUNCTIONS = frozenset({"sum", "min", "max", "avg", "count"})


class OperationType(str, Enum):
    """Kinds of storage operations the driver understands."""

    FIND_UNIQUE = "find_unique"
    FIND_FIRST = "find_first"
    FIND_MANY = "find_many"
    COUNT = "count"
    AGGREGATE = "aggregate"
    CREATE = "create"
    CREATE_MANY = "create_many"
    UPDATE = "update"
    UPDATE_MANY = "update_many"
    DELETE = "delete"
    DELETE_MANY = "delete_many"
    UPSERT = "upsert"


# Operations whose filter narrows the rows they touch
FILTERED_OPERATIONS = frozenset(
    {
        OperationType.FIND_UNIQUE,
        OperationType.FIND_FIRST,
        OperationType.FIND_MANY,
        OperationType.COUNT,
        OperationType.AGGREGATE,
        OperationType.UPDATE,
        OperationType.UPDATE_MANY,
        OperationType.DELETE,
        OperationType.DELETE_MANY,
        OperationType.UPSERT,
    }
)

CREATE_OPERATIONS = frozenset({OperationType.CREATE, OperationType.CREATE_MANY})

DELETE_OPERATIONS = frozenset({OperationType.DELETE, OperationType.DELETE_MANY})

# delete -> update substitution used for soft-delete entities
SOFT_DELETE_SUBSTITUTES = {
    OperationType.DELETE: OperationType.UPDATE,
    OperationType.DELETE_MANY: OperationType.UPDATE_MANY,
}


@dataclass(frozen=True)
class Increment:
    """Atomic ``column = column + amount`` payload value."""

    amount: int

    def __post_init__(self) -> None:
        if isinstance(self.amount, bool) or not isinstance(self.amount, int):
            raise TypeError(f"Increment amount must be an int, got {self.amount!r}")


@dataclass(frozen=True)
class Operation:
    """A single data-access request against one entity kind.

    Attributes:
        entity: Entity kind (model class name, e.g. "CartItem")
        type: Operation kind
        where: Row filter for filtered operations
        data: Payload for create/update (a list of rows for create_many)
        create: Row inserted by an upsert when no row conflicts
        update: Values applied by an upsert to the conflicting row
        conflict_on: Unique key columns an upsert resolves conflicts on
        include: Relationship paths to load eagerly ("items.sku")
        order_by: Column names, "-" prefix for descending
        limit: Maximum rows for find_many
        offset: Rows to skip for find_many
        aggregate: Function name -> column names, for aggregate
        substituted_from: Original type when the operation was rewritten
    """

    entity: str
    type: OperationType
    where: Filter | None = None
    data: Row | list[Row] | None = None
    create: Row | None = None
    update: Row | None = None
    conflict_on: tuple[str, ...] = ()
    include: tuple[str, ...] = ()
    order_by: tuple[str, ...] = ()
    limit: int | None = None
    offset: int | None = None
    aggregate: dict[str, tuple[str, ...]] = field(default_factory=dict)
    substituted_from: OperationType | None = None

    def replace(self, **changes: Any) -> "Operation":
        """Return a copy with ``changes`` applied."""
        return replace(self, **changes)

    @property
    def is_filtered(self) -> bool:
        return self.type in FILTERED_OPERATIONS

    def describe(self) -> dict[str, Any]:
        """Loggable summary of the operation."""
        summary: dict[str, Any] = {"entity": self.entity, "operation": self.type.value}
        if self.where is not None:
            summary["where"] = self.where
        if self.data is not None:
            summary["data"] = self.data
        if self.create is not None:
            summary["create"] = self.create
        if self.update is not None:
            summary["update"] = self.update
        if self.substituted_from is not None:
            summary["substituted_from"] = self.substituted_from.value
        return summary


@dataclass(frozen=True)
class BatchResult:
    """Row count returned by create_many/update_many/delete_many."""

    count: int
