"""Data access for Emporium: models, driver and tenancy enforcement."""

from .driver import IsolationLevel, SQLAlchemyDriver, StorageDriver
from .operations import BatchResult, Increment, Operation, OperationType
from .tenancy import (
    DEFAULT_CLASSIFICATION,
    EntityClassification,
    TenancyInterceptor,
    rewrite_operation,
    validate_classification,
)

__all__ = [
    "IsolationLevel",
    "SQLAlchemyDriver",
    "StorageDriver",
    "BatchResult",
    "Increment",
    "Operation",
    "OperationType",
    "DEFAULT_CLASSIFICATION",
    "EntityClassification",
    "TenancyInterceptor",
    "rewrite_operation",
    "validate_classification",
]
