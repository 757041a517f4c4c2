"""Services package."""

from pennyledger.services.storage import (
    ConnectionError,
    ConstraintError,
    SQLiteStorage,
    StorageError,
    StorageHandle,
    StorageInterface,
)

__all__ = [
    # Storage services
    "ConnectionError",
    "ConstraintError",
    "SQLiteStorage",
    "StorageError",
    "StorageHandle",
    "StorageInterface",
]
