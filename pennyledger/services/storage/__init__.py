"""
Storage Services Package

Provides the abstract storage interface and the embedded SQLite backend.
Engines depend on the interface only, so the backend stays swappable.
"""

from pennyledger.services.storage.interface import (
    ConnectionError,
    ConstraintError,
    ExecuteResult,
    Row,
    StorageError,
    StorageHandle,
    StorageInterface,
)
from pennyledger.services.storage.sqlite import SQLiteStorage

__all__ = [
    # Interfaces
    "ExecuteResult",
    "Row",
    "StorageHandle",
    "StorageInterface",
    # Exceptions
    "ConnectionError",
    "ConstraintError",
    "StorageError",
    # SQLite implementation
    "SQLiteStorage",
]
