"""
Abstract Storage Interface

DESIGN DECISION: The engines never talk to a database driver directly.
They use the three query primitives below plus a transaction runner.
This allows us to:
1. Use an in-memory SQLite database for testing
2. Swap the embedded database for another backend
3. Keep business logic decoupled from storage implementation

The interface is intentionally simple - we're not building an ORM.
Rows come back as plain dicts with snake_case keys; mapping them to
models is the engines' job.
"""

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, NamedTuple, Optional, Sequence, TypeVar

T = TypeVar("T")

Row = dict[str, Any]


class ExecuteResult(NamedTuple):
    """Outcome of a write statement."""
    changes: int
    last_insert_id: Optional[int]


class StorageHandle(ABC):
    """
    Statement-level access to storage.

    Transaction callbacks receive one of these; everything they run
    through it commits or rolls back together.
    """

    @abstractmethod
    async def execute_query(self, sql: str, params: Sequence[Any] = ()) -> ExecuteResult:
        """
        Run a write statement (INSERT/UPDATE/DELETE).

        Returns:
            Number of changed rows and the last inserted row id

        Raises:
            StorageError: If the statement fails
        """
        pass

    @abstractmethod
    async def query_all(self, sql: str, params: Sequence[Any] = ()) -> list[Row]:
        """
        Run a SELECT and return every row.

        Returns:
            List of rows (possibly empty)
        """
        pass

    @abstractmethod
    async def query_first(self, sql: str, params: Sequence[Any] = ()) -> Optional[Row]:
        """
        Run a SELECT and return the first row.

        Returns:
            The row if any, None otherwise
        """
        pass


class StorageInterface(StorageHandle):
    """
    Abstract interface for the embedded database.

    Any storage implementation must implement these methods.
    """

    @abstractmethod
    async def execute_transaction(
        self,
        fn: Callable[[StorageHandle], Awaitable[T]],
    ) -> T:
        """
        Run `fn` inside one transaction.

        Commits if `fn` returns, rolls back and re-raises if it raises.
        The exception reaches the caller unchanged.

        Args:
            fn: Async callable receiving a handle bound to the transaction

        Returns:
            Whatever `fn` returned
        """
        pass

    @abstractmethod
    def close(self) -> None:
        """Release the underlying connection."""
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class ConstraintError(StorageError):
    """A schema constraint (foreign key, NOT NULL, unique) was violated."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
