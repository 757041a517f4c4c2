"""
Domain Errors

DESIGN DECISION: Callers branch on `error.kind`, never on message text.
Every error raised by the engines is a LedgerError carrying one of the
ErrorKind values below.

Storage failures (connection, constraint violation) are NOT LedgerErrors.
They are StorageError from the storage package and propagate as-is.
"""

from enum import Enum
from typing import Any, Optional


class ErrorKind(str, Enum):
    """Kinds of failure an engine call can end with."""
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    DUPLICATE = "duplicate"
    CIRCULAR_REFERENCE = "circular_reference"
    HAS_DEPENDENTS = "has_dependents"


class LedgerError(Exception):
    """Base exception for engine failures."""

    kind: ErrorKind


class ValidationError(LedgerError):
    """
    Input failed validation before any write happened.

    `key` is an opaque message key (e.g. "valid_amount_required") that
    the UI translates.
    """

    kind = ErrorKind.VALIDATION

    def __init__(self, key: str):
        self.key = key
        super().__init__(key)


class NotFoundError(LedgerError):
    """The requested entity does not exist."""

    kind = ErrorKind.NOT_FOUND

    def __init__(self, entity: str, entity_id: Any):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class DuplicateError(LedgerError):
    """A budget already exists for the same category, currency and period."""

    kind = ErrorKind.DUPLICATE

    def __init__(self, existing_id: str, message: Optional[str] = None):
        self.existing_id = existing_id
        super().__init__(
            message or f"A budget for this category, currency and period already exists ({existing_id})"
        )


class CircularReferenceError(LedgerError):
    """Moving a category would make it its own ancestor."""

    kind = ErrorKind.CIRCULAR_REFERENCE

    def __init__(self, category_id: str, new_parent_id: str):
        self.category_id = category_id
        self.new_parent_id = new_parent_id
        super().__init__(
            f"Cannot move category {category_id} under its own descendant {new_parent_id}"
        )


class HasDependentsError(LedgerError):
    """Delete blocked because other records still reference the entity."""

    kind = ErrorKind.HAS_DEPENDENTS

    def __init__(self, entity: str, entity_id: Any, dependent: str, count: int):
        self.entity = entity
        self.entity_id = entity_id
        self.dependent = dependent
        self.count = count
        super().__init__(
            f"Cannot delete {entity} {entity_id}: {count} {dependent} still reference it"
        )
