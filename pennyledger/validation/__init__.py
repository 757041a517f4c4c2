"""Validation package."""

from pennyledger.validation.validator import (
    validate_budget,
    validate_category,
    validate_operation,
    validate_planned_operation,
)

__all__ = [
    "validate_budget",
    "validate_category",
    "validate_operation",
    "validate_planned_operation",
]
