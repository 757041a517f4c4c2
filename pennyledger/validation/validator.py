"""
Record Validation

DESIGN DECISION: Validators return an opaque message key, or None.
They never raise and never touch storage. Translating a key such as
"valid_amount_required" into display text is the UI's job; engines turn
a key into ValidationError before any write happens.

Checks run in a fixed order and the first failure wins, so the same bad
record always produces the same key.

IMPORTANT: Validation NEVER silently fixes issues.
A negative amount is rejected, not flipped.
"""

from datetime import date
from typing import Any, Mapping, Optional, Union

from pydantic import BaseModel

from pennyledger import currency
from pennyledger.models.ledger import CategoryType, OperationType, PeriodType

Record = Union[BaseModel, Mapping[str, Any]]

_OPERATION_TYPES = {t.value for t in OperationType}
_PERIOD_TYPES = {p.value for p in PeriodType}
_CATEGORY_TYPES = {c.value for c in CategoryType}


def _as_dict(record: Record) -> dict[str, Any]:
    if isinstance(record, BaseModel):
        return record.model_dump()
    return dict(record)


def _enum_value(value: Any) -> Any:
    return getattr(value, "value", value)


def _is_positive_amount(value: Any) -> bool:
    if value is None or value == "":
        return False
    return currency.is_valid(value) and currency.is_positive(value)


def _parse_date(value: Any) -> Optional[date]:
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _check_accounts_and_category(data: dict[str, Any]) -> Optional[str]:
    """Shared by operations and planned operations."""
    if data.get("account_id") is None:
        return "account_required"

    if _enum_value(data.get("type")) == OperationType.TRANSFER.value:
        if data.get("to_account_id") is None:
            return "destination_account_required"
        if data.get("account_id") == data.get("to_account_id"):
            return "accounts_must_be_different"
    elif _blank(data.get("category_id")):
        return "category_required"

    return None


def validate_operation(record: Record) -> Optional[str]:
    """
    Validate an operation (new, or old row merged with updates).

    Expense and income need a category; a transfer needs a destination
    account that differs from the source.
    """
    data = _as_dict(record)

    if _enum_value(data.get("type")) not in _OPERATION_TYPES:
        return "operation_type_required"
    if not _is_positive_amount(data.get("amount")):
        return "valid_amount_required"

    key = _check_accounts_and_category(data)
    if key:
        return key

    if _blank(data.get("date")):
        return "date_required"
    if _parse_date(data["date"]) is None:
        return "invalid_date"

    # Multi-currency transfers carry the converted amount
    destination_amount = data.get("destination_amount")
    if destination_amount not in (None, "") and not _is_positive_amount(destination_amount):
        return "valid_amount_required"

    return None


def validate_planned_operation(record: Record) -> Optional[str]:
    """Validate a planned-operation template."""
    data = _as_dict(record)

    if _blank(data.get("name")):
        return "planned_name_required"
    if _enum_value(data.get("type")) not in _OPERATION_TYPES:
        return "operation_type_required"
    if not _is_positive_amount(data.get("amount")):
        return "valid_amount_required"

    return _check_accounts_and_category(data)


def validate_budget(record: Record) -> Optional[str]:
    """
    Validate a budget.

    An end date, when present, must be strictly after the start date.
    """
    data = _as_dict(record)

    if _blank(data.get("category_id")):
        return "category_required"
    if not _is_positive_amount(data.get("amount")):
        return "valid_amount_required"
    if _blank(data.get("currency")):
        return "currency_required"
    if _enum_value(data.get("period_type")) not in _PERIOD_TYPES:
        return "invalid_period_type"
    if _blank(data.get("start_date")):
        return "start_date_required"

    start = _parse_date(data["start_date"])
    if start is None:
        return "invalid_date"

    if not _blank(data.get("end_date")):
        end = _parse_date(data["end_date"])
        if end is None:
            return "invalid_date"
        if end <= start:
            return "end_date_must_be_after_start"

    return None


def validate_category(record: Record) -> Optional[str]:
    data = _as_dict(record)

    if _blank(data.get("name")):
        return "category_name_required"
    if _enum_value(data.get("category_type")) not in _CATEGORY_TYPES:
        return "invalid_category_type"

    return None
