"""
Core Data Models for Penny Ledger

These models define the schemas for everything the engines store and return.

DESIGN DECISION: Money fields are decimal strings, never floats.
Input models ("*Create", "*Update") are deliberately lenient about values
(missing amount, bad period type...) because the validation module turns
those into message keys for the UI. Pydantic only guards the shape.

Update models are partial: engines apply only the fields the caller set
explicitly (model_dump(exclude_unset=True)).
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, Union
from uuid import uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
)

from pennyledger import currency


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class OperationType(str, Enum):
    """Ledger operation types."""
    EXPENSE = "expense"
    INCOME = "income"
    TRANSFER = "transfer"


class CategoryKind(str, Enum):
    """A folder groups categories, an entry is what operations point to."""
    FOLDER = "folder"
    ENTRY = "entry"


class CategoryType(str, Enum):
    EXPENSE = "expense"
    INCOME = "income"


class PeriodType(str, Enum):
    """Budget period lengths."""
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class BudgetHealth(str, Enum):
    """Derived budget status, from best to worst."""
    SAFE = "safe"
    WARNING = "warning"
    DANGER = "danger"
    EXCEEDED = "exceeded"


class ExecutionOutcome(str, Enum):
    """Result of executing a planned operation."""
    EXECUTED = "executed"
    ALREADY_EXECUTED = "already_executed"


AmountInput = Optional[Union[str, int, float, Decimal]]


def _amount_to_str(v):
    """Accept numbers for amount fields but keep them as strings."""
    if v is None or isinstance(v, str):
        return v
    if isinstance(v, (int, float, Decimal)) and not isinstance(v, bool):
        return currency.normalize(v)
    return v


def _enum_to_str(v):
    """Keep enum inputs as their plain value; unknown strings reach the validator."""
    return v.value if isinstance(v, Enum) else v


def _date_to_str(v):
    """Accept date/datetime objects for ISO date fields."""
    if isinstance(v, datetime):
        return v.date().isoformat()
    if isinstance(v, date):
        return v.isoformat()
    return v


def _new_id() -> str:
    return uuid4().hex


# =============================================================================
# ACCOUNTS
# =============================================================================

class Account(BaseModel):
    """
    A money container (wallet, card, bank account).

    CRITICAL: `balance` is the running total of all operations touching
    the account. Only the ledger engine writes it.
    """

    id: int
    name: str
    balance: str = "0"
    currency: str
    display_order: Optional[int] = None
    hidden: bool = False
    monthly_target: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class AccountCreate(BaseModel):
    """New account. The opening balance is given once, here."""
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=200)
    balance: str = Field(default="0", description="Opening balance")
    currency: Optional[str] = Field(
        default=None,
        min_length=3,
        max_length=3,
        description="ISO-4217 code, defaults to the configured currency"
    )
    display_order: Optional[int] = None
    hidden: bool = False
    monthly_target: Optional[str] = None

    coerce_amounts = field_validator('balance', 'monthly_target', mode='before')(_amount_to_str)

    @field_validator('balance')
    @classmethod
    def validate_balance(cls, v: str) -> str:
        return currency.normalize(v)

    @field_validator('currency')
    @classmethod
    def upper_currency(cls, v: Optional[str]) -> Optional[str]:
        return v.upper() if v else v


class AccountUpdate(BaseModel):
    """
    Editable account attributes.

    Balance is intentionally absent: use AccountStore.adjust_balance,
    which records a reconciliation operation.
    """
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    display_order: Optional[int] = None
    hidden: Optional[bool] = None
    monthly_target: Optional[str] = None

    coerce_amounts = field_validator('monthly_target', mode='before')(_amount_to_str)

    @field_validator('currency')
    @classmethod
    def upper_currency(cls, v: Optional[str]) -> Optional[str]:
        return v.upper() if v else v


# =============================================================================
# CATEGORIES
# =============================================================================

class Category(BaseModel):
    """
    A node in the category forest.

    Shadow categories are system-generated (balance adjustments). They are
    hidden from pickers but still count in aggregations.
    """

    id: str
    name: str
    kind: CategoryKind
    category_type: CategoryType
    parent_id: Optional[str] = None
    icon: Optional[str] = None
    color: Optional[str] = None
    is_shadow: bool = False
    exclude_from_forecast: bool = False
    created_at: datetime
    updated_at: datetime


class CategoryCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(default_factory=_new_id)
    name: Optional[str] = None
    kind: CategoryKind = CategoryKind.ENTRY
    category_type: Optional[str] = None
    parent_id: Optional[str] = None
    icon: Optional[str] = None
    color: Optional[str] = None
    is_shadow: bool = False
    exclude_from_forecast: bool = False


class CategoryUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    name: Optional[str] = None
    kind: Optional[CategoryKind] = None
    category_type: Optional[str] = None
    parent_id: Optional[str] = None
    icon: Optional[str] = None
    color: Optional[str] = None
    exclude_from_forecast: Optional[bool] = None


# =============================================================================
# OPERATIONS
# =============================================================================

class Operation(BaseModel):
    """
    A ledger entry.

    Its effect on balances is always derivable from type, amount,
    account_id, to_account_id and destination_amount.
    """

    id: int
    type: OperationType
    amount: str
    account_id: int
    category_id: Optional[str] = None
    to_account_id: Optional[int] = None
    date: str
    description: Optional[str] = None
    exchange_rate: Optional[str] = None
    destination_amount: Optional[str] = None
    source_currency: Optional[str] = None
    destination_currency: Optional[str] = None
    created_at: datetime


class OperationCreate(BaseModel):
    """
    Input for a new operation.

    For multi-currency transfers, `destination_amount` is the amount that
    lands on `to_account_id`, already converted by the caller.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    type: Optional[str] = None
    amount: AmountInput = None
    account_id: Optional[int] = None
    category_id: Optional[str] = None
    to_account_id: Optional[int] = None
    date: Optional[str] = None
    description: Optional[str] = None
    exchange_rate: AmountInput = None
    destination_amount: AmountInput = None
    source_currency: Optional[str] = None
    destination_currency: Optional[str] = None

    coerce_amounts = field_validator(
        'amount', 'exchange_rate', 'destination_amount', mode='before'
    )(_amount_to_str)
    coerce_date = field_validator('date', mode='before')(_date_to_str)
    coerce_type = field_validator('type', mode='before')(_enum_to_str)


class OperationUpdate(OperationCreate):
    """Partial update. Unset fields keep their stored value."""
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")


class BalanceChange(BaseModel):
    """One account touched by a ledger mutation."""

    account_id: int
    delta: str
    applied: bool = Field(
        ...,
        description="False when the account was missing and the update was skipped"
    )
    new_balance: Optional[str] = None


class LedgerResult(BaseModel):
    """
    Outcome of a ledger mutation.

    `skipped_account_ids` lists accounts that could not be found; the
    operation was still persisted but their balances were not touched.
    """

    operation: Operation
    balance_changes: list[BalanceChange] = Field(default_factory=list)

    @property
    def skipped_account_ids(self) -> list[int]:
        return [c.account_id for c in self.balance_changes if not c.applied]

    @property
    def is_partial(self) -> bool:
        return bool(self.skipped_account_ids)


class CategoryTotal(BaseModel):
    """Sum of operations for one category."""

    category_id: str
    total: str
    operation_count: int = 0


class AccountBalance(BaseModel):
    """An account's balance at the end of one day."""

    account_id: int
    name: str
    currency: str
    date: str
    balance: str


# =============================================================================
# BUDGETS
# =============================================================================

class Budget(BaseModel):
    """A spending limit for a category subtree, in one currency, per period."""

    id: str
    category_id: str
    amount: str
    currency: str
    period_type: PeriodType
    start_date: str
    end_date: Optional[str] = None
    is_recurring: bool = True
    rollover_enabled: bool = False
    created_at: datetime
    updated_at: datetime


class BudgetCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(default_factory=_new_id)
    category_id: Optional[str] = None
    amount: AmountInput = None
    currency: Optional[str] = None
    period_type: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    is_recurring: bool = True
    rollover_enabled: bool = False

    coerce_amounts = field_validator('amount', mode='before')(_amount_to_str)
    coerce_dates = field_validator('start_date', 'end_date', mode='before')(_date_to_str)


class BudgetUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    category_id: Optional[str] = None
    amount: AmountInput = None
    currency: Optional[str] = None
    period_type: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    is_recurring: Optional[bool] = None
    rollover_enabled: Optional[bool] = None

    coerce_amounts = field_validator('amount', mode='before')(_amount_to_str)
    coerce_dates = field_validator('start_date', 'end_date', mode='before')(_date_to_str)


class BudgetStatus(BaseModel):
    """
    Derived, never persisted. Recomputed from operations on every call.
    """

    budget_id: str
    amount: str
    spent: str
    remaining: str
    percentage: float
    is_exceeded: bool
    period_start: str
    period_end: str
    status: BudgetHealth


# =============================================================================
# PLANNED OPERATIONS
# =============================================================================

class PlannedOperation(BaseModel):
    """
    A reusable template for an operation (rent, salary...).

    `last_executed_month` ("YYYY-MM") is the only execution state.
    """

    id: str
    name: str
    type: OperationType
    amount: str
    account_id: int
    category_id: Optional[str] = None
    to_account_id: Optional[int] = None
    description: Optional[str] = None
    is_recurring: bool = True
    last_executed_month: Optional[str] = None
    display_order: Optional[int] = None
    created_at: datetime
    updated_at: datetime


class PlannedOperationCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(default_factory=_new_id)
    name: Optional[str] = None
    type: Optional[str] = None
    amount: AmountInput = None
    account_id: Optional[int] = None
    category_id: Optional[str] = None
    to_account_id: Optional[int] = None
    description: Optional[str] = None
    is_recurring: bool = True
    display_order: Optional[int] = None

    coerce_amounts = field_validator('amount', mode='before')(_amount_to_str)
    coerce_type = field_validator('type', mode='before')(_enum_to_str)


class PlannedOperationUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    name: Optional[str] = None
    type: Optional[str] = None
    amount: AmountInput = None
    account_id: Optional[int] = None
    category_id: Optional[str] = None
    to_account_id: Optional[int] = None
    description: Optional[str] = None
    is_recurring: Optional[bool] = None
    last_executed_month: Optional[str] = None
    display_order: Optional[int] = None

    coerce_amounts = field_validator('amount', mode='before')(_amount_to_str)
    coerce_type = field_validator('type', mode='before')(_enum_to_str)


class PlannedExecutionResult(BaseModel):
    """What happened when a planned operation was executed."""

    outcome: ExecutionOutcome
    template_id: str
    month: str
    operation: Optional[Operation] = None
    template_deleted: bool = False

    @property
    def executed(self) -> bool:
        return self.outcome == ExecutionOutcome.EXECUTED
