"""
Data Models Package

This package contains all Pydantic models used by Penny Ledger.
All data flowing in and out of the engines must conform to these schemas.
"""

from pennyledger.models.ledger import (
    Account,
    AccountBalance,
    AccountCreate,
    AccountUpdate,
    BalanceChange,
    Budget,
    BudgetCreate,
    BudgetHealth,
    BudgetStatus,
    BudgetUpdate,
    Category,
    CategoryCreate,
    CategoryKind,
    CategoryTotal,
    CategoryType,
    CategoryUpdate,
    ExecutionOutcome,
    LedgerResult,
    Operation,
    OperationCreate,
    OperationType,
    OperationUpdate,
    PeriodType,
    PlannedExecutionResult,
    PlannedOperation,
    PlannedOperationCreate,
    PlannedOperationUpdate,
)
from pennyledger.models.events import (
    ChangeAction,
    LedgerEvent,
    LedgerEventBuilder,
    LedgerEventType,
)

__all__ = [
    # Ledger models
    "Account",
    "AccountBalance",
    "AccountCreate",
    "AccountUpdate",
    "BalanceChange",
    "Budget",
    "BudgetCreate",
    "BudgetHealth",
    "BudgetStatus",
    "BudgetUpdate",
    "Category",
    "CategoryCreate",
    "CategoryKind",
    "CategoryTotal",
    "CategoryType",
    "CategoryUpdate",
    "ExecutionOutcome",
    "LedgerResult",
    "Operation",
    "OperationCreate",
    "OperationType",
    "OperationUpdate",
    "PeriodType",
    "PlannedExecutionResult",
    "PlannedOperation",
    "PlannedOperationCreate",
    "PlannedOperationUpdate",
    # Event models
    "ChangeAction",
    "LedgerEvent",
    "LedgerEventBuilder",
    "LedgerEventType",
]
