"""Budget package: period windows, budget CRUD and status derivation."""

from pennyledger.budgets.engine import BudgetEngine
from pennyledger.budgets.periods import (
    PeriodWindow,
    current_month,
    get_current_period_dates,
    get_next_period_dates,
    get_previous_period_dates,
)

__all__ = [
    "BudgetEngine",
    "PeriodWindow",
    "current_month",
    "get_current_period_dates",
    "get_next_period_dates",
    "get_previous_period_dates",
]
