"""
Budget Engine

Budgets cap spending on a category subtree, in one currency, per period.

DESIGN DECISION: Budget status is never stored.
Every status is recomputed from the operations table for the period
window that contains the reference date. Callers re-pull statuses after
an OPERATION_CHANGED event instead of the engine pushing them.

Uniqueness: at most one budget per (category, currency, period type).
The check runs before every create and before every update that touches
one of those three fields, inside the same transaction as the write.
"""

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

import structlog

from pennyledger import currency
from pennyledger.budgets.periods import DateInput, get_current_period_dates, to_date
from pennyledger.categories.tree import CategoryTree
from pennyledger.config import BudgetSettings
from pennyledger.errors import DuplicateError, NotFoundError, ValidationError
from pennyledger.events.notifier import EventNotifier
from pennyledger.models.events import ChangeAction, LedgerEventBuilder
from pennyledger.models.ledger import (
    Budget,
    BudgetCreate,
    BudgetHealth,
    BudgetStatus,
    BudgetUpdate,
    PeriodType,
)
from pennyledger.queries.aggregates import DateLike, LedgerQueries
from pennyledger.services.storage.interface import Row, StorageHandle, StorageInterface
from pennyledger.validation.validator import Record, validate_budget

logger = structlog.get_logger(__name__)

# Changing any of these can create a duplicate
_KEY_FIELDS = ("category_id", "currency", "period_type")

_WRITABLE_FIELDS = (
    "category_id",
    "amount",
    "currency",
    "period_type",
    "start_date",
    "end_date",
    "is_recurring",
    "rollover_enabled",
)

_CENT = Decimal("0.01")


class BudgetEngine:
    """
    Budget CRUD and status derivation.

    Usage:
        budgets = BudgetEngine(storage, categories, queries, notifier)
        budget = await budgets.create(BudgetCreate(
            category_id="expense-food", amount="400", currency="USD",
            period_type="monthly", start_date="2025-01-01",
        ))
        status = await budgets.calculate_budget_status(budget.id)
    """

    def __init__(
        self,
        storage: StorageInterface,
        categories: CategoryTree,
        queries: LedgerQueries,
        notifier: Optional[EventNotifier] = None,
        settings: Optional[BudgetSettings] = None,
    ):
        self._storage = storage
        self._categories = categories
        self._queries = queries
        self._notifier = notifier
        self._settings = settings or BudgetSettings()

    def _row_to_budget(self, row: Row) -> Budget:
        return Budget(
            id=row["id"],
            category_id=row["category_id"],
            amount=row["amount"],
            currency=row["currency"],
            period_type=row["period_type"],
            start_date=row["start_date"],
            end_date=row["end_date"],
            is_recurring=bool(row["is_recurring"]),
            rollover_enabled=bool(row["rollover_enabled"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    async def _fetch(self, db: StorageHandle, budget_id: str) -> Optional[Budget]:
        row = await db.query_first("SELECT * FROM budgets WHERE id = ?", (budget_id,))
        return self._row_to_budget(row) if row else None

    async def _list(self, where: str = "", params: tuple = ()) -> list[Budget]:
        rows = await self._storage.query_all(
            f"SELECT * FROM budgets {where} ORDER BY created_at ASC, rowid ASC", params
        )
        return [self._row_to_budget(r) for r in rows]

    async def _emit(self, action: ChangeAction, budget_id: str) -> None:
        if self._notifier is not None:
            await self._notifier.emit(LedgerEventBuilder.budgets_need_refresh(budget_id, action))

    # =========================================================================
    # VALIDATION
    # =========================================================================

    def validate_budget(self, data: Record) -> Optional[str]:
        """Message key for the first problem, or None. Never raises."""
        return validate_budget(data)

    async def _find_duplicate(
        self,
        db: StorageHandle,
        category_id: str,
        budget_currency: str,
        period_type: str,
        exclude_id: Optional[str],
    ) -> Optional[Budget]:
        sql = "SELECT * FROM budgets WHERE category_id = ? AND currency = ? AND period_type = ?"
        params: list = [category_id, budget_currency.upper(), PeriodType(period_type).value]
        if exclude_id:
            sql += " AND id != ?"
            params.append(exclude_id)
        row = await db.query_first(f"{sql} LIMIT 1", params)
        return self._row_to_budget(row) if row else None

    async def find_duplicate_budget(
        self,
        category_id: str,
        budget_currency: str,
        period_type: str,
        exclude_id: Optional[str] = None,
    ) -> Optional[Budget]:
        """Existing budget with the same category, currency and period type."""
        return await self._find_duplicate(
            self._storage, category_id, budget_currency, period_type, exclude_id
        )

    # =========================================================================
    # WRITES
    # =========================================================================

    async def create(self, data: BudgetCreate) -> Budget:
        """
        Create a budget.

        Raises:
            ValidationError: If the budget is invalid
            DuplicateError: If the category already has a budget in this
                currency and period type
        """
        key = validate_budget(data)
        if key:
            raise ValidationError(key)

        budget_currency = data.currency.upper()
        now = datetime.now().isoformat()

        async def insert(db: StorageHandle) -> None:
            duplicate = await self._find_duplicate(
                db, data.category_id, budget_currency, data.period_type, None
            )
            if duplicate is not None:
                raise DuplicateError(duplicate.id)

            await db.execute_query(
                """
                INSERT INTO budgets (
                    id, category_id, amount, currency, period_type, start_date,
                    end_date, is_recurring, rollover_enabled, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    data.id,
                    data.category_id,
                    currency.normalize(data.amount),
                    budget_currency,
                    PeriodType(data.period_type).value,
                    data.start_date[:10],
                    data.end_date[:10] if data.end_date else None,
                    int(data.is_recurring),
                    int(data.rollover_enabled),
                    now,
                    now,
                ),
            )

        await self._storage.execute_transaction(insert)
        logger.info(
            "budget_created",
            budget_id=data.id,
            category_id=data.category_id,
            currency=budget_currency,
            period_type=data.period_type,
        )
        await self._emit(ChangeAction.CREATED, data.id)

        return await self.get(data.id)

    async def update(self, budget_id: str, updates: BudgetUpdate) -> Budget:
        """
        Apply a partial update.

        Raises:
            NotFoundError: If the budget does not exist
            ValidationError: If the merged budget is invalid
            DuplicateError: If the new category/currency/period collides
        """
        changes = updates.model_dump(exclude_unset=True)

        async def write(db: StorageHandle) -> None:
            current = await self._fetch(db, budget_id)
            if current is None:
                raise NotFoundError("budget", budget_id)

            before = current.model_dump(mode="json")
            merged = dict(before)
            merged.update(changes)

            key = validate_budget(merged)
            if key:
                raise ValidationError(key)

            merged["currency"] = merged["currency"].upper()
            merged["period_type"] = PeriodType(merged["period_type"]).value
            merged["amount"] = currency.normalize(merged["amount"])
            merged["end_date"] = merged["end_date"] or None

            if any(field in changes for field in _KEY_FIELDS):
                duplicate = await self._find_duplicate(
                    db,
                    merged["category_id"],
                    merged["currency"],
                    merged["period_type"],
                    budget_id,
                )
                if duplicate is not None:
                    raise DuplicateError(duplicate.id)

            columns = {
                field: merged[field]
                for field in _WRITABLE_FIELDS
                if merged[field] != before[field]
            }
            if not columns:
                return
            for flag in ("is_recurring", "rollover_enabled"):
                if flag in columns:
                    columns[flag] = int(columns[flag])
            columns["updated_at"] = datetime.now().isoformat()

            assignments = ", ".join(f"{column} = ?" for column in columns)
            await db.execute_query(
                f"UPDATE budgets SET {assignments} WHERE id = ?",
                (*columns.values(), budget_id),
            )

        await self._storage.execute_transaction(write)
        logger.info("budget_updated", budget_id=budget_id, fields=sorted(changes))
        await self._emit(ChangeAction.UPDATED, budget_id)

        return await self.get(budget_id)

    async def delete(self, budget_id: str) -> None:
        """
        Raises:
            NotFoundError: If the budget does not exist
        """
        result = await self._storage.execute_query("DELETE FROM budgets WHERE id = ?", (budget_id,))
        if result.changes == 0:
            raise NotFoundError("budget", budget_id)

        logger.info("budget_deleted", budget_id=budget_id)
        await self._emit(ChangeAction.DELETED, budget_id)

    # =========================================================================
    # READS
    # =========================================================================

    async def get(self, budget_id: str) -> Optional[Budget]:
        return await self._fetch(self._storage, budget_id)

    async def exists(self, budget_id: str) -> bool:
        row = await self._storage.query_first(
            "SELECT 1 AS found FROM budgets WHERE id = ? LIMIT 1", (budget_id,)
        )
        return row is not None

    async def list_all(self) -> list[Budget]:
        return await self._list()

    async def list_by_category(self, category_id: str) -> list[Budget]:
        return await self._list("WHERE category_id = ?", (category_id,))

    async def list_by_currency(self, budget_currency: str) -> list[Budget]:
        return await self._list("WHERE currency = ?", (budget_currency.upper(),))

    async def list_by_period_type(self, period_type: PeriodType) -> list[Budget]:
        return await self._list("WHERE period_type = ?", (PeriodType(period_type).value,))

    async def get_recurring_budgets(self) -> list[Budget]:
        return await self._list("WHERE is_recurring = 1")

    async def get_active_budgets(self, reference: DateInput = None) -> list[Budget]:
        """Budgets whose [start_date, end_date] contains the reference date (open-ended if no end)."""
        day = to_date(reference).isoformat()
        return await self._list(
            "WHERE start_date <= ? AND (end_date IS NULL OR end_date >= ?)", (day, day)
        )

    async def has_active_budget(self, category_id: str, reference: DateInput = None) -> bool:
        day = to_date(reference).isoformat()
        row = await self._storage.query_first(
            """
            SELECT 1 AS found FROM budgets
            WHERE category_id = ?
              AND start_date <= ?
              AND (end_date IS NULL OR end_date >= ?)
            LIMIT 1
            """,
            (category_id, day, day),
        )
        return row is not None

    # =========================================================================
    # STATUS
    # =========================================================================

    async def calculate_spending_for_budget(
        self,
        category_id: str,
        budget_currency: str,
        start: DateLike,
        end: DateLike,
        include_children: bool = True,
    ) -> str:
        """
        Expenses on the category (and, by default, all its descendants) in
        accounts of the budget's currency, within [start, end].
        """
        category_ids = [category_id]
        if include_children:
            category_ids.extend(c.id for c in await self._categories.get_descendants(category_id))

        return await self._queries.expenses_for_categories(
            category_ids, budget_currency.upper(), start, end
        )

    def _health(self, percentage: float, is_exceeded: bool) -> BudgetHealth:
        if is_exceeded:
            return BudgetHealth.EXCEEDED
        if percentage >= self._settings.danger_threshold:
            return BudgetHealth.DANGER
        if percentage >= self._settings.warning_threshold:
            return BudgetHealth.WARNING
        return BudgetHealth.SAFE

    async def calculate_budget_status(
        self,
        budget_id: str,
        reference: DateInput = None,
    ) -> BudgetStatus:
        """
        Status of a budget for the period containing the reference date.

        Raises:
            NotFoundError: If the budget does not exist
        """
        budget = await self.get(budget_id)
        if budget is None:
            raise NotFoundError("budget", budget_id)

        window = get_current_period_dates(budget.period_type, reference)
        spent = await self.calculate_spending_for_budget(
            budget.category_id,
            budget.currency,
            window.start_date,
            window.end_date,
        )

        amount = currency.to_decimal(budget.amount)
        spent_value = currency.to_decimal(spent)
        if amount > 0:
            ratio = (spent_value / amount * 100).quantize(_CENT, rounding=ROUND_HALF_UP)
            percentage = float(ratio)
        else:
            percentage = 0.0
        is_exceeded = spent_value > amount

        return BudgetStatus(
            budget_id=budget.id,
            amount=budget.amount,
            spent=spent,
            remaining=currency.subtract(budget.amount, spent),
            percentage=percentage,
            is_exceeded=is_exceeded,
            period_start=window.start_date,
            period_end=window.end_date,
            status=self._health(percentage, is_exceeded),
        )

    async def calculate_all_budget_statuses(
        self,
        reference: DateInput = None,
    ) -> dict[str, BudgetStatus]:
        """
        Statuses of every active budget, keyed by budget id.

        A budget whose status cannot be computed is logged and left out;
        it never blanks out the others.
        """
        statuses: dict[str, BudgetStatus] = {}

        for budget in await self.get_active_budgets(reference):
            try:
                statuses[budget.id] = await self.calculate_budget_status(budget.id, reference)
            except Exception as e:
                logger.error(
                    "budget_status_failed",
                    budget_id=budget.id,
                    error=str(e),
                    error_type=type(e).__name__,
                )

        return statuses
