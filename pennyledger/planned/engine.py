"""
Planned-Operation Engine

Templates for operations that recur (rent, salary) or happen once.

Execution state is a single column, last_executed_month ("YYYY-MM"):
- Eligible: never executed, or last executed in another month
- Executed this month: last_executed_month == current month (recurring)
- Consumed: a one-time template is deleted after it executes

A template becomes eligible again when the month changes; nothing is
scheduled, it is a pure comparison against the reference date.

DESIGN DECISION: execute() claims the month and books the operation in ONE
transaction. The claim is a conditional UPDATE, so of two racing calls
only one sees a changed row. If booking the operation fails, the claim
rolls back with it and the template stays eligible.
"""

from datetime import datetime
from typing import Optional

import structlog

from pennyledger import currency
from pennyledger.budgets.periods import DateInput, current_month, to_date
from pennyledger.errors import NotFoundError, ValidationError
from pennyledger.events.notifier import EventNotifier
from pennyledger.ledger.engine import LedgerEngine
from pennyledger.models.events import ChangeAction, LedgerEventBuilder
from pennyledger.models.ledger import (
    ExecutionOutcome,
    LedgerResult,
    OperationCreate,
    PlannedExecutionResult,
    PlannedOperation,
    PlannedOperationCreate,
    PlannedOperationUpdate,
)
from pennyledger.services.storage.interface import Row, StorageHandle, StorageInterface
from pennyledger.validation.validator import validate_planned_operation

logger = structlog.get_logger(__name__)

_ORDER = "ORDER BY display_order ASC, created_at ASC, rowid ASC"

_WRITABLE_FIELDS = (
    "name",
    "type",
    "amount",
    "account_id",
    "category_id",
    "to_account_id",
    "description",
    "is_recurring",
    "last_executed_month",
    "display_order",
)


class PlannedOperationEngine:
    """
    Planned-operation templates and their monthly execution.

    Usage:
        planned = PlannedOperationEngine(storage, ledger, notifier)
        rent = await planned.create(PlannedOperationCreate(
            name="Rent", type="expense", amount="1200", account_id=1,
            category_id="expense-monthly-rent",
        ))
        result = await planned.execute(rent.id)
        if not result.executed:
            ...  # already booked this month
    """

    def __init__(
        self,
        storage: StorageInterface,
        ledger: LedgerEngine,
        notifier: Optional[EventNotifier] = None,
    ):
        self._storage = storage
        self._ledger = ledger
        self._notifier = notifier

    def _row_to_planned(self, row: Row) -> PlannedOperation:
        return PlannedOperation(
            id=row["id"],
            name=row["name"],
            type=row["type"],
            amount=row["amount"],
            account_id=row["account_id"],
            category_id=row["category_id"],
            to_account_id=row["to_account_id"],
            description=row["description"],
            is_recurring=bool(row["is_recurring"]),
            last_executed_month=row["last_executed_month"],
            display_order=row["display_order"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    async def _fetch(self, db: StorageHandle, template_id: str) -> Optional[PlannedOperation]:
        row = await db.query_first("SELECT * FROM planned_operations WHERE id = ?", (template_id,))
        return self._row_to_planned(row) if row else None

    # =========================================================================
    # CRUD
    # =========================================================================

    async def create(self, data: PlannedOperationCreate) -> PlannedOperation:
        """
        Raises:
            ValidationError: If the template is invalid
        """
        key = validate_planned_operation(data)
        if key:
            raise ValidationError(key)

        now = datetime.now().isoformat()
        await self._storage.execute_query(
            """
            INSERT INTO planned_operations (
                id, name, type, amount, account_id, category_id, to_account_id,
                description, is_recurring, last_executed_month, display_order,
                created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                data.id,
                data.name.strip(),
                data.type,
                currency.normalize(data.amount),
                data.account_id,
                data.category_id,
                data.to_account_id,
                data.description,
                int(data.is_recurring),
                None,
                data.display_order,
                now,
                now,
            ),
        )

        logger.info("planned_operation_created", template_id=data.id, is_recurring=data.is_recurring)
        return await self.get(data.id)

    async def get(self, template_id: str) -> Optional[PlannedOperation]:
        return await self._fetch(self._storage, template_id)

    async def list_all(self) -> list[PlannedOperation]:
        rows = await self._storage.query_all(f"SELECT * FROM planned_operations {_ORDER}")
        return [self._row_to_planned(r) for r in rows]

    async def list_recurring(self) -> list[PlannedOperation]:
        rows = await self._storage.query_all(
            f"SELECT * FROM planned_operations WHERE is_recurring = 1 {_ORDER}"
        )
        return [self._row_to_planned(r) for r in rows]

    async def list_one_time(self) -> list[PlannedOperation]:
        rows = await self._storage.query_all(
            f"SELECT * FROM planned_operations WHERE is_recurring = 0 {_ORDER}"
        )
        return [self._row_to_planned(r) for r in rows]

    async def update(self, template_id: str, updates: PlannedOperationUpdate) -> PlannedOperation:
        """
        Apply a partial update.

        Raises:
            NotFoundError: If the template does not exist
            ValidationError: If the merged template is invalid
        """
        changes = updates.model_dump(exclude_unset=True)

        async def write(db: StorageHandle) -> None:
            current = await self._fetch(db, template_id)
            if current is None:
                raise NotFoundError("planned_operation", template_id)

            before = current.model_dump(mode="json")
            merged = dict(before)
            merged.update(changes)

            key = validate_planned_operation(merged)
            if key:
                raise ValidationError(key)

            merged["type"] = getattr(merged["type"], "value", merged["type"])
            merged["amount"] = currency.normalize(merged["amount"])
            merged["name"] = merged["name"].strip()

            columns = {
                field: merged[field]
                for field in _WRITABLE_FIELDS
                if merged[field] != before[field]
            }
            if not columns:
                return
            if "is_recurring" in columns:
                columns["is_recurring"] = int(columns["is_recurring"])
            columns["updated_at"] = datetime.now().isoformat()

            assignments = ", ".join(f"{column} = ?" for column in columns)
            await db.execute_query(
                f"UPDATE planned_operations SET {assignments} WHERE id = ?",
                (*columns.values(), template_id),
            )

        await self._storage.execute_transaction(write)
        logger.info("planned_operation_updated", template_id=template_id, fields=sorted(changes))
        return await self.get(template_id)

    async def delete(self, template_id: str) -> None:
        result = await self._storage.execute_query(
            "DELETE FROM planned_operations WHERE id = ?", (template_id,)
        )
        if result.changes == 0:
            raise NotFoundError("planned_operation", template_id)
        logger.info("planned_operation_deleted", template_id=template_id)

    # =========================================================================
    # EXECUTION STATE
    # =========================================================================

    def current_month(self, reference: DateInput = None) -> str:
        return current_month(reference)

    def is_executed_this_month(
        self,
        template: PlannedOperation,
        reference: DateInput = None,
    ) -> bool:
        return template.last_executed_month == current_month(reference)

    async def mark_executed(self, template_id: str, month: str) -> None:
        """Record that the template was executed in `month` ("YYYY-MM")."""
        result = await self._storage.execute_query(
            "UPDATE planned_operations SET last_executed_month = ?, updated_at = ? WHERE id = ?",
            (month, datetime.now().isoformat(), template_id),
        )
        if result.changes == 0:
            raise NotFoundError("planned_operation", template_id)

    async def execute(
        self,
        template_id: str,
        reference: DateInput = None,
    ) -> PlannedExecutionResult:
        """
        Book the template as a real operation dated on the reference day.

        Returns ALREADY_EXECUTED, without touching the ledger, when the
        template already ran this month.

        Raises:
            NotFoundError: If the template does not exist
            ValidationError: If the operation built from it is invalid
        """
        day = to_date(reference)
        month = current_month(day)

        template = await self.get(template_id)
        if template is None:
            raise NotFoundError("planned_operation", template_id)

        already = PlannedExecutionResult(
            outcome=ExecutionOutcome.ALREADY_EXECUTED,
            template_id=template_id,
            month=month,
        )
        if template.last_executed_month == month:
            logger.info("planned_operation_already_executed", template_id=template_id, month=month)
            return already

        async def run(db: StorageHandle) -> Optional[LedgerResult]:
            claim = await db.execute_query(
                """
                UPDATE planned_operations
                SET last_executed_month = ?, updated_at = ?
                WHERE id = ?
                  AND (last_executed_month IS NULL OR last_executed_month != ?)
                """,
                (month, datetime.now().isoformat(), template_id, month),
            )
            if claim.changes == 0:
                return None

            result = await self._ledger.create_in(db, OperationCreate(
                type=template.type,
                amount=template.amount,
                account_id=template.account_id,
                category_id=template.category_id,
                to_account_id=template.to_account_id,
                date=day.isoformat(),
                description=template.name,
            ))

            if not template.is_recurring:
                await db.execute_query("DELETE FROM planned_operations WHERE id = ?", (template_id,))
            return result

        result = await self._storage.execute_transaction(run)
        if result is None:
            logger.info("planned_operation_already_executed", template_id=template_id, month=month)
            return already

        template_deleted = not template.is_recurring
        logger.info(
            "planned_operation_executed",
            template_id=template_id,
            month=month,
            operation_id=result.operation.id,
            template_deleted=template_deleted,
        )

        await self._ledger.emit_operation_changed(ChangeAction.CREATED, result)
        if self._notifier is not None:
            await self._notifier.emit(LedgerEventBuilder.planned_operation_executed(
                template_id,
                month,
                result.operation.id,
                template_deleted,
            ))

        return PlannedExecutionResult(
            outcome=ExecutionOutcome.EXECUTED,
            template_id=template_id,
            month=month,
            operation=result.operation,
            template_deleted=template_deleted,
        )
