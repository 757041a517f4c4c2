"""
Ledger Engine

Owns operations and keeps account balances consistent with them.

CRITICAL INVARIANT: for every account, `balance` equals its opening
balance plus the signed effects of every operation referencing it:

    expense   account_id     -amount
    income    account_id     +amount
    transfer  account_id     -amount
              to_account_id  +(destination_amount or amount)

DESIGN DECISION: Every mutation is ONE storage transaction.
The operation row and every balance it touches commit together or not at
all. Validation runs before any write, so a bad record never leaves
partial state. Events are emitted only after the commit.

A referenced account that does not exist is not fatal: the operation is
kept, the balance update is skipped and logged, and the skip is reported
in LedgerResult.skipped_account_ids.
"""

from datetime import date, datetime
from typing import Any, Iterable, Mapping, Optional, Union

import structlog

from pennyledger import currency
from pennyledger.errors import NotFoundError, ValidationError
from pennyledger.events.notifier import EventNotifier
from pennyledger.models.events import ChangeAction, LedgerEventBuilder
from pennyledger.models.ledger import (
    BalanceChange,
    LedgerResult,
    Operation,
    OperationCreate,
    OperationType,
    OperationUpdate,
)
from pennyledger.services.storage.interface import Row, StorageHandle, StorageInterface
from pennyledger.validation.validator import validate_operation

logger = structlog.get_logger(__name__)

DateLike = Union[str, date]

_ORDER = "ORDER BY date DESC, created_at DESC, id DESC"

# Columns only meaningful on a transfer
_TRANSFER_FIELDS = (
    "to_account_id",
    "exchange_rate",
    "destination_amount",
    "source_currency",
    "destination_currency",
)

_AMOUNT_FIELDS = ("amount", "exchange_rate", "destination_amount")

_WRITABLE_FIELDS = (
    "type",
    "amount",
    "account_id",
    "category_id",
    "date",
    "description",
    *_TRANSFER_FIELDS,
)


def _iso(value: DateLike) -> str:
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return value


def _value(value: Any) -> Any:
    return getattr(value, "value", value)


def _clean(record: dict[str, Any]) -> dict[str, Any]:
    """Canonical amounts, ISO date, no transfer columns on non-transfers."""
    if _value(record["type"]) != OperationType.TRANSFER.value:
        for field in _TRANSFER_FIELDS:
            record[field] = None
    for field in _AMOUNT_FIELDS:
        if record[field] in (None, ""):
            record[field] = None
        else:
            record[field] = currency.normalize(record[field])
    record["date"] = _iso(record["date"])[:10]
    return record


def signed_effects(operation: Union[Operation, Mapping[str, Any]]) -> list[tuple[int, str]]:
    """
    Balance deltas an operation applies, as (account_id, delta) pairs.

    Source account first, then the transfer destination.
    """
    data = operation.model_dump() if isinstance(operation, Operation) else operation
    op_type = _value(data["type"])
    amount = data["amount"]

    if op_type == OperationType.EXPENSE.value:
        return [(data["account_id"], currency.negate(amount))]
    if op_type == OperationType.INCOME.value:
        return [(data["account_id"], currency.normalize(amount))]

    effects = [(data["account_id"], currency.negate(amount))]
    if data.get("to_account_id") is not None:
        destination_amount = data.get("destination_amount")
        received = destination_amount if destination_amount not in (None, "") else amount
        effects.append((data["to_account_id"], currency.normalize(received)))
    return effects


def net_deltas(effects: Iterable[tuple[int, str]]) -> dict[int, str]:
    """Sum deltas per account, keeping first-touch order."""
    totals: dict[int, str] = {}
    for account_id, delta in effects:
        totals[account_id] = currency.add(totals.get(account_id, "0"), delta)
    return totals


class LedgerEngine:
    """
    Create, update and delete operations with balance reconciliation.

    Usage:
        ledger = LedgerEngine(storage, notifier)
        result = await ledger.create(OperationCreate(
            type="expense", amount="12.50", account_id=1,
            category_id="expense-food-groceries", date="2025-03-14",
        ))
    """

    def __init__(
        self,
        storage: StorageInterface,
        notifier: Optional[EventNotifier] = None,
    ):
        self._storage = storage
        self._notifier = notifier

    # =========================================================================
    # ROW MAPPING
    # =========================================================================

    def _row_to_operation(self, row: Row) -> Operation:
        return Operation(
            id=row["id"],
            type=row["type"],
            amount=row["amount"],
            account_id=row["account_id"],
            category_id=row["category_id"],
            to_account_id=row["to_account_id"],
            date=row["date"],
            description=row["description"],
            exchange_rate=row["exchange_rate"],
            destination_amount=row["destination_amount"],
            source_currency=row["source_currency"],
            destination_currency=row["destination_currency"],
            created_at=row["created_at"],
        )

    async def _fetch(self, db: StorageHandle, operation_id: int) -> Optional[Operation]:
        row = await db.query_first("SELECT * FROM operations WHERE id = ?", (operation_id,))
        return self._row_to_operation(row) if row else None

    # =========================================================================
    # BALANCES
    # =========================================================================

    async def apply_balance_deltas(
        self,
        db: StorageHandle,
        deltas: dict[int, str],
        operation_id: Optional[int] = None,
    ) -> list[BalanceChange]:
        """
        Add each delta to its account's balance inside an open transaction.

        Zero deltas are skipped. Missing accounts are logged and reported
        with applied=False.
        """
        changes = []
        now = datetime.now().isoformat()

        for account_id, delta in deltas.items():
            if currency.is_zero(delta):
                continue

            row = await db.query_first("SELECT balance FROM accounts WHERE id = ?", (account_id,))
            if row is None:
                logger.warning(
                    "balance_update_skipped",
                    account_id=account_id,
                    operation_id=operation_id,
                    delta=delta,
                    reason="account_not_found",
                )
                changes.append(BalanceChange(account_id=account_id, delta=delta, applied=False))
                continue

            new_balance = currency.add(row["balance"], delta)
            await db.execute_query(
                "UPDATE accounts SET balance = ?, updated_at = ? WHERE id = ?",
                (new_balance, now, account_id),
            )
            changes.append(BalanceChange(
                account_id=account_id,
                delta=delta,
                applied=True,
                new_balance=new_balance,
            ))

        return changes

    # =========================================================================
    # EVENTS
    # =========================================================================

    async def emit_operation_changed(self, action: ChangeAction, result: LedgerResult) -> None:
        """Tell listeners an operation changed. Call only after the commit."""
        if self._notifier is None:
            return

        operation = result.operation
        account_ids = [c.account_id for c in result.balance_changes]
        account_ids.append(operation.account_id)
        if operation.to_account_id is not None:
            account_ids.append(operation.to_account_id)

        details = {}
        if result.skipped_account_ids:
            details["skipped_account_ids"] = result.skipped_account_ids

        await self._notifier.emit(LedgerEventBuilder.operation_changed(
            action,
            operation.id,
            account_ids,
            details,
        ))

    # =========================================================================
    # MUTATIONS
    #
    # The *_in variants run against a transaction the caller already holds
    # and never emit; the public variants own the transaction and emit after
    # the commit.
    # =========================================================================

    async def create_in(self, db: StorageHandle, data: OperationCreate) -> LedgerResult:
        key = validate_operation(data)
        if key:
            raise ValidationError(key)

        record = _clean(data.model_dump())

        result = await db.execute_query(
            """
            INSERT INTO operations (
                type, amount, account_id, category_id, to_account_id, date,
                created_at, description, exchange_rate, destination_amount,
                source_currency, destination_currency
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                _value(record["type"]),
                record["amount"],
                record["account_id"],
                record["category_id"],
                record["to_account_id"],
                record["date"],
                datetime.now().isoformat(),
                record["description"],
                record["exchange_rate"],
                record["destination_amount"],
                record["source_currency"],
                record["destination_currency"],
            ),
        )

        operation = await self._fetch(db, result.last_insert_id)
        changes = await self.apply_balance_deltas(
            db, net_deltas(signed_effects(operation)), operation.id
        )
        return LedgerResult(operation=operation, balance_changes=changes)

    async def update_in(
        self,
        db: StorageHandle,
        operation_id: int,
        updates: OperationUpdate,
    ) -> LedgerResult:
        old = await self._fetch(db, operation_id)
        if old is None:
            raise NotFoundError("operation", operation_id)

        before = old.model_dump()
        merged = dict(before)
        merged.update(updates.model_dump(exclude_unset=True))

        key = validate_operation(merged)
        if key:
            raise ValidationError(key)
        merged = _clean(merged)

        columns = {
            field: _value(merged[field])
            for field in _WRITABLE_FIELDS
            if _value(merged[field]) != _value(before[field])
        }
        if columns:
            assignments = ", ".join(f"{column} = ?" for column in columns)
            await db.execute_query(
                f"UPDATE operations SET {assignments} WHERE id = ?",
                (*columns.values(), operation_id),
            )

        # reverse-old-source, reverse-old-dest, apply-new-source, apply-new-dest
        reversed_effects = [(acc, currency.negate(d)) for acc, d in signed_effects(before)]
        deltas = net_deltas(reversed_effects + signed_effects(merged))

        operation = await self._fetch(db, operation_id)
        changes = await self.apply_balance_deltas(db, deltas, operation_id)
        return LedgerResult(operation=operation, balance_changes=changes)

    async def delete_in(self, db: StorageHandle, operation_id: int) -> LedgerResult:
        operation = await self._fetch(db, operation_id)
        if operation is None:
            raise NotFoundError("operation", operation_id)

        await db.execute_query("DELETE FROM operations WHERE id = ?", (operation_id,))

        reversed_effects = [
            (account_id, currency.negate(delta))
            for account_id, delta in signed_effects(operation)
        ]
        changes = await self.apply_balance_deltas(db, net_deltas(reversed_effects), operation_id)
        return LedgerResult(operation=operation, balance_changes=changes)

    async def create(self, data: OperationCreate) -> LedgerResult:
        """
        Create an operation and apply its effects to the account balances.

        Raises:
            ValidationError: Before any write, if the record is invalid
        """
        key = validate_operation(data)
        if key:
            raise ValidationError(key)

        async def run(db: StorageHandle) -> LedgerResult:
            return await self.create_in(db, data)

        result = await self._storage.execute_transaction(run)

        logger.info(
            "operation_created",
            operation_id=result.operation.id,
            type=result.operation.type.value,
            amount=result.operation.amount,
            skipped_account_ids=result.skipped_account_ids,
        )
        await self.emit_operation_changed(ChangeAction.CREATED, result)
        return result

    async def update(self, operation_id: int, updates: OperationUpdate) -> LedgerResult:
        """
        Update an operation and re-reconcile balances.

        The old effects are reversed and the new ones applied in the same
        transaction; deltas on the same account are netted.

        Raises:
            NotFoundError: If the operation does not exist
            ValidationError: If the merged record is invalid
        """
        async def run(db: StorageHandle) -> LedgerResult:
            return await self.update_in(db, operation_id, updates)

        result = await self._storage.execute_transaction(run)

        logger.info(
            "operation_updated",
            operation_id=operation_id,
            fields=sorted(updates.model_dump(exclude_unset=True)),
            skipped_account_ids=result.skipped_account_ids,
        )
        await self.emit_operation_changed(ChangeAction.UPDATED, result)
        return result

    async def delete(self, operation_id: int) -> LedgerResult:
        """
        Delete an operation and reverse its balance effects.

        Returns the deleted operation with the balance changes applied.

        Raises:
            NotFoundError: If the operation does not exist
        """
        async def run(db: StorageHandle) -> LedgerResult:
            return await self.delete_in(db, operation_id)

        result = await self._storage.execute_transaction(run)

        logger.info(
            "operation_deleted",
            operation_id=operation_id,
            skipped_account_ids=result.skipped_account_ids,
        )
        await self.emit_operation_changed(ChangeAction.DELETED, result)
        return result

    # =========================================================================
    # READS
    # =========================================================================

    async def get(self, operation_id: int) -> Optional[Operation]:
        return await self._fetch(self._storage, operation_id)

    async def exists(self, operation_id: int) -> bool:
        row = await self._storage.query_first(
            "SELECT 1 AS found FROM operations WHERE id = ? LIMIT 1", (operation_id,)
        )
        return row is not None

    async def list_all(self) -> list[Operation]:
        rows = await self._storage.query_all(f"SELECT * FROM operations {_ORDER}")
        return [self._row_to_operation(r) for r in rows]

    async def list_by_account(self, account_id: int) -> list[Operation]:
        """Operations where the account is the source or the transfer destination."""
        rows = await self._storage.query_all(
            f"SELECT * FROM operations WHERE account_id = ? OR to_account_id = ? {_ORDER}",
            (account_id, account_id),
        )
        return [self._row_to_operation(r) for r in rows]

    async def list_by_category(self, category_id: str) -> list[Operation]:
        rows = await self._storage.query_all(
            f"SELECT * FROM operations WHERE category_id = ? {_ORDER}", (category_id,)
        )
        return [self._row_to_operation(r) for r in rows]

    async def list_by_date_range(self, start: DateLike, end: DateLike) -> list[Operation]:
        """Operations dated within [start, end], both inclusive."""
        rows = await self._storage.query_all(
            f"SELECT * FROM operations WHERE date >= ? AND date <= ? {_ORDER}",
            (_iso(start), _iso(end)),
        )
        return [self._row_to_operation(r) for r in rows]

    async def list_by_type(self, operation_type: OperationType) -> list[Operation]:
        rows = await self._storage.query_all(
            f"SELECT * FROM operations WHERE type = ? {_ORDER}",
            (OperationType(operation_type).value,),
        )
        return [self._row_to_operation(r) for r in rows]

    async def available_months(self) -> list[tuple[int, int]]:
        """Distinct (year, month) pairs that have operations, newest first."""
        rows = await self._storage.query_all(
            """
            SELECT DISTINCT
                CAST(substr(date, 1, 4) AS INTEGER) AS year,
                CAST(substr(date, 6, 2) AS INTEGER) AS month
            FROM operations
            ORDER BY year DESC, month DESC
            """
        )
        return [(row["year"], row["month"]) for row in rows]
