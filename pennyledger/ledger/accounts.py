"""
Account Store

CRUD for accounts. Balances are NOT editable here: an account's balance
only moves through operations, so a manual correction is recorded as a
reconciliation operation against a shadow category (adjust_balance).

DESIGN DECISION: Deleting an account that still has operations requires
a target account. The operations are reassigned to the target and their
net effect is moved onto the target's balance in the same transaction,
so the balance invariant holds for the target afterwards. Transfers
between the two accounts are deleted instead, since reassigning them
would leave a transfer from the target to itself.
"""

from datetime import date, datetime
from typing import Optional

import structlog

from pennyledger import currency
from pennyledger.config import AppSettings
from pennyledger.errors import HasDependentsError, NotFoundError, ValidationError
from pennyledger.events.notifier import EventNotifier
from pennyledger.ledger.engine import LedgerEngine, signed_effects
from pennyledger.models.events import ChangeAction, LedgerEventBuilder
from pennyledger.models.ledger import (
    Account,
    AccountCreate,
    AccountUpdate,
    CategoryType,
    LedgerResult,
    OperationCreate,
    OperationType,
    OperationUpdate,
)
from pennyledger.services.storage.interface import Row, StorageHandle, StorageInterface

logger = structlog.get_logger(__name__)


class AccountStore:
    """
    Accounts and their balance bookkeeping.

    Usage:
        accounts = AccountStore(storage, ledger, notifier)
        wallet = await accounts.create(AccountCreate(name="Wallet", balance="100"))
        await accounts.adjust_balance(wallet.id, "92.40", "counted cash")
    """

    def __init__(
        self,
        storage: StorageInterface,
        ledger: LedgerEngine,
        notifier: Optional[EventNotifier] = None,
        settings: Optional[AppSettings] = None,
    ):
        self._storage = storage
        self._ledger = ledger
        self._notifier = notifier
        self._settings = settings or AppSettings()

    def _row_to_account(self, row: Row) -> Account:
        return Account(
            id=row["id"],
            name=row["name"],
            balance=row["balance"],
            currency=row["currency"],
            display_order=row["display_order"],
            hidden=bool(row["hidden"]),
            monthly_target=row["monthly_target"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    async def _fetch(self, db: StorageHandle, account_id: int) -> Optional[Account]:
        row = await db.query_first("SELECT * FROM accounts WHERE id = ?", (account_id,))
        return self._row_to_account(row) if row else None

    async def _emit(self, action: ChangeAction, account_id: int, details: Optional[dict] = None) -> None:
        if self._notifier is not None:
            await self._notifier.emit(LedgerEventBuilder.account_changed(action, account_id, details))

    # =========================================================================
    # READS
    # =========================================================================

    async def get(self, account_id: int) -> Optional[Account]:
        return await self._fetch(self._storage, account_id)

    async def exists(self, account_id: int) -> bool:
        row = await self._storage.query_first(
            "SELECT 1 AS found FROM accounts WHERE id = ? LIMIT 1", (account_id,)
        )
        return row is not None

    async def list_all(self, include_hidden: bool = True) -> list[Account]:
        sql = "SELECT * FROM accounts"
        if not include_hidden:
            sql += " WHERE hidden = 0"
        rows = await self._storage.query_all(f"{sql} ORDER BY display_order ASC, created_at DESC")
        return [self._row_to_account(r) for r in rows]

    async def operation_count(self, account_id: int) -> int:
        """Operations where the account is the source or the transfer destination."""
        row = await self._storage.query_first(
            "SELECT COUNT(*) AS count FROM operations WHERE account_id = ? OR to_account_id = ?",
            (account_id, account_id),
        )
        return row["count"] if row else 0

    # =========================================================================
    # WRITES
    # =========================================================================

    async def create(self, data: AccountCreate) -> Account:
        """Create an account; new accounts go to the end of the display order."""
        now = datetime.now().isoformat()
        account_currency = data.currency or self._settings.default_currency

        async def insert(db: StorageHandle) -> int:
            display_order = data.display_order
            if display_order is None:
                row = await db.query_first("SELECT MAX(display_order) AS max_order FROM accounts")
                max_order = row["max_order"] if row else None
                display_order = (max_order if max_order is not None else -1) + 1

            result = await db.execute_query(
                """
                INSERT INTO accounts (
                    name, balance, currency, display_order, hidden,
                    monthly_target, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    data.name,
                    data.balance,
                    account_currency,
                    display_order,
                    int(data.hidden),
                    data.monthly_target,
                    now,
                    now,
                ),
            )
            return result.last_insert_id

        account_id = await self._storage.execute_transaction(insert)
        logger.info("account_created", account_id=account_id, currency=account_currency)
        await self._emit(ChangeAction.CREATED, account_id)

        return await self.get(account_id)

    async def update(self, account_id: int, updates: AccountUpdate) -> Account:
        """
        Apply a partial update.

        Raises:
            NotFoundError: If the account does not exist
        """
        changes = updates.model_dump(exclude_unset=True)
        if "hidden" in changes:
            changes["hidden"] = int(bool(changes["hidden"]))

        async def write(db: StorageHandle) -> None:
            if await self._fetch(db, account_id) is None:
                raise NotFoundError("account", account_id)
            if not changes:
                return
            columns = dict(changes, updated_at=datetime.now().isoformat())
            assignments = ", ".join(f"{column} = ?" for column in columns)
            await db.execute_query(
                f"UPDATE accounts SET {assignments} WHERE id = ?",
                (*columns.values(), account_id),
            )

        await self._storage.execute_transaction(write)
        if changes:
            logger.info("account_updated", account_id=account_id, fields=sorted(changes))
            await self._emit(ChangeAction.UPDATED, account_id)

        return await self.get(account_id)

    async def reorder(self, ordered_ids: list[int]) -> None:
        """Set display_order to each account's position in the list."""
        now = datetime.now().isoformat()

        async def write(db: StorageHandle) -> None:
            for position, account_id in enumerate(ordered_ids):
                await db.execute_query(
                    "UPDATE accounts SET display_order = ?, updated_at = ? WHERE id = ?",
                    (position, now, account_id),
                )

        await self._storage.execute_transaction(write)
        logger.info("accounts_reordered", count=len(ordered_ids))

    async def delete(self, account_id: int, transfer_to: Optional[int] = None) -> int:
        """
        Delete an account.

        Transfers running between the account and transfer_to are deleted
        rather than reassigned, since they would become self-transfers.

        Args:
            account_id: Account to delete
            transfer_to: Account that takes over its operations, required
                when the account still has any

        Returns:
            Number of operations reassigned

        Raises:
            NotFoundError: If either account does not exist
            HasDependentsError: If operations exist and no target was given
            ValidationError: If transfer_to is the account being deleted
        """
        async def remove(db: StorageHandle) -> tuple[int, list[LedgerResult]]:
            if await self._fetch(db, account_id) is None:
                raise NotFoundError("account", account_id)

            rows = await db.query_all(
                "SELECT * FROM operations WHERE account_id = ? OR to_account_id = ?",
                (account_id, account_id),
            )
            removed: list[LedgerResult] = []

            if rows:
                if transfer_to is None:
                    raise HasDependentsError("account", account_id, "operations", len(rows))
                if transfer_to == account_id:
                    raise ValidationError("accounts_must_be_different")
                if await self._fetch(db, transfer_to) is None:
                    raise NotFoundError("account", transfer_to)

                between = {account_id, transfer_to}
                internal_ids = {
                    row["id"] for row in rows
                    if row["type"] == OperationType.TRANSFER.value
                    and {row["account_id"], row["to_account_id"]} == between
                }
                for operation_id in sorted(internal_ids):
                    removed.append(await self._ledger.delete_in(db, operation_id))
                rows = [row for row in rows if row["id"] not in internal_ids]

                moved = "0"
                for row in rows:
                    for effect_account, delta in signed_effects(row):
                        if effect_account == account_id:
                            moved = currency.add(moved, delta)

                if rows:
                    await db.execute_query(
                        "UPDATE operations SET account_id = ? WHERE account_id = ?",
                        (transfer_to, account_id),
                    )
                    await db.execute_query(
                        "UPDATE operations SET to_account_id = ? WHERE to_account_id = ?",
                        (transfer_to, account_id),
                    )
                    await self._ledger.apply_balance_deltas(db, {transfer_to: moved})

            await db.execute_query("DELETE FROM accounts WHERE id = ?", (account_id,))
            return len(rows), removed

        reassigned, removed = await self._storage.execute_transaction(remove)

        logger.info(
            "account_deleted",
            account_id=account_id,
            transfer_to=transfer_to,
            reassigned_operations=reassigned,
            removed_transfers=len(removed),
        )
        for result in removed:
            await self._ledger.emit_operation_changed(ChangeAction.DELETED, result)
        await self._emit(ChangeAction.DELETED, account_id, {"transfer_to": transfer_to})
        if reassigned or removed:
            await self._emit(ChangeAction.UPDATED, transfer_to)

        return reassigned

    async def adjust_balance(
        self,
        account_id: int,
        new_balance: str,
        description: Optional[str] = None,
    ) -> Optional[LedgerResult]:
        """
        Bring an account to a counted balance by booking the difference.

        All adjustments of one day fold into a single operation against a
        shadow category. When today's adjustments cancel out, that
        operation is removed again.

        Returns:
            The ledger result, or None if nothing had to change

        Raises:
            ValidationError: balance_must_be_number
            NotFoundError: If the account or a shadow category is missing
        """
        if not currency.is_valid(new_balance):
            raise ValidationError("balance_must_be_number")
        target = currency.normalize(new_balance)
        today = date.today().isoformat()

        async def run(db: StorageHandle) -> Optional[tuple[ChangeAction, LedgerResult]]:
            account = await self._fetch(db, account_id)
            if account is None:
                raise NotFoundError("account", account_id)

            existing = await db.query_first(
                """
                SELECT o.* FROM operations o
                JOIN categories c ON o.category_id = c.id
                WHERE o.account_id = ? AND o.date = ? AND c.is_shadow = 1
                ORDER BY o.created_at DESC, o.id DESC
                LIMIT 1
                """,
                (account_id, today),
            )

            already_booked = "0"
            if existing is not None:
                for effect_account, delta in signed_effects(existing):
                    if effect_account == account_id:
                        already_booked = currency.add(already_booked, delta)

            total = currency.add(already_booked, currency.subtract(target, account.balance))
            original = currency.subtract(account.balance, already_booked)

            if currency.is_zero(total):
                if existing is None:
                    return None
                return ChangeAction.DELETED, await self._ledger.delete_in(db, existing["id"])

            op_type = OperationType.EXPENSE if currency.is_negative(total) else OperationType.INCOME
            shadow_row = await db.query_first(
                """
                SELECT id FROM categories
                WHERE is_shadow = 1 AND category_type = ?
                ORDER BY created_at ASC, rowid ASC
                LIMIT 1
                """,
                (CategoryType(op_type.value).value,),
            )
            if shadow_row is None:
                raise NotFoundError("category", f"shadow {op_type.value}")

            text = f"Balance adjusted from {original} to {target}"
            if description:
                text = f"{description}\n{text}"

            if existing is not None:
                result = await self._ledger.update_in(db, existing["id"], OperationUpdate(
                    type=op_type,
                    amount=currency.absolute(total),
                    category_id=shadow_row["id"],
                    description=text,
                ))
                return ChangeAction.UPDATED, result

            result = await self._ledger.create_in(db, OperationCreate(
                type=op_type,
                amount=currency.absolute(total),
                account_id=account_id,
                category_id=shadow_row["id"],
                date=today,
                description=text,
            ))
            return ChangeAction.CREATED, result

        outcome = await self._storage.execute_transaction(run)
        if outcome is None:
            return None

        action, result = outcome
        logger.info(
            "balance_adjusted",
            account_id=account_id,
            target=target,
            action=action.value,
            operation_id=result.operation.id,
        )
        await self._ledger.emit_operation_changed(action, result)
        return result
