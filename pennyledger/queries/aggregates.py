"""
Aggregation Queries

DESIGN DECISION: Aggregates are always recomputed from the operations
table. There is no cached rollup to drift out of sync.

SQL only selects and filters the rows; the amounts are summed in Python
with exact decimal arithmetic. SUM(CAST(amount AS REAL)) would reintroduce
binary floating point into money.

Date bounds are inclusive and compared as ISO "YYYY-MM-DD" strings, which
sort the same way the dates do.
"""

from collections.abc import Iterable
from datetime import date, timedelta
from decimal import Decimal
from typing import Optional, Union

from pennyledger import currency
from pennyledger.errors import NotFoundError
from pennyledger.ledger.engine import signed_effects
from pennyledger.models.ledger import AccountBalance, CategoryTotal, OperationType
from pennyledger.services.storage.interface import Row, StorageInterface

DateLike = Union[str, date]


def _iso(value: DateLike) -> str:
    if isinstance(value, date):
        return value.isoformat()[:10]
    return value[:10]


def _sum(amounts: Iterable[str]) -> str:
    total = "0"
    for amount in amounts:
        total = currency.add(total, amount)
    return total


class LedgerQueries:
    """
    Read-only reporting over operations.

    GUARANTEES:
    - Only returns real data from storage
    - Never estimates; an empty range sums to "0"
    - Money comes back as decimal strings
    """

    def __init__(self, storage: StorageInterface):
        self._storage = storage

    async def _total(
        self,
        operation_type: OperationType,
        account_id: int,
        start: DateLike,
        end: DateLike,
    ) -> str:
        rows = await self._storage.query_all(
            """
            SELECT amount FROM operations
            WHERE account_id = ? AND type = ? AND date >= ? AND date <= ?
            """,
            (account_id, operation_type.value, _iso(start), _iso(end)),
        )
        return _sum(row["amount"] for row in rows)

    async def total_expenses(self, account_id: int, start: DateLike, end: DateLike) -> str:
        """Sum of expenses booked on an account within [start, end]."""
        return await self._total(OperationType.EXPENSE, account_id, start, end)

    async def total_income(self, account_id: int, start: DateLike, end: DateLike) -> str:
        """Sum of income booked on an account within [start, end]."""
        return await self._total(OperationType.INCOME, account_id, start, end)

    async def _by_category(
        self,
        operation_type: OperationType,
        start: DateLike,
        end: DateLike,
        account_currency: Optional[str],
    ) -> list[CategoryTotal]:
        sql = """
            SELECT o.category_id, o.amount
            FROM operations o
            JOIN accounts a ON o.account_id = a.id
            WHERE o.type = ?
              AND o.category_id IS NOT NULL
              AND o.date >= ? AND o.date <= ?
        """
        params: list = [operation_type.value, _iso(start), _iso(end)]
        if account_currency:
            sql += " AND a.currency = ?"
            params.append(account_currency.upper())

        groups: dict[str, list[str]] = {}
        for row in await self._storage.query_all(sql, params):
            groups.setdefault(row["category_id"], []).append(row["amount"])

        totals = [
            CategoryTotal(category_id=category_id, total=_sum(amounts), operation_count=len(amounts))
            for category_id, amounts in groups.items()
        ]
        totals.sort(key=lambda t: Decimal(t.total), reverse=True)
        return totals

    async def spending_by_category(
        self,
        start: DateLike,
        end: DateLike,
        account_currency: Optional[str] = None,
    ) -> list[CategoryTotal]:
        """
        Expenses per category, largest first.

        With `account_currency`, only operations on accounts held in that
        currency count.
        """
        return await self._by_category(OperationType.EXPENSE, start, end, account_currency)

    async def income_by_category(
        self,
        start: DateLike,
        end: DateLike,
        account_currency: Optional[str] = None,
    ) -> list[CategoryTotal]:
        """Income per category, largest first."""
        return await self._by_category(OperationType.INCOME, start, end, account_currency)

    async def expenses_for_categories(
        self,
        category_ids: Iterable[str],
        account_currency: str,
        start: DateLike,
        end: DateLike,
    ) -> str:
        """Sum of expenses tagged with any of the categories, on accounts in one currency."""
        ids = list(dict.fromkeys(category_ids))
        if not ids:
            return "0"

        placeholders = ", ".join("?" for _ in ids)
        rows = await self._storage.query_all(
            f"""
            SELECT o.amount
            FROM operations o
            JOIN accounts a ON o.account_id = a.id
            WHERE o.type = ?
              AND o.category_id IN ({placeholders})
              AND a.currency = ?
              AND o.date >= ? AND o.date <= ?
            """,
            (OperationType.EXPENSE.value, *ids, account_currency, _iso(start), _iso(end)),
        )
        return _sum(row["amount"] for row in rows)

    async def _operations_touching(self, account_id: int, after: Optional[str] = None) -> list[Row]:
        sql = "SELECT * FROM operations WHERE (account_id = ? OR to_account_id = ?)"
        params: list = [account_id, account_id]
        if after is not None:
            sql += " AND date > ?"
            params.append(after)
        return await self._storage.query_all(sql, params)

    def _effect_on(self, rows: Iterable[Row], account_id: int) -> str:
        total = "0"
        for row in rows:
            for effect_account, delta in signed_effects(row):
                if effect_account == account_id:
                    total = currency.add(total, delta)
        return total

    async def balance_on_date(self, account_id: int, on_date: DateLike) -> str:
        """
        Balance at the end of a day.

        Walks back from the current balance by reversing every operation
        dated after `on_date`.

        Raises:
            NotFoundError: If the account does not exist
        """
        account = await self._storage.query_first(
            "SELECT balance FROM accounts WHERE id = ?", (account_id,)
        )
        if account is None:
            raise NotFoundError("account", account_id)

        later = await self._operations_touching(account_id, after=_iso(on_date))
        return currency.subtract(account["balance"], self._effect_on(later, account_id))

    async def balance_history(
        self,
        account_id: int,
        start: DateLike,
        end: DateLike,
    ) -> list[tuple[str, str]]:
        """
        End-of-day balances for every day from start to end, inclusive.

        One walk back from the current balance: operations after `end` are
        reversed first, then each day's net effect is peeled off in turn.

        Returns:
            (date, balance) pairs, oldest first; empty if start > end

        Raises:
            NotFoundError: If the account does not exist
        """
        first, last = _iso(start), _iso(end)
        account = await self._storage.query_first(
            "SELECT balance FROM accounts WHERE id = ?", (account_id,)
        )
        if account is None:
            raise NotFoundError("account", account_id)
        if first > last:
            return []

        after_end = "0"
        per_day: dict[str, str] = {}
        for row in await self._operations_touching(account_id, after=first):
            effect = self._effect_on([row], account_id)
            if row["date"] > last:
                after_end = currency.add(after_end, effect)
            else:
                per_day[row["date"]] = currency.add(per_day.get(row["date"], "0"), effect)

        balance = currency.subtract(account["balance"], after_end)
        history = []
        day, stop = date.fromisoformat(last), date.fromisoformat(first)
        while day >= stop:
            key = day.isoformat()
            history.append((key, balance))
            balance = currency.subtract(balance, per_day.get(key, "0"))
            day -= timedelta(days=1)

        history.reverse()
        return history

    async def balances_on_date(self, on_date: DateLike) -> list[AccountBalance]:
        """Every account's balance at the end of a day, in display order."""
        day = _iso(on_date)
        accounts = await self._storage.query_all(
            "SELECT id, name, currency, balance FROM accounts ORDER BY display_order ASC, created_at DESC"
        )
        later = await self._storage.query_all(
            "SELECT * FROM operations WHERE date > ?", (day,)
        )
        return [
            AccountBalance(
                account_id=a["id"],
                name=a["name"],
                currency=a["currency"],
                date=day,
                balance=currency.subtract(a["balance"], self._effect_on(later, a["id"])),
            )
            for a in accounts
        ]

    async def replay_balance(self, account_id: int, opening_balance: str = "0") -> str:
        """
        Recompute a balance from scratch: opening balance plus the signed
        effect of every operation referencing the account.

        Compare with the stored balance to check the ledger invariant.
        """
        rows = await self._operations_touching(account_id)
        return currency.add(opening_balance, self._effect_on(rows, account_id))
