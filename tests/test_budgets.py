"""
Tests for budget period windows, budget CRUD and status derivation
"""

import asyncio
from datetime import date, datetime, time

import pytest

from pennyledger.budgets import (
    current_month,
    get_current_period_dates,
    get_next_period_dates,
    get_previous_period_dates,
)
from pennyledger.config import DatabaseSettings
from pennyledger.errors import DuplicateError, NotFoundError, ValidationError
from pennyledger.models.events import LedgerEventType
from pennyledger.models.ledger import (
    AccountCreate,
    BudgetCreate,
    BudgetHealth,
    BudgetUpdate,
    OperationCreate,
    PeriodType,
)
from pennyledger.orchestrator import create_app_components
from pennyledger.services.storage import SQLiteStorage

REFERENCE = date(2025, 3, 15)


async def _app():
    return await create_app_components(storage=SQLiteStorage(DatabaseSettings(path=":memory:")))


def _budget(**overrides):
    data = dict(
        category_id="expense-food",
        amount="100",
        currency="USD",
        period_type="monthly",
        start_date="2025-01-01",
    )
    data.update(overrides)
    return BudgetCreate(**data)


async def _spend(app, account_id, amount, category_id="expense-food-groceries", on="2025-03-10"):
    await app.ledger.create(OperationCreate(
        type="expense",
        amount=amount,
        account_id=account_id,
        category_id=category_id,
        date=on,
    ))


class TestPeriodWindows:
    """Tests for weekly, monthly and yearly windows."""

    def test_weekly_runs_sunday_to_saturday(self):
        """Test the week containing a Wednesday."""
        window = get_current_period_dates("weekly", date(2025, 3, 12))
        assert window.start == datetime(2025, 3, 9, 0, 0, 0)
        assert window.end == datetime(2025, 3, 15, 23, 59, 59, 999000)

    def test_weekly_on_sunday_starts_that_day(self):
        """Test that a Sunday is the first day of its own week."""
        window = get_current_period_dates(PeriodType.WEEKLY, "2025-03-09")
        assert window.start_date == "2025-03-09"
        assert window.end_date == "2025-03-15"

    def test_monthly_handles_leap_february(self):
        """Test the end of February in a leap year."""
        window = get_current_period_dates("monthly", date(2024, 2, 10))
        assert (window.start_date, window.end_date) == ("2024-02-01", "2024-02-29")

    def test_yearly(self):
        """Test the calendar-year window."""
        window = get_current_period_dates("yearly", datetime(2025, 7, 4, 18, 30))
        assert (window.start_date, window.end_date) == ("2025-01-01", "2025-12-31")
        assert window.end.time() == time(23, 59, 59, 999000)

    def test_next_and_previous(self):
        """Test shifting by one period, including month-end clamping."""
        assert get_next_period_dates("monthly", date(2025, 1, 31)).end_date == "2025-02-28"
        assert get_previous_period_dates("monthly", date(2025, 3, 31)).start_date == "2025-02-01"
        assert get_next_period_dates("weekly", date(2025, 3, 12)).start_date == "2025-03-16"
        assert get_previous_period_dates("yearly", date(2024, 2, 29)).start_date == "2023-01-01"
        assert get_next_period_dates("monthly", date(2025, 12, 5)).start_date == "2026-01-01"

    def test_contains(self):
        """Test both window bounds are inclusive."""
        window = get_current_period_dates("monthly", REFERENCE)
        assert window.contains(date(2025, 3, 1))
        assert window.contains(datetime(2025, 3, 31, 23, 59, 59))
        assert not window.contains(date(2025, 4, 1))

    def test_invalid_input(self):
        """Test unknown period types and unparseable dates."""
        with pytest.raises(ValidationError) as period:
            get_current_period_dates("daily", REFERENCE)
        with pytest.raises(ValidationError) as bad_date:
            get_current_period_dates("monthly", "15/03/2025")
        assert period.value.key == "invalid_period_type"
        assert bad_date.value.key == "invalid_date"

    def test_current_month(self):
        """Test the YYYY-MM month key."""
        assert current_month(date(2025, 3, 5)) == "2025-03"
        assert current_month("2024-11-30") == "2024-11"


class TestBudgetCrud:
    """Tests for budget create, update and delete."""

    def test_create_normalises(self):
        """Test amount and currency normalisation on create."""
        events = []

        async def run():
            app = await _app()
            app.notifier.subscribe(LedgerEventType.BUDGETS_NEED_REFRESH, events.append)
            budget = await app.budgets.create(_budget(amount="400.00", currency="usd"))
            app.close()
            return budget

        budget = asyncio.run(run())
        assert budget.amount == "400"
        assert budget.currency == "USD"
        assert budget.period_type == PeriodType.MONTHLY
        assert budget.end_date is None
        assert [e.entity_id for e in events] == [budget.id]

    def test_create_validates(self):
        """Test that invalid budgets are rejected with a key."""
        async def run():
            app = await _app()
            with pytest.raises(ValidationError) as error:
                await app.budgets.create(_budget(end_date="2024-12-31"))
            budgets = await app.budgets.list_all()
            app.close()
            return error.value.key, budgets

        assert asyncio.run(run()) == ("end_date_must_be_after_start", [])

    def test_duplicate_is_rejected_per_currency_and_period(self):
        """Test that only the (category, currency, period) triple is unique."""
        async def run():
            app = await _app()
            first = await app.budgets.create(_budget())
            with pytest.raises(DuplicateError) as error:
                await app.budgets.create(_budget(currency="usd", amount="50"))
            euro = await app.budgets.create(_budget(currency="EUR"))
            weekly = await app.budgets.create(_budget(period_type="weekly"))
            duplicate = await app.budgets.find_duplicate_budget("expense-food", "usd", "monthly")
            total = len(await app.budgets.list_all())
            app.close()
            return first, error.value, euro, weekly, duplicate, total

        first, error, euro, weekly, duplicate, total = asyncio.run(run())
        assert error.existing_id == first.id
        assert euro.currency == "EUR"
        assert weekly.period_type == PeriodType.WEEKLY
        assert duplicate.id == first.id
        assert total == 3

    def test_update_into_duplicate_is_rejected(self):
        """Test the uniqueness check on update."""
        async def run():
            app = await _app()
            await app.budgets.create(_budget())
            euro = await app.budgets.create(_budget(currency="EUR"))
            with pytest.raises(DuplicateError):
                await app.budgets.update(euro.id, BudgetUpdate(currency="USD"))
            unchanged = await app.budgets.get(euro.id)
            app.close()
            return unchanged

        assert asyncio.run(run()).currency == "EUR"

    def test_update_amount(self):
        """Test a partial update that keeps the key fields."""
        async def run():
            app = await _app()
            budget = await app.budgets.create(_budget())
            updated = await app.budgets.update(budget.id, BudgetUpdate(amount="250.50", rollover_enabled=True))
            app.close()
            return updated

        updated = asyncio.run(run())
        assert updated.amount == "250.5"
        assert updated.rollover_enabled is True
        assert updated.currency == "USD"

    def test_update_and_delete_missing(self):
        """Test NotFoundError for unknown budgets."""
        async def run():
            app = await _app()
            with pytest.raises(NotFoundError):
                await app.budgets.update("nope", BudgetUpdate(amount="1"))
            with pytest.raises(NotFoundError):
                await app.budgets.delete("nope")
            app.close()

        asyncio.run(run())

    def test_delete(self):
        """Test deleting a budget."""
        async def run():
            app = await _app()
            budget = await app.budgets.create(_budget())
            await app.budgets.delete(budget.id)
            exists = await app.budgets.exists(budget.id)
            app.close()
            return exists

        assert asyncio.run(run()) is False

    def test_listing_filters(self):
        """Test the list and active-budget queries."""
        async def run():
            app = await _app()
            await app.budgets.create(_budget())
            await app.budgets.create(_budget(
                category_id="expense-transportation",
                currency="EUR",
                period_type="yearly",
                start_date="2024-01-01",
                end_date="2024-12-31",
                is_recurring=False,
            ))
            result = {
                "by_category": await app.budgets.list_by_category("expense-food"),
                "by_currency": await app.budgets.list_by_currency("eur"),
                "by_period": await app.budgets.list_by_period_type(PeriodType.YEARLY),
                "recurring": await app.budgets.get_recurring_budgets(),
                "active": await app.budgets.get_active_budgets(REFERENCE),
                "has_active": await app.budgets.has_active_budget("expense-transportation", REFERENCE),
            }
            app.close()
            return result

        result = asyncio.run(run())
        assert len(result["by_category"]) == 1
        assert result["by_currency"][0].category_id == "expense-transportation"
        assert len(result["by_period"]) == 1
        assert [b.category_id for b in result["recurring"]] == ["expense-food"]
        assert [b.category_id for b in result["active"]] == ["expense-food"]
        assert result["has_active"] is False


class TestBudgetStatus:
    """Tests for spend aggregation and status thresholds."""

    def test_spend_rolls_up_descendants(self):
        """Test that child categories count towards the parent's budget."""
        async def run():
            app = await _app()
            account = await app.accounts.create(AccountCreate(name="Card", balance="1000"))
            await _spend(app, account.id, "30", "expense-food-groceries")
            await _spend(app, account.id, "20", "expense-food-restaurants")
            await _spend(app, account.id, "5", "expense-food")
            with_children = await app.budgets.calculate_spending_for_budget(
                "expense-food", "USD", "2025-03-01", "2025-03-31"
            )
            without_children = await app.budgets.calculate_spending_for_budget(
                "expense-food", "USD", "2025-03-01", "2025-03-31", include_children=False
            )
            app.close()
            return with_children, without_children

        assert asyncio.run(run()) == ("55", "5")

    def test_spend_respects_currency_and_window(self):
        """Test that other currencies and other periods are ignored."""
        async def run():
            app = await _app()
            dollars = await app.accounts.create(AccountCreate(name="Card", balance="1000"))
            euros = await app.accounts.create(AccountCreate(name="Euro card", balance="1000", currency="EUR"))
            budget = await app.budgets.create(_budget())
            await _spend(app, dollars.id, "40")
            await _spend(app, euros.id, "500")
            await _spend(app, dollars.id, "300", on="2025-02-28")
            await app.ledger.create(OperationCreate(
                type="income", amount="999", account_id=dollars.id,
                category_id="income-salary", date="2025-03-05",
            ))
            status = await app.budgets.calculate_budget_status(budget.id, REFERENCE)
            app.close()
            return status

        status = asyncio.run(run())
        assert status.spent == "40"
        assert status.remaining == "60"
        assert status.period_start == "2025-03-01"
        assert status.period_end == "2025-03-31"

    @pytest.mark.parametrize(
        "spent, health, exceeded, percentage",
        [
            ("0", BudgetHealth.SAFE, False, 0.0),
            ("69.99", BudgetHealth.SAFE, False, 69.99),
            ("70", BudgetHealth.WARNING, False, 70.0),
            ("90", BudgetHealth.DANGER, False, 90.0),
            ("100", BudgetHealth.DANGER, False, 100.0),
            ("100.01", BudgetHealth.EXCEEDED, True, 100.01),
        ],
    )
    def test_status_thresholds(self, spent, health, exceeded, percentage):
        """Test the safe/warning/danger/exceeded boundaries."""
        async def run():
            app = await _app()
            account = await app.accounts.create(AccountCreate(name="Card", balance="1000"))
            budget = await app.budgets.create(_budget())
            if spent != "0":
                await _spend(app, account.id, spent)
            status = await app.budgets.calculate_budget_status(budget.id, REFERENCE)
            app.close()
            return status

        status = asyncio.run(run())
        assert status.status == health
        assert status.is_exceeded is exceeded
        assert status.percentage == percentage

    def test_exceeded_remaining_is_negative(self):
        """Test remaining goes below zero once exceeded."""
        async def run():
            app = await _app()
            account = await app.accounts.create(AccountCreate(name="Card", balance="1000"))
            budget = await app.budgets.create(_budget())
            await _spend(app, account.id, "100.01")
            status = await app.budgets.calculate_budget_status(budget.id, REFERENCE)
            app.close()
            return status

        assert asyncio.run(run()).remaining == "-0.01"

    def test_status_of_missing_budget(self):
        """Test NotFoundError for an unknown budget."""
        async def run():
            app = await _app()
            with pytest.raises(NotFoundError):
                await app.budgets.calculate_budget_status("nope", REFERENCE)
            app.close()

        asyncio.run(run())

    def test_all_statuses_skip_failures(self):
        """Test that one failing budget does not hide the others."""
        async def run():
            app = await _app()
            good = await app.budgets.create(_budget())
            bad = await app.budgets.create(_budget(currency="EUR"))
            original = app.budgets.calculate_budget_status

            async def flaky(budget_id, reference=None):
                if budget_id == bad.id:
                    raise RuntimeError("broken budget")
                return await original(budget_id, reference)

            app.budgets.calculate_budget_status = flaky
            statuses = await app.budgets.calculate_all_budget_statuses(REFERENCE)
            app.close()
            return good, statuses

        good, statuses = asyncio.run(run())
        assert list(statuses) == [good.id]
        assert statuses[good.id].status == BudgetHealth.SAFE
