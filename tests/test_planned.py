"""
Tests for planned operations and their monthly execution
"""

import asyncio
from datetime import date

import pytest

from pennyledger.config import DatabaseSettings
from pennyledger.errors import NotFoundError, ValidationError
from pennyledger.models.events import LedgerEventType
from pennyledger.models.ledger import (
    AccountCreate,
    ExecutionOutcome,
    OperationType,
    PlannedOperationCreate,
    PlannedOperationUpdate,
)
from pennyledger.orchestrator import create_app_components
from pennyledger.services.storage import SQLiteStorage

MARCH = date(2025, 3, 15)


async def _app():
    return await create_app_components(storage=SQLiteStorage(DatabaseSettings(path=":memory:")))


async def _rent(app, **overrides):
    account = await app.accounts.create(AccountCreate(name="Checking", balance="2000"))
    data = dict(
        name="  Rent ",
        type="expense",
        amount="1200.00",
        account_id=account.id,
        category_id="expense-monthly-rent",
    )
    data.update(overrides)
    template = await app.planned.create(PlannedOperationCreate(**data))
    return account, template


class TestPlannedCrud:
    """Tests for template create, list, update and delete."""

    def test_create_normalises(self):
        """Test name trimming, canonical amount and fresh execution state."""
        async def run():
            app = await _app()
            _, template = await _rent(app)
            app.close()
            return template

        template = asyncio.run(run())
        assert template.name == "Rent"
        assert template.amount == "1200"
        assert template.is_recurring is True
        assert template.last_executed_month is None

    def test_create_validates(self):
        """Test validation keys for templates."""
        async def run():
            app = await _app()
            account = await app.accounts.create(AccountCreate(name="Checking"))
            with pytest.raises(ValidationError) as no_name:
                await app.planned.create(PlannedOperationCreate(
                    name=" ", type="expense", amount="5", account_id=account.id,
                    category_id="expense-monthly-rent",
                ))
            with pytest.raises(ValidationError) as same_accounts:
                await app.planned.create(PlannedOperationCreate(
                    name="Savings", type="transfer", amount="5",
                    account_id=account.id, to_account_id=account.id,
                ))
            templates = await app.planned.list_all()
            app.close()
            return no_name.value.key, same_accounts.value.key, templates

        assert asyncio.run(run()) == ("planned_name_required", "accounts_must_be_different", [])

    def test_list_recurring_and_one_time(self):
        """Test ordering and the recurring split."""
        async def run():
            app = await _app()
            account, rent = await _rent(app, display_order=1)
            gym = await app.planned.create(PlannedOperationCreate(
                name="Gym", type="expense", amount="30", account_id=account.id,
                category_id="expense-monthly-subscriptions", display_order=0,
            ))
            gift = await app.planned.create(PlannedOperationCreate(
                name="Gift", type="expense", amount="80", account_id=account.id,
                category_id="expense-food-restaurants", is_recurring=False, display_order=2,
            ))
            result = (
                [t.name for t in await app.planned.list_all()],
                [t.name for t in await app.planned.list_recurring()],
                [t.name for t in await app.planned.list_one_time()],
            )
            app.close()
            return result

        assert asyncio.run(run()) == (
            ["Gym", "Rent", "Gift"],
            ["Gym", "Rent"],
            ["Gift"],
        )

    def test_update(self):
        """Test a partial update and its validation."""
        async def run():
            app = await _app()
            _, template = await _rent(app)
            updated = await app.planned.update(template.id, PlannedOperationUpdate(amount="1250.50"))
            with pytest.raises(ValidationError) as error:
                await app.planned.update(template.id, PlannedOperationUpdate(amount="0"))
            with pytest.raises(NotFoundError):
                await app.planned.update("nope", PlannedOperationUpdate(name="x"))
            app.close()
            return updated, error.value.key

        updated, key = asyncio.run(run())
        assert updated.amount == "1250.5"
        assert updated.name == "Rent"
        assert key == "valid_amount_required"

    def test_delete(self):
        """Test deleting a template."""
        async def run():
            app = await _app()
            _, template = await _rent(app)
            await app.planned.delete(template.id)
            gone = await app.planned.get(template.id)
            with pytest.raises(NotFoundError):
                await app.planned.delete(template.id)
            app.close()
            return gone

        assert asyncio.run(run()) is None


class TestExecutionState:
    """Tests for month bookkeeping."""

    def test_mark_executed(self):
        """Test recording and checking the executed month."""
        async def run():
            app = await _app()
            _, template = await _rent(app)
            await app.planned.mark_executed(template.id, "2025-03")
            template = await app.planned.get(template.id)
            with pytest.raises(NotFoundError):
                await app.planned.mark_executed("nope", "2025-03")
            app.close()
            return app.planned, template

        planned, template = asyncio.run(run())
        assert planned.is_executed_this_month(template, MARCH)
        assert not planned.is_executed_this_month(template, date(2025, 4, 1))
        assert planned.current_month(MARCH) == "2025-03"


class TestExecute:
    """Tests for booking templates into the ledger."""

    def test_execute_books_operation(self):
        """Test the operation built from a recurring template."""
        async def run():
            app = await _app()
            account, template = await _rent(app)
            result = await app.planned.execute(template.id, MARCH)
            stored = await app.planned.get(template.id)
            balance = (await app.accounts.get(account.id)).balance
            app.close()
            return result, stored, balance

        result, stored, balance = asyncio.run(run())
        assert result.outcome == ExecutionOutcome.EXECUTED
        assert result.executed
        assert result.month == "2025-03"
        assert result.template_deleted is False
        assert result.operation.type == OperationType.EXPENSE
        assert result.operation.amount == "1200"
        assert result.operation.date == "2025-03-15"
        assert result.operation.description == "Rent"
        assert result.operation.category_id == "expense-monthly-rent"
        assert stored.last_executed_month == "2025-03"
        assert balance == "800"

    def test_execute_twice_in_a_month_is_idempotent(self):
        """Test that the second call in the same month books nothing."""
        async def run():
            app = await _app()
            account, template = await _rent(app)
            first = await app.planned.execute(template.id, MARCH)
            second = await app.planned.execute(template.id, date(2025, 3, 31))
            operations = await app.ledger.list_by_account(account.id)
            balance = (await app.accounts.get(account.id)).balance
            app.close()
            return first, second, operations, balance

        first, second, operations, balance = asyncio.run(run())
        assert first.executed
        assert second.outcome == ExecutionOutcome.ALREADY_EXECUTED
        assert second.operation is None
        assert len(operations) == 1
        assert balance == "800"

    def test_concurrent_execution_books_once(self):
        """Test that racing calls in the same month produce one operation."""
        async def run():
            app = await _app()
            account, template = await _rent(app)
            results = await asyncio.gather(
                app.planned.execute(template.id, MARCH),
                app.planned.execute(template.id, MARCH),
                app.planned.execute(template.id, MARCH),
            )
            operations = await app.ledger.list_by_account(account.id)
            app.close()
            return results, operations

        results, operations = asyncio.run(run())
        assert sum(r.executed for r in results) == 1
        assert len(operations) == 1

    def test_recurring_runs_again_next_month(self):
        """Test that a new month makes the template eligible again."""
        async def run():
            app = await _app()
            account, template = await _rent(app)
            await app.planned.execute(template.id, MARCH)
            april = await app.planned.execute(template.id, date(2025, 4, 2))
            operations = await app.ledger.list_by_account(account.id)
            stored = await app.planned.get(template.id)
            app.close()
            return april, operations, stored

        april, operations, stored = asyncio.run(run())
        assert april.executed
        assert april.operation.date == "2025-04-02"
        assert len(operations) == 2
        assert stored.last_executed_month == "2025-04"

    def test_one_time_template_is_consumed(self):
        """Test that a one-time template is deleted after it runs."""
        async def run():
            app = await _app()
            account, template = await _rent(app, is_recurring=False)
            result = await app.planned.execute(template.id, MARCH)
            stored = await app.planned.get(template.id)
            app.close()
            return result, stored

        result, stored = asyncio.run(run())
        assert result.executed
        assert result.template_deleted is True
        assert stored is None

    def test_transfer_template(self):
        """Test executing a transfer between two accounts."""
        async def run():
            app = await _app()
            savings = await app.accounts.create(AccountCreate(name="Savings", balance="0"))
            checking, template = await _rent(
                app,
                name="Savings",
                type="transfer",
                amount="300",
                category_id=None,
                to_account_id=savings.id,
            )
            await app.planned.execute(template.id, MARCH)
            balances = (
                (await app.accounts.get(checking.id)).balance,
                (await app.accounts.get(savings.id)).balance,
            )
            app.close()
            return balances

        assert asyncio.run(run()) == ("1700", "300")

    def test_failed_booking_keeps_template_eligible(self):
        """Test that the month claim rolls back with a failed ledger write."""
        async def run():
            app = await _app()
            account, template = await _rent(app)

            async def broken(db, data):
                raise RuntimeError("disk full")

            app.ledger.create_in = broken
            with pytest.raises(RuntimeError):
                await app.planned.execute(template.id, MARCH)
            stored = await app.planned.get(template.id)
            operations = await app.ledger.list_all()
            app.close()
            return stored, operations

        stored, operations = asyncio.run(run())
        assert stored.last_executed_month is None
        assert operations == []

    def test_execute_missing_template(self):
        """Test NotFoundError for an unknown template."""
        async def run():
            app = await _app()
            with pytest.raises(NotFoundError):
                await app.planned.execute("nope", MARCH)
            app.close()

        asyncio.run(run())

    def test_execute_emits_events(self):
        """Test OPERATION_CHANGED and PLANNED_OPERATION_EXECUTED after the commit."""
        events = []

        async def run():
            app = await _app()
            account, template = await _rent(app, is_recurring=False)
            app.notifier.subscribe(LedgerEventType.OPERATION_CHANGED, events.append)
            app.notifier.subscribe(LedgerEventType.PLANNED_OPERATION_EXECUTED, events.append)
            result = await app.planned.execute(template.id, MARCH)
            app.close()
            return template, result

        template, result = asyncio.run(run())
        assert [e.event_type for e in events] == [
            LedgerEventType.OPERATION_CHANGED,
            LedgerEventType.PLANNED_OPERATION_EXECUTED,
        ]
        assert events[1].entity_id == template.id
        assert events[1].details == {
            "month": "2025-03",
            "operation_id": result.operation.id,
            "template_deleted": True,
        }
