"""
Tests for accounts: CRUD, deletion with transfer, balance adjustment
"""

import asyncio
from datetime import date

import pytest

from pennyledger.config import AppSettings, DatabaseSettings, Settings
from pennyledger.errors import HasDependentsError, NotFoundError, ValidationError
from pennyledger.ledger import AccountStore
from pennyledger.models.events import ChangeAction, LedgerEventType
from pennyledger.models.ledger import (
    AccountCreate,
    AccountUpdate,
    OperationCreate,
    OperationType,
    OperationUpdate,
)
from pennyledger.orchestrator import create_app_components
from pennyledger.services.storage import SQLiteStorage


async def _app():
    return await create_app_components(storage=SQLiteStorage(DatabaseSettings(path=":memory:")))


def _expense(account_id, amount):
    return OperationCreate(
        type="expense",
        amount=amount,
        account_id=account_id,
        category_id="expense-food-groceries",
        date="2025-03-14",
    )


class TestAccountCrud:
    """Tests for creating, listing and updating accounts."""

    def test_create_defaults(self):
        """Test opening balance, default currency and display order."""
        async def run():
            app = await _app()
            first = await app.accounts.create(AccountCreate(name="Wallet", balance="10.50"))
            second = await app.accounts.create(AccountCreate(name="Card", currency="eur"))
            app.close()
            return first, second

        first, second = asyncio.run(run())
        assert first.balance == "10.5"
        assert first.currency == "USD"
        assert first.display_order == 0
        assert second.currency == "EUR"
        assert second.display_order == 1

    def test_default_currency_from_settings(self):
        """Test that AppSettings decides the currency of new accounts."""
        async def run():
            storage = SQLiteStorage(DatabaseSettings(path=":memory:"))
            app = await create_app_components(storage=storage)
            accounts = AccountStore(storage, app.ledger, settings=AppSettings(default_currency="gbp"))
            account = await accounts.create(AccountCreate(name="Savings"))
            app.close()
            return account

        assert asyncio.run(run()).currency == "GBP"

    def test_list_hides_hidden_accounts_on_request(self):
        """Test the include_hidden switch."""
        async def run():
            app = await _app()
            await app.accounts.create(AccountCreate(name="Visible"))
            await app.accounts.create(AccountCreate(name="Archive", hidden=True))
            everything = await app.accounts.list_all()
            visible = await app.accounts.list_all(include_hidden=False)
            app.close()
            return everything, visible

        everything, visible = asyncio.run(run())
        assert [a.name for a in everything] == ["Visible", "Archive"]
        assert [a.name for a in visible] == ["Visible"]

    def test_update(self):
        """Test a partial update."""
        async def run():
            app = await _app()
            account = await app.accounts.create(AccountCreate(name="Wallet", balance="5"))
            updated = await app.accounts.update(account.id, AccountUpdate(name="Cash", hidden=True))
            app.close()
            return updated

        updated = asyncio.run(run())
        assert updated.name == "Cash"
        assert updated.hidden is True
        assert updated.balance == "5"

    def test_update_missing_account(self):
        """Test updating an account that does not exist."""
        async def run():
            app = await _app()
            with pytest.raises(NotFoundError):
                await app.accounts.update(99, AccountUpdate(name="Ghost"))
            app.close()

        asyncio.run(run())

    def test_reorder(self):
        """Test setting the display order from a list."""
        async def run():
            app = await _app()
            a = await app.accounts.create(AccountCreate(name="A"))
            b = await app.accounts.create(AccountCreate(name="B"))
            c = await app.accounts.create(AccountCreate(name="C"))
            await app.accounts.reorder([c.id, a.id, b.id])
            names = [x.name for x in await app.accounts.list_all()]
            app.close()
            return names

        assert asyncio.run(run()) == ["C", "A", "B"]


class TestAccountDelete:
    """Tests for deleting accounts."""

    def test_delete_unused_account(self):
        """Test that an account without operations is simply removed."""
        events = []

        async def run():
            app = await _app()
            account = await app.accounts.create(AccountCreate(name="Old"))
            app.notifier.subscribe(LedgerEventType.ACCOUNT_CHANGED, events.append)
            reassigned = await app.accounts.delete(account.id)
            exists = await app.accounts.exists(account.id)
            app.close()
            return reassigned, exists

        reassigned, exists = asyncio.run(run())
        assert reassigned == 0
        assert not exists
        assert [e.action for e in events] == [ChangeAction.DELETED]

    def test_delete_with_operations_needs_target(self):
        """Test that operations block deletion without a target."""
        async def run():
            app = await _app()
            account = await app.accounts.create(AccountCreate(name="Wallet", balance="100"))
            await app.ledger.create(_expense(account.id, "10"))
            with pytest.raises(HasDependentsError) as missing_target:
                await app.accounts.delete(account.id)
            with pytest.raises(ValidationError) as same_target:
                await app.accounts.delete(account.id, transfer_to=account.id)
            with pytest.raises(NotFoundError):
                await app.accounts.delete(account.id, transfer_to=999)
            exists = await app.accounts.exists(account.id)
            app.close()
            return missing_target.value, same_target.value, exists

        missing_target, same_target, exists = asyncio.run(run())
        assert missing_target.dependent == "operations"
        assert missing_target.count == 1
        assert same_target.key == "accounts_must_be_different"
        assert exists

    def test_delete_moves_operations_and_their_effect(self):
        """Test that the target inherits the operations and stays consistent."""
        async def run():
            app = await _app()
            old = await app.accounts.create(AccountCreate(name="Old", balance="100"))
            new = await app.accounts.create(AccountCreate(name="New", balance="50"))
            await app.ledger.create(_expense(old.id, "10"))
            await app.ledger.create(OperationCreate(
                type="transfer", amount="20", account_id=old.id, to_account_id=new.id, date="2025-03-15"
            ))
            reassigned = await app.accounts.delete(old.id, transfer_to=new.id)
            target = await app.accounts.get(new.id)
            replayed = await app.queries.replay_balance(new.id, "50")
            count = await app.accounts.operation_count(new.id)
            app.close()
            return reassigned, target, replayed, count

        reassigned, target, replayed, count = asyncio.run(run())
        assert reassigned == 1
        assert target.balance == "40"
        assert replayed == target.balance
        assert count == 1

    def test_delete_drops_transfers_between_the_two_accounts(self):
        """Test that no self-transfer is left behind and the rest stays editable."""
        events = []

        async def run():
            app = await _app()
            old = await app.accounts.create(AccountCreate(name="Old", balance="100"))
            new = await app.accounts.create(AccountCreate(name="New", balance="50"))
            other = await app.accounts.create(AccountCreate(name="Other", balance="200"))
            await app.ledger.create(OperationCreate(
                type="transfer", amount="30", account_id=old.id, to_account_id=new.id, date="2025-03-10"
            ))
            await app.ledger.create(OperationCreate(
                type="transfer", amount="5", account_id=new.id, to_account_id=old.id, date="2025-03-11"
            ))
            incoming = await app.ledger.create(OperationCreate(
                type="transfer", amount="20", account_id=other.id, to_account_id=old.id, date="2025-03-12"
            ))
            app.notifier.subscribe(LedgerEventType.OPERATION_CHANGED, events.append)

            reassigned = await app.accounts.delete(old.id, transfer_to=new.id)
            operations = await app.ledger.list_all()
            edited = await app.ledger.update(incoming.operation.id, OperationUpdate(description="note"))
            target = await app.accounts.get(new.id)
            replayed = await app.queries.replay_balance(new.id, "50")
            app.close()
            return new, other, reassigned, operations, edited, target, replayed

        new, other, reassigned, operations, edited, target, replayed = asyncio.run(run())
        assert reassigned == 1
        assert [(o.account_id, o.to_account_id) for o in operations] == [(other.id, new.id)]
        assert edited.operation.description == "note"
        assert target.balance == "70"
        assert replayed == target.balance
        assert [e.action for e in events[:2]] == [ChangeAction.DELETED, ChangeAction.DELETED]

    def test_delete_missing_account(self):
        """Test deleting an account that does not exist."""
        async def run():
            app = await _app()
            with pytest.raises(NotFoundError):
                await app.accounts.delete(5)
            app.close()

        asyncio.run(run())


class TestAdjustBalance:
    """Tests for balance reconciliation through shadow operations."""

    def test_adjust_down_books_expense(self):
        """Test that a lower counted balance books a shadow expense."""
        async def run():
            app = await _app()
            account = await app.accounts.create(AccountCreate(name="Wallet", balance="100"))
            result = await app.accounts.adjust_balance(account.id, "92.40", "counted cash")
            balance = (await app.accounts.get(account.id)).balance
            app.close()
            return result, balance

        result, balance = asyncio.run(run())
        assert balance == "92.4"
        assert result.operation.type == OperationType.EXPENSE
        assert result.operation.amount == "7.6"
        assert result.operation.category_id == "shadow-adjustment-expense"
        assert result.operation.date == date.today().isoformat()
        assert result.operation.description == "counted cash\nBalance adjusted from 100 to 92.4"

    def test_same_day_adjustments_fold_into_one_operation(self):
        """Test that a second adjustment updates the day's operation."""
        async def run():
            app = await _app()
            account = await app.accounts.create(AccountCreate(name="Wallet", balance="100"))
            first = await app.accounts.adjust_balance(account.id, "92.40")
            second = await app.accounts.adjust_balance(account.id, "110")
            operations = await app.ledger.list_by_account(account.id)
            balance = (await app.accounts.get(account.id)).balance
            app.close()
            return first, second, operations, balance

        first, second, operations, balance = asyncio.run(run())
        assert balance == "110"
        assert len(operations) == 1
        assert second.operation.id == first.operation.id
        assert second.operation.type == OperationType.INCOME
        assert second.operation.amount == "10"
        assert second.operation.category_id == "shadow-adjustment-income"
        assert second.operation.description == "Balance adjusted from 100 to 110"

    def test_adjustments_cancelling_out_remove_the_operation(self):
        """Test returning to the original balance on the same day."""
        async def run():
            app = await _app()
            account = await app.accounts.create(AccountCreate(name="Wallet", balance="100"))
            await app.accounts.adjust_balance(account.id, "80")
            result = await app.accounts.adjust_balance(account.id, "100")
            operations = await app.ledger.list_by_account(account.id)
            balance = (await app.accounts.get(account.id)).balance
            app.close()
            return result, operations, balance

        result, operations, balance = asyncio.run(run())
        assert result is not None
        assert operations == []
        assert balance == "100"

    def test_no_change_returns_none(self):
        """Test adjusting to the current balance."""
        async def run():
            app = await _app()
            account = await app.accounts.create(AccountCreate(name="Wallet", balance="100"))
            result = await app.accounts.adjust_balance(account.id, "100.00")
            app.close()
            return result

        assert asyncio.run(run()) is None

    def test_invalid_input(self):
        """Test a non-numeric balance and a missing account."""
        async def run():
            app = await _app()
            with pytest.raises(ValidationError) as error:
                await app.accounts.adjust_balance(1, "lots")
            with pytest.raises(NotFoundError):
                await app.accounts.adjust_balance(1, "10")
            app.close()
            return error.value.key

        assert asyncio.run(run()) == "balance_must_be_number"

    def test_adjustment_needs_seeded_shadow_category(self):
        """Test that an unseeded database reports the missing shadow category."""
        async def run():
            storage = SQLiteStorage(DatabaseSettings(path=":memory:"))
            app = await create_app_components(Settings(), storage, seed_categories=False)
            account = await app.accounts.create(AccountCreate(name="Wallet", balance="100"))
            with pytest.raises(NotFoundError) as error:
                await app.accounts.adjust_balance(account.id, "50")
            balance = (await app.accounts.get(account.id)).balance
            app.close()
            return error.value.entity, balance

        assert asyncio.run(run()) == ("category", "100")
