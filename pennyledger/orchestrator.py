"""
Composition Root for Penny Ledger

This module wires storage, the event notifier and the engines together.

DESIGN DECISION: Nothing below is a global. Every engine receives its
collaborators through its constructor, and this is the only place that
decides which concrete ones it gets. Tests either call
create_app_components() with an in-memory database or build the engines
by hand.

Dependency order (leaf first):
    storage, notifier
    -> categories, ledger, queries
    -> accounts (ledger), budgets (categories + queries),
       planned (ledger)
"""

from typing import Optional

import structlog

from pennyledger.budgets import BudgetEngine
from pennyledger.categories import CategoryTree
from pennyledger.config import Settings, get_settings
from pennyledger.events import EventNotifier, configure_logging
from pennyledger.ledger import AccountStore, LedgerEngine
from pennyledger.models.events import LedgerEventBuilder
from pennyledger.planned import PlannedOperationEngine
from pennyledger.queries import LedgerQueries
from pennyledger.services.storage import SQLiteStorage, StorageInterface

logger = structlog.get_logger(__name__)


class LedgerApp:
    """
    All engines of one app instance, sharing one storage and one notifier.

    Usage:
        app = await create_app_components()
        account = await app.accounts.create(AccountCreate(name="Wallet"))
        ...
        app.close()
    """

    def __init__(
        self,
        storage: StorageInterface,
        notifier: EventNotifier,
        settings: Settings,
    ):
        self.storage = storage
        self.notifier = notifier
        self.settings = settings

        self.categories = CategoryTree(storage, notifier)
        self.ledger = LedgerEngine(storage, notifier)
        self.queries = LedgerQueries(storage)
        self.accounts = AccountStore(storage, self.ledger, notifier, settings.app)
        self.budgets = BudgetEngine(
            storage,
            self.categories,
            self.queries,
            notifier,
            settings.budgets,
        )
        self.planned = PlannedOperationEngine(storage, self.ledger, notifier)

    async def seed(self) -> int:
        """Insert the default categories that are missing."""
        return await self.categories.seed_defaults()

    async def reset(self) -> None:
        """
        Wipe all data and start from the default categories.

        Listeners get RELOAD_ALL since every derived view is stale.
        """
        if not isinstance(self.storage, SQLiteStorage):
            raise NotImplementedError("reset is only supported on SQLite storage")

        await self.storage.reset()
        await self.seed()
        logger.warning("app_reset")
        await self.notifier.emit(LedgerEventBuilder.reload_all("reset"))

    def close(self) -> None:
        self.storage.close()


async def create_app_components(
    settings: Optional[Settings] = None,
    storage: Optional[StorageInterface] = None,
    notifier: Optional[EventNotifier] = None,
    seed_categories: bool = True,
) -> LedgerApp:
    """
    Factory function to create all application components.

    Args:
        settings: Settings to use; defaults to get_settings()
        storage: Storage backend; defaults to SQLite at the configured path
        notifier: Event notifier; a fresh one when omitted
        seed_categories: Insert the default categories (idempotent)

    Returns:
        The wired LedgerApp
    """
    settings = settings or get_settings()
    configure_logging(settings.app.log_level)
    storage = storage or SQLiteStorage(settings.database)
    notifier = notifier or EventNotifier()

    app = LedgerApp(storage, notifier, settings)

    if seed_categories:
        await app.seed()

    logger.info("app_components_created", storage=type(storage).__name__)
    return app
