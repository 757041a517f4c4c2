"""
Category Tree

Categories form a forest: folders group entries, and entries are what
operations and budgets point to. Budgets roll spend up from every
descendant of their category, so the tree must never contain a cycle.

DESIGN DECISION: Structural rules are enforced here, not by the schema.
- A move under oneself or one's own descendant raises
  CircularReferenceError and writes nothing.
- A delete with subcategories or referencing operations raises
  HasDependentsError. The schema's ON DELETE CASCADE on parent_id is a
  last resort that live data should never reach.
"""

from datetime import datetime
from typing import Optional

import structlog

from pennyledger.errors import (
    CircularReferenceError,
    HasDependentsError,
    NotFoundError,
    ValidationError,
)
from pennyledger.events.notifier import EventNotifier
from pennyledger.models.events import ChangeAction, LedgerEventBuilder
from pennyledger.models.ledger import (
    Category,
    CategoryCreate,
    CategoryKind,
    CategoryType,
    CategoryUpdate,
)
from pennyledger.services.storage.interface import Row, StorageHandle, StorageInterface
from pennyledger.validation.validator import validate_category

logger = structlog.get_logger(__name__)


# (id, name, kind, category_type, parent_id, is_shadow)
DEFAULT_CATEGORIES: tuple[tuple[str, str, str, str, Optional[str], bool], ...] = (
    ("expense-food", "Food", "folder", "expense", None, False),
    ("expense-food-groceries", "Groceries", "entry", "expense", "expense-food", False),
    ("expense-food-restaurants", "Restaurants", "entry", "expense", "expense-food", False),
    ("expense-transportation", "Transportation", "folder", "expense", None, False),
    ("expense-transportation-fuel", "Fuel", "entry", "expense", "expense-transportation", False),
    ("expense-monthly", "Monthly", "folder", "expense", None, False),
    ("expense-monthly-rent", "Rent", "entry", "expense", "expense-monthly", False),
    ("expense-monthly-subscriptions", "Subscriptions", "entry", "expense", "expense-monthly", False),
    ("income-salary", "Salary", "entry", "income", None, False),
    ("income-other", "Other income", "entry", "income", None, False),
    ("shadow-adjustment-expense", "Balance adjustment", "entry", "expense", None, True),
    ("shadow-adjustment-income", "Balance adjustment", "entry", "income", None, True),
)

_ORDER = "ORDER BY created_at ASC, rowid ASC"


class CategoryTree:
    """
    Hierarchical category store.

    Usage:
        tree = CategoryTree(storage, notifier)
        food = await tree.create(CategoryCreate(name="Food", kind="folder", category_type="expense"))
        await tree.move(groceries.id, food.id)
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

    def _row_to_category(self, row: Row) -> Category:
        return Category(
            id=row["id"],
            name=row["name"],
            kind=row["type"],
            category_type=row["category_type"],
            parent_id=row["parent_id"],
            icon=row["icon"],
            color=row["color"],
            is_shadow=bool(row["is_shadow"]),
            exclude_from_forecast=bool(row["exclude_from_forecast"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    async def _emit(self, action: ChangeAction, category_id: str) -> None:
        if self._notifier is not None:
            await self._notifier.emit(LedgerEventBuilder.category_changed(action, category_id))

    # =========================================================================
    # READS
    # =========================================================================

    async def _fetch(self, db: StorageHandle, category_id: str) -> Optional[Category]:
        row = await db.query_first("SELECT * FROM categories WHERE id = ?", (category_id,))
        return self._row_to_category(row) if row else None

    async def _path(self, db: StorageHandle, category_id: str) -> list[Category]:
        path: list[Category] = []
        seen: set[str] = set()
        current_id: Optional[str] = category_id

        while current_id and current_id not in seen:
            seen.add(current_id)
            category = await self._fetch(db, current_id)
            if category is None:
                break
            path.insert(0, category)
            current_id = category.parent_id

        return path

    async def get(self, category_id: str) -> Optional[Category]:
        return await self._fetch(self._storage, category_id)

    async def exists(self, category_id: str) -> bool:
        row = await self._storage.query_first(
            "SELECT 1 AS found FROM categories WHERE id = ? LIMIT 1", (category_id,)
        )
        return row is not None

    async def list_all(self) -> list[Category]:
        rows = await self._storage.query_all(f"SELECT * FROM categories {_ORDER}")
        return [self._row_to_category(r) for r in rows]

    async def list_by_category_type(
        self,
        category_type: CategoryType,
        include_shadow: bool = False,
    ) -> list[Category]:
        """List expense or income categories. Shadow categories are hidden by default."""
        sql = "SELECT * FROM categories WHERE category_type = ?"
        if not include_shadow:
            sql += " AND is_shadow = 0"
        rows = await self._storage.query_all(f"{sql} {_ORDER}", (CategoryType(category_type).value,))
        return [self._row_to_category(r) for r in rows]

    async def get_children(self, parent_id: Optional[str]) -> list[Category]:
        """Direct children of a category, or the roots when parent_id is None."""
        if parent_id is None:
            rows = await self._storage.query_all(
                f"SELECT * FROM categories WHERE parent_id IS NULL {_ORDER}"
            )
        else:
            rows = await self._storage.query_all(
                f"SELECT * FROM categories WHERE parent_id = ? {_ORDER}", (parent_id,)
            )
        return [self._row_to_category(r) for r in rows]

    async def get_descendants(self, category_id: str) -> list[Category]:
        """
        Every transitive child of a category, breadth-first.

        The category itself is not included.
        """
        descendants: list[Category] = []
        seen = {category_id}
        queue = [category_id]

        while queue:
            current_id = queue.pop(0)
            for child in await self.get_children(current_id):
                if child.id in seen:
                    continue
                seen.add(child.id)
                descendants.append(child)
                queue.append(child.id)

        return descendants

    async def get_path(self, category_id: str) -> list[Category]:
        """Categories from the root down to (and including) category_id."""
        return await self._path(self._storage, category_id)

    async def has_children(self, category_id: str) -> bool:
        row = await self._storage.query_first(
            "SELECT 1 AS found FROM categories WHERE parent_id = ? LIMIT 1", (category_id,)
        )
        return row is not None

    async def count_usage(self, category_id: str) -> int:
        """Number of operations tagged with this category."""
        row = await self._storage.query_first(
            "SELECT COUNT(*) AS count FROM operations WHERE category_id = ?", (category_id,)
        )
        return row["count"] if row else 0

    async def get_shadow_category(self, category_type: CategoryType) -> Optional[Category]:
        """The system category used to book balance adjustments."""
        row = await self._storage.query_first(
            f"SELECT * FROM categories WHERE is_shadow = 1 AND category_type = ? {_ORDER} LIMIT 1",
            (CategoryType(category_type).value,),
        )
        return self._row_to_category(row) if row else None

    # =========================================================================
    # WRITES
    # =========================================================================

    async def create(self, data: CategoryCreate) -> Category:
        """
        Create a category.

        Raises:
            ValidationError: category_name_required / invalid_category_type
            NotFoundError: If parent_id does not exist
        """
        key = validate_category(data)
        if key:
            raise ValidationError(key)

        now = datetime.now().isoformat()

        async def insert(db: StorageHandle) -> None:
            if data.parent_id is not None and await self._fetch(db, data.parent_id) is None:
                raise NotFoundError("category", data.parent_id)
            await db.execute_query(
                """
                INSERT INTO categories (
                    id, name, type, category_type, parent_id, icon, color,
                    is_shadow, exclude_from_forecast, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    data.id,
                    data.name,
                    data.kind.value,
                    data.category_type,
                    data.parent_id,
                    data.icon,
                    data.color,
                    int(data.is_shadow),
                    int(data.exclude_from_forecast),
                    now,
                    now,
                ),
            )

        await self._storage.execute_transaction(insert)
        logger.info("category_created", category_id=data.id, parent_id=data.parent_id)
        await self._emit(ChangeAction.CREATED, data.id)

        return await self.get(data.id)

    async def update(self, category_id: str, updates: CategoryUpdate) -> Category:
        """
        Apply a partial update.

        A parent change goes through move(), so the cycle check applies.
        """
        current = await self.get(category_id)
        if current is None:
            raise NotFoundError("category", category_id)

        changes = updates.model_dump(exclude_unset=True)
        new_parent_id = changes.pop("parent_id", current.parent_id)

        merged = current.model_dump()
        merged.update(changes)
        key = validate_category(merged)
        if key:
            raise ValidationError(key)

        if new_parent_id != current.parent_id:
            await self.move(category_id, new_parent_id)

        if not changes:
            return await self.get(category_id)

        columns = {"type" if name == "kind" else name: value for name, value in changes.items()}
        if "type" in columns:
            columns["type"] = CategoryKind(columns["type"]).value
        if "exclude_from_forecast" in columns:
            columns["exclude_from_forecast"] = int(columns["exclude_from_forecast"])
        columns["updated_at"] = datetime.now().isoformat()

        assignments = ", ".join(f"{column} = ?" for column in columns)
        await self._storage.execute_query(
            f"UPDATE categories SET {assignments} WHERE id = ?",
            (*columns.values(), category_id),
        )

        logger.info("category_updated", category_id=category_id, fields=sorted(changes))
        await self._emit(ChangeAction.UPDATED, category_id)

        return await self.get(category_id)

    async def move(self, category_id: str, new_parent_id: Optional[str]) -> Category:
        """
        Re-parent a category (None makes it a root).

        Raises:
            CircularReferenceError: If new_parent_id is the category itself
                or one of its descendants
            NotFoundError: If either category does not exist
        """
        if new_parent_id == category_id:
            raise CircularReferenceError(category_id, new_parent_id)

        async def reparent(db: StorageHandle) -> None:
            if await self._fetch(db, category_id) is None:
                raise NotFoundError("category", category_id)

            if new_parent_id is not None:
                if await self._fetch(db, new_parent_id) is None:
                    raise NotFoundError("category", new_parent_id)
                path = await self._path(db, new_parent_id)
                if any(c.id == category_id for c in path):
                    raise CircularReferenceError(category_id, new_parent_id)

            await db.execute_query(
                "UPDATE categories SET parent_id = ?, updated_at = ? WHERE id = ?",
                (new_parent_id, datetime.now().isoformat(), category_id),
            )

        await self._storage.execute_transaction(reparent)
        logger.info("category_moved", category_id=category_id, new_parent_id=new_parent_id)
        await self._emit(ChangeAction.UPDATED, category_id)

        return await self.get(category_id)

    async def delete(self, category_id: str) -> None:
        """
        Delete a leaf category nobody uses.

        Raises:
            NotFoundError: If the category does not exist
            HasDependentsError: If it has subcategories or operations
        """
        async def remove(db: StorageHandle) -> None:
            if await self._fetch(db, category_id) is None:
                raise NotFoundError("category", category_id)

            children = await db.query_first(
                "SELECT COUNT(*) AS count FROM categories WHERE parent_id = ?", (category_id,)
            )
            if children["count"] > 0:
                raise HasDependentsError("category", category_id, "subcategories", children["count"])

            usage = await db.query_first(
                "SELECT COUNT(*) AS count FROM operations WHERE category_id = ?", (category_id,)
            )
            if usage["count"] > 0:
                raise HasDependentsError("category", category_id, "operations", usage["count"])

            await db.execute_query("DELETE FROM categories WHERE id = ?", (category_id,))

        await self._storage.execute_transaction(remove)
        logger.info("category_deleted", category_id=category_id)
        await self._emit(ChangeAction.DELETED, category_id)

    async def seed_defaults(self) -> int:
        """
        Insert the default categories, including the two shadow categories.

        Idempotent: existing ids are left alone.

        Returns:
            Number of categories inserted
        """
        now = datetime.now().isoformat()

        async def seed(db: StorageHandle) -> int:
            inserted = 0
            for category_id, name, kind, category_type, parent_id, is_shadow in DEFAULT_CATEGORIES:
                result = await db.execute_query(
                    """
                    INSERT OR IGNORE INTO categories (
                        id, name, type, category_type, parent_id,
                        is_shadow, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (category_id, name, kind, category_type, parent_id, int(is_shadow), now, now),
                )
                inserted += result.changes
            return inserted

        inserted = await self._storage.execute_transaction(seed)
        if inserted:
            logger.info("default_categories_seeded", inserted=inserted)
        return inserted
