"""Category tree package."""

from pennyledger.categories.tree import DEFAULT_CATEGORIES, CategoryTree

__all__ = ["DEFAULT_CATEGORIES", "CategoryTree"]
