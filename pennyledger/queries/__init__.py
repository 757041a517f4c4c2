"""Aggregation and reporting queries package."""

from pennyledger.queries.aggregates import LedgerQueries

__all__ = ["LedgerQueries"]
