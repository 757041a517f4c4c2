"""Ledger package: operations, balances and accounts."""

from pennyledger.ledger.accounts import AccountStore
from pennyledger.ledger.engine import LedgerEngine, net_deltas, signed_effects

__all__ = ["AccountStore", "LedgerEngine", "net_deltas", "signed_effects"]
