"""
Penny Ledger - Source Package

The data-integrity core of a single-user personal finance tracker:
accounts, categories, operations, budgets and planned operations.

DESIGN PRINCIPLES:
1. Account balances are derived from operations, never typed in
2. Every multi-statement mutation is one storage transaction
3. Money is a decimal string end to end - no floats
4. Fail loudly and specifically, never coerce bad data
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Penny Ledger Team"
