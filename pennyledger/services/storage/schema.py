"""
Database Schema

Amounts and dates are TEXT: amounts are decimal strings, dates are ISO
"YYYY-MM-DD" so that string comparison is date comparison.

Foreign keys:
- operations.account_id / to_account_id -> accounts (cascade)
- operations.category_id -> categories (set null)
- budgets.category_id -> categories (cascade)
- categories.parent_id -> categories (cascade; the category tree refuses
  to delete a category with children before this is ever reached)
"""

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS accounts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    balance TEXT NOT NULL DEFAULT '0',
    currency TEXT NOT NULL DEFAULT 'USD',
    display_order INTEGER,
    hidden INTEGER NOT NULL DEFAULT 0,
    monthly_target TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_accounts_order ON accounts (display_order);
CREATE INDEX IF NOT EXISTS idx_accounts_hidden ON accounts (hidden);

CREATE TABLE IF NOT EXISTS categories (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    type TEXT NOT NULL CHECK (type IN ('folder', 'entry')),
    category_type TEXT NOT NULL CHECK (category_type IN ('expense', 'income')),
    parent_id TEXT REFERENCES categories (id) ON DELETE CASCADE,
    icon TEXT,
    color TEXT,
    is_shadow INTEGER NOT NULL DEFAULT 0,
    exclude_from_forecast INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_categories_parent ON categories (parent_id);
CREATE INDEX IF NOT EXISTS idx_categories_category_type ON categories (category_type);
CREATE INDEX IF NOT EXISTS idx_categories_is_shadow ON categories (is_shadow);

CREATE TABLE IF NOT EXISTS operations (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    type TEXT NOT NULL CHECK (type IN ('expense', 'income', 'transfer')),
    amount TEXT NOT NULL,
    account_id INTEGER NOT NULL REFERENCES accounts (id) ON DELETE CASCADE,
    category_id TEXT REFERENCES categories (id) ON DELETE SET NULL,
    to_account_id INTEGER REFERENCES accounts (id) ON DELETE CASCADE,
    date TEXT NOT NULL,
    created_at TEXT NOT NULL,
    description TEXT,
    exchange_rate TEXT,
    destination_amount TEXT,
    source_currency TEXT,
    destination_currency TEXT
);

CREATE INDEX IF NOT EXISTS idx_operations_date ON operations (date);
CREATE INDEX IF NOT EXISTS idx_operations_account ON operations (account_id);
CREATE INDEX IF NOT EXISTS idx_operations_category ON operations (category_id);
CREATE INDEX IF NOT EXISTS idx_operations_type ON operations (type);

CREATE TABLE IF NOT EXISTS budgets (
    id TEXT PRIMARY KEY,
    category_id TEXT NOT NULL REFERENCES categories (id) ON DELETE CASCADE,
    amount TEXT NOT NULL,
    currency TEXT NOT NULL,
    period_type TEXT NOT NULL CHECK (period_type IN ('weekly', 'monthly', 'yearly')),
    start_date TEXT NOT NULL,
    end_date TEXT,
    is_recurring INTEGER NOT NULL DEFAULT 1,
    rollover_enabled INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_budgets_category ON budgets (category_id);
CREATE INDEX IF NOT EXISTS idx_budgets_period ON budgets (period_type);
CREATE INDEX IF NOT EXISTS idx_budgets_dates ON budgets (start_date, end_date);
CREATE INDEX IF NOT EXISTS idx_budgets_currency ON budgets (currency);

CREATE TABLE IF NOT EXISTS planned_operations (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    type TEXT NOT NULL CHECK (type IN ('expense', 'income', 'transfer')),
    amount TEXT NOT NULL,
    account_id INTEGER NOT NULL REFERENCES accounts (id) ON DELETE CASCADE,
    category_id TEXT REFERENCES categories (id) ON DELETE SET NULL,
    to_account_id INTEGER REFERENCES accounts (id) ON DELETE CASCADE,
    description TEXT,
    is_recurring INTEGER NOT NULL DEFAULT 1,
    last_executed_month TEXT,
    display_order INTEGER,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_planned_operations_order ON planned_operations (display_order);
"""

TABLES = (
    "planned_operations",
    "budgets",
    "operations",
    "categories",
    "accounts",
)
