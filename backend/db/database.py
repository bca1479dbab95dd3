import logging
import os
from contextlib import asynccontextmanager

import aiosqlite

logger = logging.getLogger("hearthbook.db")
DB_PATH = os.environ.get("DB_PATH", "/data/hearthbook.db")


@asynccontextmanager
async def open_db(path: str | None = None):
    """Open a connection with row access by name and foreign keys enforced.

    Used directly by background jobs, which outlive the request connection.
    """
    async with aiosqlite.connect(path or DB_PATH) as db:
        db.row_factory = aiosqlite.Row
        await db.execute("PRAGMA foreign_keys = ON")
        yield db


async def get_db() -> aiosqlite.Connection:
    """Dependency: yields an open DB connection."""
    async with open_db() as db:
        yield db


async def init_db():
    """Create all tables if they don't exist, and run any pending migrations."""
    os.makedirs(os.path.dirname(DB_PATH) or ".", exist_ok=True)
    async with aiosqlite.connect(DB_PATH) as db:
        await db.executescript(SCHEMA)
        await migrate(db)
        await db.commit()
    logger.info("Initialized at %s", DB_PATH)


async def migrate(db: aiosqlite.Connection):
    """Bring databases created by earlier releases up to the current schema.

    SQLite doesn't support ALTER TABLE ADD COLUMN IF NOT EXISTS, so we check
    PRAGMA table_info first and only ALTER if the column is missing.
    """
    async with db.execute("PRAGMA table_info(receipts)") as cur:
        cols = {row[1] async for row in cur}
    if "ocr_raw" not in cols:
        await db.execute("ALTER TABLE receipts ADD COLUMN ocr_raw TEXT")
        logger.info("Migration: added receipts.ocr_raw")

    async with db.execute("PRAGMA table_info(categories)") as cur:
        cat_cols = {row[1] async for row in cur}
    if "sort_order" not in cat_cols:
        await db.execute(
            "ALTER TABLE categories ADD COLUMN sort_order INTEGER NOT NULL DEFAULT 100"
        )
        logger.info("Migration: added categories.sort_order")


SCHEMA = """
-- ── Tenant boundary (members / invitations live in the auth service) ──────
CREATE TABLE IF NOT EXISTS households (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    name        TEXT NOT NULL,
    created_at  TEXT DEFAULT (datetime('now'))
);

-- ── Household-scoped categories ───────────────────────────────────────────
CREATE TABLE IF NOT EXISTS categories (
    id           INTEGER PRIMARY KEY AUTOINCREMENT,
    household_id INTEGER NOT NULL REFERENCES households(id) ON DELETE CASCADE,
    name         TEXT NOT NULL,
    color        TEXT NOT NULL DEFAULT '#94a3b8',   -- hex color for UI
    sort_order   INTEGER NOT NULL DEFAULT 100,
    created_at   TEXT DEFAULT (datetime('now'))
);

-- Photographed receipts
CREATE TABLE IF NOT EXISTS receipts (
    id            INTEGER PRIMARY KEY AUTOINCREMENT,
    household_id  INTEGER NOT NULL REFERENCES households(id) ON DELETE CASCADE,
    user_id       TEXT NOT NULL,
    image_path    TEXT NOT NULL,            -- key in the image store
    store_name    TEXT,
    total_amount  REAL,
    purchased_at  TEXT,                     -- ISO date (YYYY-MM-DD)
    ocr_status    TEXT NOT NULL DEFAULT 'pending'
                  CHECK (ocr_status IN ('pending', 'processing', 'done', 'error')),
    ocr_raw       TEXT,                     -- JSON object, may carry _truncated
    created_at    TEXT DEFAULT (datetime('now'))
);

-- Line items, always replaced wholesale
CREATE TABLE IF NOT EXISTS receipt_items (
    id           INTEGER PRIMARY KEY AUTOINCREMENT,
    receipt_id   INTEGER NOT NULL REFERENCES receipts(id) ON DELETE CASCADE,
    name         TEXT NOT NULL,
    quantity     REAL NOT NULL DEFAULT 1,
    unit_price   REAL NOT NULL DEFAULT 0,
    category_id  INTEGER REFERENCES categories(id) ON DELETE SET NULL,
    created_at   TEXT DEFAULT (datetime('now'))
);

-- Expenses entered without a receipt
CREATE TABLE IF NOT EXISTS manual_expenses (
    id           INTEGER PRIMARY KEY AUTOINCREMENT,
    household_id INTEGER NOT NULL REFERENCES households(id) ON DELETE CASCADE,
    user_id      TEXT NOT NULL,
    category_id  INTEGER REFERENCES categories(id) ON DELETE SET NULL,
    amount       REAL NOT NULL,
    description  TEXT NOT NULL DEFAULT '',
    expense_date TEXT NOT NULL,             -- ISO date (YYYY-MM-DD)
    created_at   TEXT DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_receipts_household_date
    ON receipts (household_id, purchased_at);
CREATE INDEX IF NOT EXISTS idx_receipt_items_receipt
    ON receipt_items (receipt_id);
CREATE INDEX IF NOT EXISTS idx_manual_expenses_household_date
    ON manual_expenses (household_id, expense_date);
"""
