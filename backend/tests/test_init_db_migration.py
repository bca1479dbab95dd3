"""
Schema creation and upgrades of databases created by earlier releases.

Early databases had no receipts.ocr_raw and no categories.sort_order; the
migration must add both without touching existing rows, and running it twice
must be harmless.
"""
import pytest
import aiosqlite

import db.database as database
from db.database import SCHEMA, migrate


# ── Helpers ──────────────────────────────────────────────────────────────────

OLD_SCHEMA = """
CREATE TABLE households (
    id INTEGER PRIMARY KEY AUTOINCREMENT, name TEXT NOT NULL,
    created_at TEXT DEFAULT (datetime('now'))
);
CREATE TABLE categories (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    household_id INTEGER NOT NULL REFERENCES households(id) ON DELETE CASCADE,
    name TEXT NOT NULL, color TEXT NOT NULL DEFAULT '#94a3b8',
    created_at TEXT DEFAULT (datetime('now'))
);
CREATE TABLE receipts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    household_id INTEGER NOT NULL REFERENCES households(id) ON DELETE CASCADE,
    user_id TEXT NOT NULL, image_path TEXT NOT NULL,
    store_name TEXT, total_amount REAL, purchased_at TEXT,
    ocr_status TEXT NOT NULL DEFAULT 'pending',
    created_at TEXT DEFAULT (datetime('now'))
);
"""


async def columns(db, table):
    async with db.execute(f"PRAGMA table_info({table})") as cur:
        return {row[1] async for row in cur}


async def tables(db):
    async with db.execute("SELECT name FROM sqlite_master WHERE type = 'table'") as cur:
        return {row[0] async for row in cur}


# ── Tests ────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_fresh_schema_needs_no_migration(db):
    await migrate(db)
    assert "ocr_raw" in await columns(db, "receipts")
    assert "sort_order" in await columns(db, "categories")


@pytest.mark.asyncio
async def test_old_database_upgraded():
    async with aiosqlite.connect(":memory:") as conn:
        await conn.executescript(OLD_SCHEMA)
        await conn.execute("INSERT INTO households (name) VALUES ('Home')")
        await conn.execute("INSERT INTO categories (household_id, name) VALUES (1, 'Food')")
        await conn.execute(
            "INSERT INTO receipts (household_id, user_id, image_path, store_name) "
            "VALUES (1, 'u', '1/a.jpg', 'Mart')"
        )
        await conn.commit()

        await conn.executescript(SCHEMA)
        await migrate(conn)
        await conn.commit()

        assert "ocr_raw" in await columns(conn, "receipts")
        assert "sort_order" in await columns(conn, "categories")
        assert "receipt_items" in await tables(conn)

        async with conn.execute("SELECT store_name, ocr_raw FROM receipts") as cur:
            assert tuple(await cur.fetchone()) == ("Mart", None)
        async with conn.execute("SELECT name, sort_order FROM categories") as cur:
            assert tuple(await cur.fetchone()) == ("Food", 100)


@pytest.mark.asyncio
async def test_migrate_twice_is_harmless():
    async with aiosqlite.connect(":memory:") as conn:
        await conn.executescript(OLD_SCHEMA)
        await migrate(conn)
        await migrate(conn)
        assert "ocr_raw" in await columns(conn, "receipts")


@pytest.mark.asyncio
async def test_init_db_creates_file(tmp_path, monkeypatch):
    path = tmp_path / "nested" / "hearthbook.db"
    monkeypatch.setattr(database, "DB_PATH", str(path))

    await database.init_db()
    await database.init_db()

    assert path.is_file()
    async with database.open_db() as conn:
        assert "manual_expenses" in await tables(conn)
