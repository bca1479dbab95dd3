"""
Category Service

Categories are household-scoped and fully user-editable.  A new household is
seeded with DEFAULT_CATEGORIES; after that the household owns the list.

Deleting a category never deletes spending: receipt items and manual
expenses that pointed at it fall back to "uncategorized".
"""
import logging

import aiosqlite

logger = logging.getLogger("hearthbook.categories")

# (name, color) in display order; sort_order is the 1-based position.
DEFAULT_CATEGORIES: list[tuple[str, str]] = [
    ("Food",            "#ef4444"),
    ("Dining Out",      "#f97316"),
    ("Daily Goods",     "#f59e0b"),
    ("Transport",       "#eab308"),
    ("Utilities",       "#84cc16"),
    ("Rent",            "#22c55e"),
    ("Communication",   "#10b981"),
    ("Medical",         "#14b8a6"),
    ("Clothing",        "#06b6d4"),
    ("Education",       "#0ea5e9"),
    ("Entertainment",   "#3b82f6"),
    ("Hobbies",         "#6366f1"),
    ("Social",          "#8b5cf6"),
    ("Insurance",       "#d946ef"),
    ("Other",           "#94a3b8"),
]

UNCATEGORIZED_KEY = "uncategorized"
UNCATEGORIZED_LABEL = "Uncategorized"
UNCATEGORIZED_COLOR = "#cbd5e1"
UNRESOLVED_LABEL = "Other"
UNRESOLVED_COLOR = "#94a3b8"


async def seed_default_categories(db: aiosqlite.Connection, household_id: int):
    await db.executemany(
        "INSERT INTO categories (household_id, name, color, sort_order) VALUES (?, ?, ?, ?)",
        [(household_id, name, color, i + 1) for i, (name, color) in enumerate(DEFAULT_CATEGORIES)],
    )


async def get_categories(db: aiosqlite.Connection, household_id: int) -> list[dict]:
    """Return the household's categories ordered by sort_order."""
    async with db.execute(
        """SELECT id, household_id, name, color, sort_order
           FROM categories
           WHERE household_id = ?
           ORDER BY sort_order, id""",
        (household_id,),
    ) as cur:
        rows = await cur.fetchall()
    return [dict(r) for r in rows]


async def next_sort_order(db: aiosqlite.Connection, household_id: int) -> int:
    async with db.execute(
        "SELECT COALESCE(MAX(sort_order), 0) + 1 FROM categories WHERE household_id = ?",
        (household_id,),
    ) as cur:
        row = await cur.fetchone()
    return row[0]


async def delete_category(db: aiosqlite.Connection, household_id: int, category_id: int) -> bool:
    """
    Delete a category and detach everything that referenced it.

    The schema declares ON DELETE SET NULL as well; the explicit UPDATEs keep
    the behaviour correct on connections without foreign_keys enabled.
    Returns False if the category does not belong to the household.
    """
    async with db.execute(
        "SELECT id FROM categories WHERE id = ? AND household_id = ?",
        (category_id, household_id),
    ) as cur:
        if not await cur.fetchone():
            return False

    await db.execute(
        "UPDATE receipt_items SET category_id = NULL WHERE category_id = ?", (category_id,)
    )
    await db.execute(
        "UPDATE manual_expenses SET category_id = NULL WHERE category_id = ?", (category_id,)
    )
    await db.execute("DELETE FROM categories WHERE id = ?", (category_id,))
    await db.commit()
    logger.info("Deleted category %s of household %s", category_id, household_id)
    return True


def category_lookup(categories: list[dict]) -> dict[int, dict]:
    return {c["id"]: c for c in categories}
