"""
Categories Router

GET    /api/categories        — household categories in display order
POST   /api/categories        — add a category (appended to the end)
PATCH  /api/categories/{id}   — rename / recolor
DELETE /api/categories/{id}   — delete; dependent spending becomes uncategorized
"""
import re

import aiosqlite
from fastapi import APIRouter, Depends, HTTPException

from db.database import get_db
from models.schemas import Category, CategoryCreate, CategoryUpdate
from services.category_service import delete_category, get_categories, next_sort_order
from services.household_service import HouseholdContext, get_household_context

router = APIRouter()

HEX_COLOR_RE = re.compile(r'^#[0-9a-fA-F]{6}$')


def _check_color(color: str | None):
    if color is not None and not HEX_COLOR_RE.match(color):
        raise HTTPException(status_code=422, detail=f"Invalid color: {color!r}")


@router.get("", response_model=list[Category])
async def list_categories(
    ctx: HouseholdContext = Depends(get_household_context),
):
    return [Category(**c) for c in ctx.categories]


@router.post("", response_model=Category, status_code=201)
async def create_category(
    body: CategoryCreate,
    ctx: HouseholdContext = Depends(get_household_context),
    db: aiosqlite.Connection = Depends(get_db),
):
    _check_color(body.color)
    name = body.name.strip()
    if not name:
        raise HTTPException(status_code=422, detail="Name is required")

    sort_order = await next_sort_order(db, ctx.household_id)
    cur = await db.execute(
        "INSERT INTO categories (household_id, name, color, sort_order) VALUES (?, ?, ?, ?)",
        (ctx.household_id, name, body.color, sort_order),
    )
    await db.commit()
    return Category(
        id=cur.lastrowid, household_id=ctx.household_id,
        name=name, color=body.color, sort_order=sort_order,
    )


@router.patch("/{category_id}", response_model=Category)
async def update_category(
    category_id: int,
    body: CategoryUpdate,
    ctx: HouseholdContext = Depends(get_household_context),
    db: aiosqlite.Connection = Depends(get_db),
):
    current = ctx.category(category_id)
    if current is None:
        raise HTTPException(status_code=404, detail="Category not found")
    _check_color(body.color)

    name = body.name.strip() if body.name is not None else current["name"]
    if not name:
        raise HTTPException(status_code=422, detail="Name is required")
    color = body.color or current["color"]

    await db.execute(
        "UPDATE categories SET name = ?, color = ? WHERE id = ?",
        (name, color, category_id),
    )
    await db.commit()
    updated = {c["id"]: c for c in await get_categories(db, ctx.household_id)}
    return Category(**updated[category_id])


@router.delete("/{category_id}")
async def remove_category(
    category_id: int,
    ctx: HouseholdContext = Depends(get_household_context),
    db: aiosqlite.Connection = Depends(get_db),
):
    if not await delete_category(db, ctx.household_id, category_id):
        raise HTTPException(status_code=404, detail="Category not found")
    return {"status": "deleted", "category_id": category_id}
