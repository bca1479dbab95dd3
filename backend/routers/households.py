"""
Households Router

POST /api/households          — create a household seeded with default categories
GET  /api/households/current  — the caller's household and its categories
"""
import logging

import aiosqlite
from fastapi import APIRouter, Depends, HTTPException

from db.database import get_db
from models.schemas import Category, Household, HouseholdCreate
from services.category_service import get_categories, seed_default_categories
from services.household_service import HouseholdContext, get_household_context

logger = logging.getLogger("hearthbook.households")
router = APIRouter()


@router.post("", response_model=Household, status_code=201)
async def create_household(
    body: HouseholdCreate,
    db: aiosqlite.Connection = Depends(get_db),
):
    name = body.name.strip()
    if not name:
        raise HTTPException(status_code=422, detail="Name is required")
    cur = await db.execute("INSERT INTO households (name) VALUES (?)", (name,))
    household_id = cur.lastrowid
    await seed_default_categories(db, household_id)
    await db.commit()
    logger.info("Created household %s (%s)", household_id, name)

    categories = await get_categories(db, household_id)
    return Household(id=household_id, name=name, categories=[Category(**c) for c in categories])


@router.get("/current", response_model=Household)
async def current_household(
    ctx: HouseholdContext = Depends(get_household_context),
    db: aiosqlite.Connection = Depends(get_db),
):
    async with db.execute(
        "SELECT id, name FROM households WHERE id = ?", (ctx.household_id,)
    ) as cur:
        row = await cur.fetchone()
    return Household(
        id=row["id"], name=row["name"],
        categories=[Category(**c) for c in ctx.categories],
    )
