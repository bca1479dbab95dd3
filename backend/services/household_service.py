"""
Request-scoped household context.

Authentication happens upstream; by the time a request reaches us the
gateway has resolved the caller's active household and user and forwarded
them as headers.  Every household-scoped router depends on
``get_household_context`` instead of reaching for global state.
"""
from dataclasses import dataclass, field
from typing import Optional

import aiosqlite
from fastapi import Depends, Header, HTTPException

from db.database import get_db
from services.category_service import category_lookup, get_categories


@dataclass
class HouseholdContext:
    household_id: int
    user_id: str
    categories: list[dict] = field(default_factory=list)

    @property
    def category_ids(self) -> set[int]:
        return {c["id"] for c in self.categories}

    def category(self, category_id: Optional[int]) -> Optional[dict]:
        if category_id is None:
            return None
        return category_lookup(self.categories).get(category_id)


async def load_household_context(
    db: aiosqlite.Connection, household_id: int, user_id: str
) -> Optional[HouseholdContext]:
    async with db.execute("SELECT id FROM households WHERE id = ?", (household_id,)) as cur:
        if not await cur.fetchone():
            return None
    categories = await get_categories(db, household_id)
    return HouseholdContext(household_id=household_id, user_id=user_id, categories=categories)


async def get_household_context(
    x_household_id: int = Header(...),
    x_user_id: str = Header(...),
    db: aiosqlite.Connection = Depends(get_db),
) -> HouseholdContext:
    """Dependency: resolve X-Household-Id / X-User-Id into a HouseholdContext."""
    ctx = await load_household_context(db, x_household_id, x_user_id)
    if ctx is None:
        raise HTTPException(status_code=404, detail="Household not found")
    return ctx
