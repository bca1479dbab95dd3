"""
Shared fixtures for backend tests.

Every test gets a fresh in-memory SQLite database built from the production
schema in db/database.py.  The ``household`` fixture adds one household with
the default categories; tests add receipts/expenses themselves.
"""
import io
from types import SimpleNamespace

import pytest
import aiosqlite
from PIL import Image

from db.database import SCHEMA
from services.category_service import get_categories, seed_default_categories
from services.storage_service import ImageStore


@pytest.fixture
async def db():
    """Yield a fresh in-memory SQLite connection with the full schema."""
    async with aiosqlite.connect(":memory:") as conn:
        conn.row_factory = aiosqlite.Row
        await conn.execute("PRAGMA foreign_keys = ON")
        await conn.executescript(SCHEMA)
        yield conn


@pytest.fixture
async def household(db):
    """Id of a household seeded with the default categories."""
    cur = await db.execute("INSERT INTO households (name) VALUES ('Test Home')")
    household_id = cur.lastrowid
    await seed_default_categories(db, household_id)
    await db.commit()
    return household_id


@pytest.fixture
async def categories(db, household):
    return await get_categories(db, household)


@pytest.fixture
def headers(household):
    return {"X-Household-Id": str(household), "X-User-Id": "user-1"}


@pytest.fixture
def image_store(tmp_path):
    return ImageStore(str(tmp_path / "images"))


@pytest.fixture
def jpeg_bytes():
    buf = io.BytesIO()
    Image.new("RGB", (40, 30), "white").save(buf, format="JPEG")
    return buf.getvalue()


# ── Fake Anthropic client ────────────────────────────────────────────────────

class FakeMessages:
    def __init__(self, text="", stop_reason="end_turn", error=None):
        self.text = text
        self.stop_reason = stop_reason
        self.error = error
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return SimpleNamespace(
            content=[SimpleNamespace(type="text", text=self.text)],
            stop_reason=self.stop_reason,
        )


@pytest.fixture
def make_vision_client():
    """Build an object shaped like AsyncAnthropic whose messages.create is canned."""
    def factory(text="", stop_reason="end_turn", error=None):
        return SimpleNamespace(messages=FakeMessages(text, stop_reason, error))
    return factory
