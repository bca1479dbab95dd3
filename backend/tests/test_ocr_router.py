"""
Tests for POST /api/ocr/process-receipt — the synchronous extraction trigger.
"""
import json
from datetime import date

import anthropic
import httpx
import pytest
from httpx import ASGITransport, AsyncClient


async def insert_receipt(db, household_id, image_path):
    cur = await db.execute(
        "INSERT INTO receipts (household_id, user_id, image_path) VALUES (?, 'user-1', ?)",
        (household_id, image_path),
    )
    await db.commit()
    return cur.lastrowid


async def status_of(db, receipt_id):
    async with db.execute("SELECT ocr_status FROM receipts WHERE id = ?", (receipt_id,)) as cur:
        return (await cur.fetchone())[0]


@pytest.fixture
def vision():
    return {"client": None}


@pytest.fixture
def app(db, image_store, vision):
    from fastapi import FastAPI
    from routers.ocr import router, get_vision_client
    from routers.reports import router as reports_router
    from db.database import get_db
    from services.storage_service import get_image_store

    test_app = FastAPI()
    test_app.include_router(router, prefix="/api/ocr")
    test_app.include_router(reports_router, prefix="/api/reports")

    async def override_get_db():
        yield db
    test_app.dependency_overrides[get_db] = override_get_db
    test_app.dependency_overrides[get_image_store] = lambda: image_store
    test_app.dependency_overrides[get_vision_client] = lambda: vision["client"]
    return test_app


@pytest.fixture
async def stored_receipt(db, household, image_store, jpeg_bytes):
    key = image_store.save(household, "r.jpg", jpeg_bytes)
    return await insert_receipt(db, household, key)


async def trigger(app, receipt_id):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        return await client.post("/api/ocr/process-receipt", json={"receipt_id": receipt_id})


class TestProcessReceipt:

    @pytest.mark.asyncio
    async def test_success(self, db, app, vision, stored_receipt, categories, make_vision_client):
        vision["client"] = make_vision_client(text=json.dumps({
            "store_name": "Mart", "purchased_at": "2026-02-01", "total_amount": 300,
            "items": [{"name": "Rice", "quantity": 1, "unit_price": 300,
                       "category_id": categories[0]["id"]}],
        }))

        resp = await trigger(app, stored_receipt)

        assert resp.status_code == 200
        assert resp.json() == {
            "receipt_id": stored_receipt, "ocr_status": "done",
            "truncated": False, "item_count": 1, "error": None,
        }
        assert await status_of(db, stored_receipt) == "done"

    @pytest.mark.asyncio
    async def test_truncated_reported(self, app, vision, stored_receipt, make_vision_client):
        vision["client"] = make_vision_client(
            text='{"items":[{"name":"a","unit_price":1},{"name":"b',
            stop_reason="max_tokens",
        )

        resp = await trigger(app, stored_receipt)

        assert resp.status_code == 200
        assert resp.json()["truncated"] is True
        assert resp.json()["item_count"] == 1

    @pytest.mark.asyncio
    async def test_unknown_receipt(self, app, household):
        resp = await trigger(app, 9999)
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_missing_image(self, db, app, vision, household, make_vision_client):
        vision["client"] = make_vision_client(text="{}")
        receipt_id = await insert_receipt(db, household, f"{household}/gone.jpg")

        resp = await trigger(app, receipt_id)

        assert resp.status_code == 404
        assert await status_of(db, receipt_id) == "error"

    @pytest.mark.asyncio
    async def test_api_failure(self, db, app, vision, stored_receipt, make_vision_client):
        vision["client"] = make_vision_client(error=anthropic.APIConnectionError(
            request=httpx.Request("POST", "https://api.anthropic.com/v1/messages")
        ))

        resp = await trigger(app, stored_receipt)

        assert resp.status_code == 502
        assert await status_of(db, stored_receipt) == "error"

    @pytest.mark.asyncio
    async def test_unparseable(self, db, app, vision, stored_receipt, make_vision_client):
        vision["client"] = make_vision_client(text="no json here")

        resp = await trigger(app, stored_receipt)

        assert resp.status_code == 422
        assert "ParseError" in resp.json()["detail"]
        assert await status_of(db, stored_receipt) == "error"


class TestRepeatedRuns:

    ITEMS = [{"name": "milk", "quantity": 1, "unit_price": 200},
             {"name": "bread", "quantity": 1, "unit_price": 300}]

    @pytest.mark.asyncio
    async def test_second_run_replaces_items(self, db, app, vision, stored_receipt, make_vision_client):
        vision["client"] = make_vision_client(text=json.dumps({
            "store_name": "Bakery", "purchased_at": "2026-02-05", "total_amount": 500,
            "items": self.ITEMS,
        }))

        assert (await trigger(app, stored_receipt)).status_code == 200
        assert (await trigger(app, stored_receipt)).status_code == 200

        async with db.execute(
            "SELECT COUNT(*) FROM receipt_items WHERE receipt_id = ?", (stored_receipt,)
        ) as cur:
            assert (await cur.fetchone())[0] == 2

    @pytest.mark.asyncio
    async def test_slash_date_still_counted_in_report(self, app, vision, stored_receipt, headers,
                                                      make_vision_client):
        vision["client"] = make_vision_client(text=json.dumps({
            "store_name": "Bakery", "purchased_at": "2026/02/05", "total_amount": 500,
            "items": [{"name": "cake", "quantity": 1, "unit_price": 500}],
        }))

        assert (await trigger(app, stored_receipt)).status_code == 200

        today = date.today()
        month = f"{today.year:04d}-{today.month:02d}"
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            report = (await client.get(f"/api/reports/monthly?month={month}", headers=headers)).json()
        assert report["total"] == 500
        assert report["trend"][-1]["amount"] == 500
