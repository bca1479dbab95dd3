"""
Tests for household creation and the current-household lookup.
"""
import pytest
from httpx import ASGITransport, AsyncClient


@pytest.fixture
def app(db):
    from fastapi import FastAPI
    from routers.households import router
    from db.database import get_db

    test_app = FastAPI()
    test_app.include_router(router, prefix="/api/households")

    async def override_get_db():
        yield db
    test_app.dependency_overrides[get_db] = override_get_db
    return test_app


@pytest.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c


class TestCreateHousehold:

    @pytest.mark.asyncio
    async def test_seeds_default_categories(self, client):
        resp = await client.post("/api/households", json={"name": " The Smiths "})

        assert resp.status_code == 201
        data = resp.json()
        assert data["name"] == "The Smiths"
        assert len(data["categories"]) == 15
        assert data["categories"][0]["name"] == "Food"
        assert all(c["household_id"] == data["id"] for c in data["categories"])

    @pytest.mark.asyncio
    async def test_households_get_separate_categories(self, client):
        a = (await client.post("/api/households", json={"name": "A"})).json()
        b = (await client.post("/api/households", json={"name": "B"})).json()
        assert not {c["id"] for c in a["categories"]} & {c["id"] for c in b["categories"]}

    @pytest.mark.asyncio
    async def test_blank_name(self, client):
        resp = await client.post("/api/households", json={"name": "  "})
        assert resp.status_code == 422


class TestCurrentHousehold:

    @pytest.mark.asyncio
    async def test_current(self, client, headers, household):
        resp = await client.get("/api/households/current", headers=headers)

        assert resp.status_code == 200
        assert resp.json()["id"] == household
        assert resp.json()["name"] == "Test Home"

    @pytest.mark.asyncio
    async def test_unknown(self, client):
        resp = await client.get("/api/households/current",
                                headers={"X-Household-Id": "404", "X-User-Id": "u"})
        assert resp.status_code == 404
