from decimal import Decimal

import httpx
import pytest

from app.db import get_db
from app.main import app


@pytest.fixture
async def client(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


async def test_root_and_health(client):
    assert (await client.get("/")).json() == {"status": "backend is live"}
    assert (await client.get("/health")).json()["ok"] is True


async def test_unknown_project_is_404(client):
    assert (await client.get("/leveling/projects/nope")).status_code == 404
    assert (await client.get("/leveling/projects/nope/stats")).status_code == 404
    resp = await client.post("/leveling/projects/nope/snapshots/lock", json={"title": "Round 1"})
    assert resp.status_code == 404


async def test_bid_round_trip(client, seed):
    base = f"/leveling/projects/{seed.project_id}"

    resp = await client.put(
        f"{base}/bids",
        json={"trade_id": seed.electrical, "sub_id": seed.acme, "status": "submitted", "base_bid_amount": "$1,000"},
    )
    assert resp.status_code == 200
    assert resp.json() == {"ok": True, "skipped": []}

    resp = await client.put(f"{base}/budgets/{seed.electrical}", json={"budget_amount": "1200"})
    assert resp.status_code == 200

    view = (await client.get(base)).json()
    [bid] = view["bids"]
    assert bid["sub_id"] == seed.acme
    assert bid["status"] == "submitted"
    assert bid["is_low"] is True
    assert Decimal(str(bid["base_bid_amount"])) == Decimal("1000")

    stats = (await client.get(f"{base}/stats")).json()
    assert Decimal(str(stats[seed.electrical]["budget_delta_amount"])) == Decimal("-200")

    resp = await client.post(f"{base}/bids/remove", json={"trade_id": seed.electrical, "sub_id": seed.acme})
    assert resp.status_code == 200
    assert (await client.get(base)).json()["bids"] == []


async def test_invalid_input_is_422(client, seed):
    base = f"/leveling/projects/{seed.project_id}"

    resp = await client.put(f"{base}/bids", json={"trade_id": seed.electrical, "sub_id": seed.acme, "status": "won"})
    assert resp.status_code == 422

    resp = await client.post(f"{base}/snapshots", json={"title": "  "})
    assert resp.status_code == 422


async def test_foreign_key_violation_is_409(client, seed):
    resp = await client.put(
        f"/leveling/projects/{seed.project_id}/bids",
        json={"trade_id": "missing-trade", "sub_id": seed.acme, "status": "invited"},
    )
    assert resp.status_code == 409


async def test_breakdown_and_snapshot_endpoints(client, seed):
    base = f"/leveling/projects/{seed.project_id}"
    await client.put(
        f"{base}/bids", json={"trade_id": seed.electrical, "sub_id": seed.bolt, "status": "submitted", "base_bid_amount": 500}
    )

    resp = await client.put(
        f"{base}/breakdown/{seed.electrical}/{seed.bolt}",
        json={
            "base_items": [{"id": "item-1", "description": "Trenching", "qty": 20, "unit": "LF", "unit_price": 25}],
            "alternates": [{"id": "alt-1", "title": "Night work", "amount": "300"}],
        },
    )
    assert resp.status_code == 200

    breakdown = (await client.get(f"{base}/breakdown/{seed.electrical}/{seed.bolt}")).json()
    assert [i["id"] for i in breakdown["base_items"]] == ["item-1"]
    assert [a["id"] for a in breakdown["alternates"]] == ["alt-1"]

    resp = await client.post(f"{base}/snapshots/lock", json={"title": "Round 1", "created_by": "pm"})
    assert resp.status_code == 201
    snapshot_id = resp.json()["snapshot_id"]

    items = (await client.get(f"/leveling/snapshots/{snapshot_id}/items")).json()
    assert len(items) == 8
    [bolt] = [i for i in items if i["trade_id"] == seed.electrical and i["sub_id"] == seed.bolt]
    assert bolt["included_json"] == {"alternates": {"alt-1": False}}


async def test_malformed_amount_is_422_and_keeps_stored_bid(client, seed):
    base = f"/leveling/projects/{seed.project_id}"
    cell = {"trade_id": seed.electrical, "sub_id": seed.acme, "status": "submitted"}
    assert (await client.put(f"{base}/bids", json={**cell, "base_bid_amount": "100"})).status_code == 200

    resp = await client.put(f"{base}/bids", json={**cell, "base_bid_amount": "1OO"})
    assert resp.status_code == 422

    [bid] = (await client.get(base)).json()["bids"]
    assert Decimal(str(bid["base_bid_amount"])) == Decimal("100")
    assert bid["is_low"] is True

    resp = await client.put(f"{base}/budgets/{seed.electrical}", json={"budget_amount": "12k"})
    assert resp.status_code == 422
    resp = await client.post(
        f"{base}/snapshots",
        json={"title": "Round 1", "items": [{"trade_id": seed.electrical, "sub_id": seed.acme, "base_bid_amount": "ten"}]},
    )
    assert resp.status_code == 422
    assert (await client.get(base)).json()["snapshots"] == []
