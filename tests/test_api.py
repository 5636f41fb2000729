import uuid
from datetime import timedelta
from decimal import Decimal

import pytest
from httpx import ASGITransport, AsyncClient

from leadmarket.database import get_db
from leadmarket.main import app
from leadmarket.services.deduplication_service import DeduplicationService
from leadmarket.services.identity_resolution import RawContactRecord
from tests.conftest import NOW, WORKSPACE_ID


@pytest.fixture
async def client(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["checks"]["database"] == "connected"


async def test_sale_completed_records_commission_once(client, make_partner, make_purchase_item):
    partner_id = await make_partner()
    item_id = await make_purchase_item()
    payload = {
        "purchase_item_id": str(item_id),
        "partner_id": str(partner_id),
        "sale_price": "100.00",
        "lead_created_at": (NOW - timedelta(days=2)).isoformat(),
        "sale_date": NOW.isoformat(),
    }

    response = await client.post("/api/v1/marketplace/sales/completed", json=payload)
    assert response.status_code == 201
    body = response.json()
    assert Decimal(body["commission_rate"]) == Decimal("0.40")
    assert Decimal(body["commission_amount"]) == Decimal("40.0000")
    assert body["bonuses"] == ["fresh_sale"]
    assert Decimal(body["pending_balance"]) == Decimal("40.0000")

    retry = await client.post("/api/v1/marketplace/sales/completed", json=payload)
    assert retry.status_code == 409

    summary = await client.get(f"/api/v1/partners/{partner_id}/commission-summary")
    assert Decimal(summary.json()["total_pending"]) == Decimal("40.0000")


async def test_sale_completed_unknown_partner(client, make_purchase_item):
    item_id = await make_purchase_item()
    response = await client.post("/api/v1/marketplace/sales/completed", json={
        "purchase_item_id": str(item_id),
        "partner_id": str(uuid.uuid4()),
        "sale_price": "10.00",
        "lead_created_at": NOW.isoformat(),
    })
    assert response.status_code == 404


async def test_sale_completed_validates_payload(client):
    response = await client.post("/api/v1/marketplace/sales/completed", json={"sale_price": "-1"})
    assert response.status_code == 422


async def test_duplicate_check(client, make_partner, make_lead):
    partner_id = await make_partner()
    await make_lead("known@acme.com", partner_id=partner_id)

    response = await client.post("/api/v1/leads/duplicates/check", json={
        "partner_id": str(partner_id),
        "records": [
            {"email": "Known@Acme.com"},
            {"email": "new@acme.com"},
            {"email": "new@acme.com"},
            {"email": "other@acme.com"},
        ],
    })

    assert response.status_code == 200
    body = response.json()
    assert body["total"] == 4
    assert body["new_count"] == 2
    assert body["duplicate_count"] == 2
    assert Decimal(body["duplicate_rate"]) == Decimal("50.00")
    assert [r["reason"] for r in body["rejections"]] == ["DUPLICATE_SAME_PARTNER", "DUPLICATE_IN_BATCH"]


async def test_duplicate_check_workspace_scope_needs_workspace(client):
    response = await client.post("/api/v1/leads/duplicates/check", json={
        "scope": "WORKSPACE",
        "records": [{"email": "a@acme.com"}],
    })
    assert response.status_code == 400


async def test_commission_summary(client, make_partner):
    partner_id = await make_partner(available_balance=Decimal("20.00"), total_earnings=Decimal("20.00"))

    response = await client.get(f"/api/v1/partners/{partner_id}/commission-summary")

    assert response.status_code == 200
    body = response.json()
    assert body["partner_id"] == str(partner_id)
    assert Decimal(body["total_available"]) == Decimal("20.00")
    assert Decimal(body["commission_rate"]) == Decimal("0.30")


async def test_commission_summary_unknown_partner(client):
    response = await client.get(f"/api/v1/partners/{uuid.uuid4()}/commission-summary")
    assert response.status_code == 404


async def test_duplicate_stats(client, db, make_partner, make_lead):
    partner_id = await make_partner()
    await make_lead("owned@acme.com", partner_id=partner_id)
    await DeduplicationService(db).ingest_batch(
        [RawContactRecord(email="fresh@acme.com"), RawContactRecord(email="fresh@acme.com")],
        workspace_id=WORKSPACE_ID,
        partner_id=partner_id,
    )

    response = await client.get(f"/api/v1/partners/{partner_id}/duplicate-stats")

    assert response.status_code == 200
    body = response.json()
    assert body["total_leads"] == 2
    assert body["duplicates_rejected"] == 1
    assert Decimal(body["duplicate_rate"]) == Decimal("33.33")
