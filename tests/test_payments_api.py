"""
Tests for the HTTP surface: payment endpoints, check-in endpoints and error mapping.
"""

import uuid

import httpx
import pytest
import pytest_asyncio

from confpay.api.deps import get_reconciliation_service
from confpay.database import get_db
from confpay.main import app
from confpay.services.credential_service import CredentialService

from conftest import paid_status

ADMIN_HEADERS = {"X-Admin-Key": "test-admin-key", "X-Admin-Name": "desk-3"}


@pytest_asyncio.fixture
async def client(db, make_service):
    service = make_service()

    async def override_db():
        yield db

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_reconciliation_service] = lambda: service

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


@pytest.mark.asyncio
async def test_initiate_then_poll_paid(client, make_registration, gateway, outbox):
    registration = await make_registration()

    response = await client.post("/payments/onepay/initiate", json={"registration_id": str(registration.id)})
    assert response.status_code == 200
    body = response.json()
    assert body["reused"] is False
    assert body["redirect_url"] == "https://pay.example.com/checkout/tx-1"

    gateway.status_results = [paid_status()]
    response = await client.get(f"/payments/onepay/status/{registration.id}")
    assert response.status_code == 200
    body = response.json()
    assert body["payment_status"] == "PAID"
    assert body["provider_transaction_id"] == "tx-1"
    assert body["paid_at"] is not None
    assert len(outbox.requests) == 1


@pytest.mark.asyncio
async def test_initiate_rejects_malformed_id(client):
    response = await client.post("/payments/onepay/initiate", json={"registration_id": "nope"})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_amount_conflict_maps_to_409(client, make_registration, gateway):
    registration = await make_registration()
    await client.post("/payments/onepay/initiate", json={"registration_id": str(registration.id)})
    gateway.status_results = [paid_status("99.00")]

    response = await client.get(f"/payments/onepay/status/{registration.id}")

    assert response.status_code == 409
    body = response.json()
    assert body["kind"] == "CONFLICT"
    assert body["details"]["reported_amount"] == "99.00"


@pytest.mark.asyncio
async def test_status_unknown_registration_is_404(client):
    response = await client.get(f"/payments/onepay/status/{uuid.uuid4()}")
    assert response.status_code == 404
    assert response.json()["kind"] == "NOT_FOUND"


@pytest.mark.asyncio
async def test_status_invalid_id_is_400(client):
    response = await client.get("/payments/onepay/status/not-a-uuid")
    assert response.status_code == 400
    assert response.json()["kind"] == "BAD_REQUEST"


@pytest.mark.asyncio
async def test_callback_flow(client, make_registration, outbox):
    registration = await make_registration()
    await client.post("/payments/onepay/initiate", json={"registration_id": str(registration.id)})
    payload = {"transaction_id": "tx-1", "status": 1, "amount": "100.00", "currency": "USD"}

    first = await client.post("/payments/onepay/callback", json=payload)
    second = await client.post("/payments/onepay/callback", json=payload)

    assert first.status_code == 200
    assert first.json() == {"ok": True, "status": "PAID"}
    assert second.json() == {"ok": True, "status": "PAID", "already_processed": True}
    assert len(outbox.requests) == 1


@pytest.mark.asyncio
async def test_callback_without_transaction_id_is_400(client):
    response = await client.post("/payments/onepay/callback", json={"status": 1})
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_callback_non_json_is_400(client):
    response = await client.post(
        "/payments/onepay/callback",
        content=b"transaction_id=tx-1",
        headers={"Content-Type": "application/x-www-form-urlencoded"},
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_callback_unknown_transaction_is_404(client):
    response = await client.post("/payments/onepay/callback", json={"transaction_id": "missing"})
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_checkin_requires_admin_key(client):
    response = await client.post("/admin/checkin/preview", json={"qr_text": "APSC2026.x"})
    assert response.status_code == 401

    response = await client.post(
        "/admin/checkin/preview",
        json={"qr_text": "APSC2026.x"},
        headers={"X-Admin-Key": "wrong"},
    )
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_checkin_confirm(client, db, make_registration):
    registration = await make_registration(payment_status="PAID")
    issued = await CredentialService(db).issue(registration.id)

    preview = await client.post(
        "/admin/checkin/preview", json={"qr_text": issued.qr_text}, headers=ADMIN_HEADERS
    )
    confirm = await client.post(
        "/admin/checkin/confirm", json={"qr_text": issued.qr_text}, headers=ADMIN_HEADERS
    )
    again = await client.post(
        "/admin/checkin/confirm", json={"qr_text": issued.qr_text}, headers=ADMIN_HEADERS
    )

    assert preview.status_code == 200
    assert preview.json()["attendee"]["registration_code"] == registration.registration_code
    assert confirm.json()["already_checked_in"] is False
    assert again.json()["already_checked_in"] is True

    record = await CredentialService(db).get_record(issued.record.id)
    assert record.checked_in_by == "desk-3"


@pytest.mark.asyncio
async def test_checkin_invalid_signature_is_401(client):
    response = await client.post(
        "/admin/checkin/preview",
        json={"qr_text": "APSC2026.not.a.jwt"},
        headers=ADMIN_HEADERS,
    )
    assert response.status_code == 401
    assert response.json()["kind"] == "UNAUTHORIZED"
