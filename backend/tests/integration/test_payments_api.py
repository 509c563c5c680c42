"""Integration tests for the payment HTTP endpoints."""
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from settlement.api.deps import get_settlement_service
from settlement.main import app
from settlement.services.settlement_service import SettlementService

from tests.utils.fakes import FakePayPalGateway


@pytest_asyncio.fixture(scope="function")
async def client(service: SettlementService) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app with the settlement service overridden."""
    app.dependency_overrides[get_settlement_service] = lambda: service
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


async def _initiate(client: AsyncClient, order_id: str = "order-1") -> dict:
    response = await client.post(
        "/v1/payments/initiate",
        json={"order_id": order_id, "user_id": "user-1", "amount": "99.99", "currency": "usd"},
    )
    assert response.status_code == 200
    return response.json()["data"]


@pytest.mark.asyncio
async def test_health(client: AsyncClient) -> None:
    """Test the liveness endpoint."""
    response = await client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["provider"].startswith("PayPal")


@pytest.mark.asyncio
async def test_initiate_payment_endpoint(client: AsyncClient) -> None:
    """Test payment initiation returns the success envelope."""
    response = await client.post(
        "/v1/payments/initiate",
        json={"order_id": "order-1", "user_id": "user-1", "amount": 99.99, "currency": "usd"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["message"] == "Payment initiated successfully"
    assert body["data"] == {
        "payment_id": "pay-1",
        "paypal_order_id": "PP-1",
        "approval_url": "https://www.sandbox.paypal.com/checkoutnow?token=PP-1",
        "status": "initiated",
    }


@pytest.mark.asyncio
async def test_initiate_missing_fields_is_400(client: AsyncClient, gateway: FakePayPalGateway) -> None:
    """Test that missing fields produce the 400 error envelope."""
    response = await client.post("/v1/payments/initiate", json={"order_id": "order-1"})

    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["error"]["statusCode"] == 400
    assert "user_id" in body["error"]["message"]
    assert gateway.calls == []


@pytest.mark.asyncio
async def test_complete_payment_endpoint(client: AsyncClient, gateway: FakePayPalGateway) -> None:
    """Test capture through the API, repeated twice."""
    data = await _initiate(client)
    gateway.approve(data["paypal_order_id"])

    first = await client.post("/v1/payments/complete", json={"paypal_order_id": "PP-1"})
    second = await client.post("/v1/payments/complete", json={"paypal_order_id": "PP-1"})

    assert first.status_code == 200
    assert first.json()["data"] == {
        "payment_id": "pay-1",
        "order_id": "order-1",
        "status": "captured",
        "amount": "99.99",
        "currency": "USD",
    }
    assert second.json() == first.json()
    assert gateway.calls_to("capture_order") == 1


@pytest.mark.asyncio
async def test_complete_without_order_id_is_400(client: AsyncClient) -> None:
    """Test that completion requires the PayPal order id."""
    response = await client.post("/v1/payments/complete", json={})

    assert response.status_code == 400
    assert response.json()["error"] == {"message": "PayPal order ID required", "statusCode": 400}


@pytest.mark.asyncio
async def test_complete_unknown_order_is_404(client: AsyncClient) -> None:
    """Test that an unknown PayPal order is reported as not found."""
    response = await client.post("/v1/payments/complete", json={"paypal_order_id": "PP-404"})

    assert response.status_code == 404
    assert response.json()["success"] is False
    assert response.json()["error"]["statusCode"] == 404


@pytest.mark.asyncio
async def test_complete_unapproved_order_is_409(client: AsyncClient) -> None:
    """Test that completing before payer approval is a conflict."""
    await _initiate(client)

    response = await client.post("/v1/payments/complete", json={"paypal_order_id": "PP-1"})

    assert response.status_code == 409
    assert response.json()["error"]["message"] == "PayPal order is not approved. Current status: CREATED"


@pytest.mark.asyncio
async def test_get_payment_hides_audit_fields(client: AsyncClient, gateway: FakePayPalGateway) -> None:
    """Test that payment details never expose the audit blob or payer hashes."""
    await _initiate(client)
    payer = gateway.approve("PP-1")
    await client.post("/v1/payments/complete", json={"paypal_order_id": "PP-1"})

    response = await client.get("/v1/payments/pay-1")

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["status"] == "captured"
    assert data["amount"] == "99.99"
    for field in ("encrypted_response", "payer_email_hash", "payer_id_hash"):
        assert field not in data
    assert payer["email_address"] not in response.text


@pytest.mark.asyncio
async def test_get_unknown_payment_is_404(client: AsyncClient) -> None:
    """Test that unknown payments return the 404 envelope."""
    response = await client.get("/v1/payments/pay-missing")

    assert response.status_code == 404
    assert response.json()["success"] is False


@pytest.mark.asyncio
async def test_verify_payment_endpoint(client: AsyncClient, gateway: FakePayPalGateway) -> None:
    """Test verification reflects the PayPal order status."""
    await _initiate(client)
    gateway.approve("PP-1")

    response = await client.get("/v1/payments/pay-1/verify")

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["verified"] is False
    assert data["status"] == "approved"
    assert data["error"] is None


@pytest.mark.asyncio
async def test_order_and_user_listing(client: AsyncClient) -> None:
    """Test lookups by order and by user."""
    await _initiate(client, "order-1")
    await _initiate(client, "order-2")

    by_order = await client.get("/v1/payments/orders/order-2")
    by_user = await client.get("/v1/payments", params={"user_id": "user-1", "limit": 1})

    assert by_order.json()["data"]["id"] == "pay-2"
    assert [p["id"] for p in by_user.json()["data"]] == ["pay-2"]


@pytest.mark.asyncio
async def test_list_without_user_is_400(client: AsyncClient) -> None:
    """Test that listing requires a user id."""
    response = await client.get("/v1/payments")

    assert response.status_code == 400
    assert response.json()["error"]["message"] == "User ID required"


@pytest.mark.asyncio
async def test_unexpected_error_is_generic_500(client: AsyncClient, gateway: FakePayPalGateway) -> None:
    """Test that unexpected exceptions are reported without internals."""
    gateway.create_error = RuntimeError("connection string postgres://secret@db")

    response = await client.post(
        "/v1/payments/initiate",
        json={"order_id": "order-1", "user_id": "user-1", "amount": "10.00"},
    )

    assert response.status_code == 500
    assert response.json() == {
        "success": False,
        "error": {"message": "An unexpected error occurred", "statusCode": 500},
    }


def test_request_bodies_are_documented() -> None:
    """Test that the initiate and complete bodies appear as typed schemas in OpenAPI."""
    paths = app.openapi()["paths"]

    initiate = paths["/v1/payments/initiate"]["post"]["requestBody"]["content"]["application/json"]["schema"]
    complete = paths["/v1/payments/complete"]["post"]["requestBody"]["content"]["application/json"]["schema"]

    assert initiate["$ref"].endswith("/PaymentInitiateRequest")
    assert complete["$ref"].endswith("/PaymentCompleteRequest")


@pytest.mark.asyncio
async def test_malformed_amount_is_400(client: AsyncClient, gateway: FakePayPalGateway) -> None:
    """Test that a non-numeric amount is rejected with the error envelope."""
    response = await client.post(
        "/v1/payments/initiate",
        json={"order_id": "order-1", "user_id": "user-1", "amount": "ten dollars"},
    )

    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert "amount" in body["error"]["message"]
    assert gateway.calls == []


@pytest.mark.asyncio
async def test_amount_returned_as_received(client: AsyncClient) -> None:
    """Test that payment details echo the unrounded amount."""
    await client.post(
        "/v1/payments/initiate",
        json={"order_id": "order-1", "user_id": "user-1", "amount": "12.3456", "currency": "USD"},
    )

    response = await client.get("/v1/payments/pay-1")

    assert response.json()["data"]["amount"] == "12.3456"
