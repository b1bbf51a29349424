"""
End-to-end tests for the HTTP API.

The application is built with ``create_app`` and driven through
``httpx.ASGITransport``; the lifespan never runs, so the schema comes from
the shared ``engine`` fixture and dependencies are overridden to use the
test database, settings, dispatcher and an in-memory session store.

Covers:
- Health probes and correlation headers
- The customer flow: location, reservation, invoice, order placement
- Error translation (precondition, business rule, wire validation)
- Admin authentication and order status management
"""

from decimal import Decimal
from typing import AsyncGenerator

import pytest
from fastapi import status
from httpx import ASGITransport, AsyncClient

from src.api.deps import get_dispatcher, get_session_store
from src.api.limiter import limiter
from src.core.config import get_settings
from src.database.connection import get_db
from src.main import create_app
from src.services.auth.sessions import InMemorySessionStore

ADMIN_PASSWORD = "correct-horse-battery"
ADDRESS = "123 Palm Canyon Dr, Palm Springs, CA 92262"


# ============================================================================
# Test Fixtures
# ============================================================================


@pytest.fixture
async def client(
    settings, session_factory, seeded_products, dispatcher
) -> AsyncGenerator[AsyncClient, None]:
    """
    HTTP client bound to a fresh application instance.

    Yields:
        AsyncClient: Client sending requests straight into the ASGI app
    """
    app = create_app(settings)
    store = InMemorySessionStore()

    async def override_get_db():
        async with session_factory() as db_session:
            yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    app.dependency_overrides[get_session_store] = lambda: store
    limiter.reset()

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http:
        yield http


@pytest.fixture
async def admin_headers(client) -> dict[str, str]:
    response = await client.post(
        "/api/v1/auth/login", json={"username": "admin", "password": ADMIN_PASSWORD}
    )
    assert response.status_code == status.HTTP_200_OK
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


def order_payload(tokens: dict[str, str], **overrides) -> dict:
    payload = {
        "customer_id": "1001",
        "customer_name": "Jane Doe",
        "delivery_address": ADDRESS,
        "phone_number": "+1 760 555 0100",
        "items": [{"product_id": 1, "quantity": 2, "unit_price": "10.00"}],
        "total_amount": "20.00",
        **tokens,
    }
    payload.update(overrides)
    return payload


# ============================================================================
# Health
# ============================================================================


class TestHealth:
    async def test_health(self, client):
        response = await client.get("/health")

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["status"] == "healthy"
        assert response.headers["X-Content-Type-Options"] == "nosniff"

    async def test_liveness(self, client):
        response = await client.get("/live")

        assert response.json()["status"] == "alive"

    async def test_request_id_is_echoed(self, client):
        response = await client.get("/live", headers={"X-Request-ID": "req-1234"})

        assert response.headers["X-Request-ID"] == "req-1234"

    async def test_request_id_is_generated(self, client):
        response = await client.get("/live")

        assert response.headers["X-Request-ID"]


# ============================================================================
# Customer flow
# ============================================================================


class TestCustomerFlow:
    """Location, reservation and invoice tokens feed order placement."""

    async def test_list_products(self, client):
        response = await client.get("/api/v1/products")

        assert response.status_code == status.HTTP_200_OK
        assert [p["name"] for p in response.json()] == ["Gadget", "Widget"]

    async def test_unknown_product(self, client):
        response = await client.get("/api/v1/products/404")

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.json()["error_code"] == "PRODUCT_NOT_FOUND"

    async def test_location_outside_area(self, client):
        response = await client.post(
            "/api/v1/location/verify", json={"address": "1 Market St, San Francisco, CA 94105"}
        )

        body = response.json()
        assert response.status_code == status.HTTP_200_OK
        assert body["verified"] is False
        assert body["location_token"] is None

    async def test_full_order_flow(self, client, read_stock):
        location = await client.post("/api/v1/location/verify", json={"address": ADDRESS})
        reservation = await client.post(
            "/api/v1/products/reservations",
            json={"items": [{"product_id": 1, "quantity": 2}]},
        )
        invoice = await client.post(
            "/api/v1/payments/invoices",
            json={
                "order_reference": "ORDER_1001",
                "amount_usd": "20.00",
                "customer_name": "Jane Doe",
                "customer_id": "1001",
            },
        )

        assert location.json()["location_token"].startswith("LOC_")
        assert reservation.json()["reserved"] is True
        assert invoice.status_code == status.HTTP_201_CREATED
        assert invoice.json()["amount_stars"] == 4000

        tokens = {
            "location_token": location.json()["location_token"],
            "inventory_token": reservation.json()["inventory_token"],
            "payment_token": invoice.json()["transaction_id"],
        }
        response = await client.post("/api/v1/orders", json=order_payload(tokens))

        body = response.json()
        assert response.status_code == status.HTTP_201_CREATED
        assert body["status"] == "placed"
        assert body["payment_status"] == "pending"
        assert Decimal(body["total_amount"]) == Decimal("20.00")
        assert body["items"][0]["product_name"] == "Widget"
        assert await read_stock(1) == 3

        fetched = await client.get(f"/api/v1/orders/{body['id']}")
        assert fetched.json()["id"] == body["id"]

        latest = await client.get("/api/v1/orders/customer/1001/latest")
        assert latest.json()["id"] == body["id"]

    async def test_missing_token(self, client, fresh_tokens):
        tokens = fresh_tokens()
        tokens.pop("location_token")

        response = await client.post("/api/v1/orders", json=order_payload(tokens))

        body = response.json()
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert body["success"] is False
        assert body["error_code"] == "MISSING"
        assert body["token_kind"] == "location"

    async def test_total_mismatch(self, client, fresh_tokens, read_stock):
        response = await client.post(
            "/api/v1/orders", json=order_payload(fresh_tokens(), total_amount="45.00")
        )

        body = response.json()
        assert response.status_code == status.HTTP_409_CONFLICT
        assert body["error_code"] == "BUSINESS_RULE_VIOLATION"
        assert "Calculated: $20.00, Provided: $45.00" in body["message"]
        assert await read_stock(1) == 5

    async def test_wire_type_error(self, client, fresh_tokens):
        payload = order_payload(
            fresh_tokens(), items=[{"product_id": 1, "quantity": "lots", "unit_price": "10.00"}]
        )

        response = await client.post("/api/v1/orders", json=payload)

        body = response.json()
        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
        assert body["error_code"] == "REQUEST_VALIDATION_ERROR"
        assert body["details"][0]["loc"][-1] == "quantity"


# ============================================================================
# Admin
# ============================================================================


class TestAdminAuthentication:
    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/v1/admin/orders"),
            ("GET", "/api/v1/admin/statistics"),
            ("GET", "/api/v1/auth/session"),
        ],
    )
    async def test_requires_session(self, client, method, path):
        response = await client.request(method, path)

        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    async def test_wrong_password(self, client):
        response = await client.post(
            "/api/v1/auth/login", json={"username": "admin", "password": "nope"}
        )

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json()["error_code"] == "AUTHENTICATION_FAILED"

    async def test_session_and_logout(self, client, admin_headers):
        session = await client.get("/api/v1/auth/session", headers=admin_headers)
        logout = await client.post("/api/v1/auth/logout", headers=admin_headers)
        after = await client.get("/api/v1/auth/session", headers=admin_headers)

        assert session.json()["username"] == "admin"
        assert logout.status_code == status.HTTP_204_NO_CONTENT
        assert after.status_code == status.HTTP_401_UNAUTHORIZED


class TestAdminOrders:
    async def test_list_and_details(self, client, admin_headers, place_order):
        order = await place_order(quantity=2)

        listing = await client.get("/api/v1/admin/orders", headers=admin_headers)
        details = await client.get(f"/api/v1/admin/orders/{order.id}", headers=admin_headers)

        assert listing.json()["total"] == 1
        assert listing.json()["orders"][0]["total_items"] == 2
        assert details.json()["valid_next_statuses"] == ["received", "cancelled"]
        assert details.json()["can_update"] is True

    async def test_status_update(self, client, admin_headers, place_order, dispatcher):
        order = await place_order()

        response = await client.patch(
            f"/api/v1/admin/orders/{order.id}/status",
            json={"status": "received", "notes": "Packing now"},
            headers=admin_headers,
        )

        body = response.json()
        assert response.status_code == status.HTTP_200_OK
        assert body["previous_status"] == "placed"
        assert body["new_status"] == "received"
        assert body["notification"]["sent"] is True
        assert body["order"]["notes"][0]["author"] == "Admin admin"
        assert dispatcher.messages[0].recipient == "1001"

    async def test_invalid_transition(self, client, admin_headers, place_order):
        order = await place_order()

        response = await client.patch(
            f"/api/v1/admin/orders/{order.id}/status",
            json={"status": "delivered"},
            headers=admin_headers,
        )

        body = response.json()
        assert response.status_code == status.HTTP_409_CONFLICT
        assert body["error_code"] == "INVALID_STATUS_TRANSITION"
        assert body["current_status"] == "placed"
        assert body["valid_transitions"] == ["received", "cancelled"]

    async def test_bulk_update(self, client, admin_headers, place_order):
        first = await place_order()
        second = await place_order()
        missing = "00000000-0000-0000-0000-000000000000"

        response = await client.post(
            "/api/v1/admin/orders/bulk-status",
            json={"order_ids": [str(first.id), str(second.id), missing], "status": "received"},
            headers=admin_headers,
        )

        body = response.json()
        assert response.status_code == status.HTTP_200_OK
        assert body["total"] == 3
        assert body["success_count"] == 2
        assert body["failure_count"] == 1
        assert body["results"][2]["success"] is False

    async def test_unknown_order(self, client, admin_headers):
        response = await client.get(
            "/api/v1/admin/orders/00000000-0000-0000-0000-000000000000", headers=admin_headers
        )

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.json()["error_code"] == "ORDER_NOT_FOUND"

    async def test_statistics(self, client, admin_headers, place_order):
        await place_order(quantity=2)

        response = await client.get("/api/v1/admin/statistics", headers=admin_headers)

        body = response.json()
        assert body["total_orders"] == 1
        assert Decimal(body["total_revenue"]) == Decimal("9.00")
