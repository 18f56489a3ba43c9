"""
HTTP 接口测试
"""
import httpx
import pytest
import pytest_asyncio
from jose import jwt

from sf_core.api.deps import get_courier_service, get_receipt_service, get_settlement_service
from sf_core.app import create_app
from sf_core.models import Order, OrderStatus
from sf_core.services import CourierDispatchService, ReceiptService, SettlementService
from sf_core.services.stripe_client import StripeClient

from tests.conftest import (
    ADMIN_API_KEY,
    JWT_SECRET,
    event_body,
    fetch_all,
    make_order,
    merchandise_session,
    seed,
    signed,
)

PREFIX = "/api/sf/v1"


def stripe_handler(request: httpx.Request) -> httpx.Response:
    if request.url.path.startswith("/v1/checkout/sessions/"):
        return httpx.Response(200, json=merchandise_session(payment_intent="pi_api_return"))
    if request.url.path.startswith("/v1/payment_intents/"):
        return httpx.Response(200, json={"latest_charge": {"receipt_url": "https://pay.stripe.com/receipts/r1"}})
    return httpx.Response(404, json={})


@pytest_asyncio.fixture
async def client(settings, db_manager, notifier):
    app = create_app(settings, db_manager)
    stripe_client = StripeClient(settings, transport=httpx.MockTransport(stripe_handler))

    app.dependency_overrides[get_settlement_service] = lambda: SettlementService(
        settings, db_manager, notifier=notifier, stripe_client=stripe_client
    )
    app.dependency_overrides[get_receipt_service] = lambda: ReceiptService(
        settings, db_manager, stripe_client=stripe_client
    )
    app.dependency_overrides[get_courier_service] = lambda: CourierDispatchService(
        settings, db_manager, notifier=notifier
    )

    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver") as http:
        yield http
    await stripe_client.close()


def bearer(user_id: str = "user-1", secret: str = JWT_SECRET) -> dict:
    token = jwt.encode({"sub": user_id, "aud": "authenticated"}, secret, algorithm="HS256")
    return {"Authorization": f"Bearer {token}"}


async def test_healthz(client):
    response = await client.get("/healthz")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


# ========== Webhook ==========

async def test_webhook_settles_order(client, db_manager):
    body = event_body(merchandise_session(payment_intent="pi_api_webhook"))

    response = await client.post(
        f"{PREFIX}/webhooks/stripe",
        content=body,
        headers={"Stripe-Signature": signed(body), "Content-Type": "application/json"},
    )

    assert response.status_code == 200
    payload = response.json()
    assert payload["ok"] is True
    assert payload["data"]["status"] == "settled"
    assert payload["data"]["purchase_type"] == "merchandise"
    assert "X-Trace-Id" in response.headers
    assert len(await fetch_all(db_manager, Order)) == 1


async def test_webhook_duplicate_is_acknowledged(client):
    body = event_body(merchandise_session(payment_intent="pi_api_dup"))
    headers = {"Stripe-Signature": signed(body)}

    first = await client.post(f"{PREFIX}/webhooks/stripe", content=body, headers=headers)
    second = await client.post(f"{PREFIX}/webhooks/stripe", content=body, headers=headers)

    assert first.status_code == second.status_code == 200
    assert second.json()["data"]["status"] == "duplicate"
    assert second.json()["data"]["order_id"] == first.json()["data"]["order_id"]


async def test_webhook_rejects_bad_signature(client, db_manager):
    body = event_body(merchandise_session(payment_intent="pi_api_forged"))

    response = await client.post(
        f"{PREFIX}/webhooks/stripe", content=body, headers={"Stripe-Signature": signed(body, "whsec_wrong")}
    )

    assert response.status_code == 400
    payload = response.json()
    assert payload["ok"] is False
    assert payload["error"]["code"] == "INVALID_SIGNATURE"
    assert await fetch_all(db_manager, Order) == []


async def test_webhook_requires_signature(client):
    response = await client.post(f"{PREFIX}/webhooks/stripe", content=b"{}")

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "MISSING_SIGNATURE"


async def test_webhook_malformed_payload(client):
    body = b'{"id": "evt_1"}'
    response = await client.post(f"{PREFIX}/webhooks/stripe", content=body, headers={"Stripe-Signature": signed(body)})

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "MALFORMED_EVENT"


# ========== 回跳补单 ==========

async def test_checkout_complete_requires_token(client):
    response = await client.post(f"{PREFIX}/checkout/complete", json={"session_id": "cs_pi_api_return"})

    assert response.status_code == 401


async def test_checkout_complete_rejects_invalid_token(client):
    response = await client.post(
        f"{PREFIX}/checkout/complete",
        json={"session_id": "cs_pi_api_return"},
        headers=bearer(secret="not-the-secret"),
    )

    assert response.status_code == 401
    assert response.json()["error"]["code"] == "INVALID_TOKEN"


async def test_checkout_complete(client):
    response = await client.post(
        f"{PREFIX}/checkout/complete", json={"session_id": "cs_pi_api_return"}, headers=bearer()
    )

    assert response.status_code == 200
    assert response.json()["data"]["status"] == "settled"


async def test_checkout_complete_foreign_session(client):
    response = await client.post(
        f"{PREFIX}/checkout/complete", json={"session_id": "cs_pi_api_return"}, headers=bearer("user-2")
    )

    assert response.status_code == 403


async def test_checkout_complete_validation(client):
    response = await client.post(f"{PREFIX}/checkout/complete", json={}, headers=bearer())

    assert response.status_code == 422
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"


# ========== 收据 ==========

async def test_receipt(client, db_manager):
    order = make_order("user-1", "pi_api_receipt")
    await seed(db_manager, order)

    response = await client.get(f"{PREFIX}/orders/{order.id}/receipt", headers=bearer())

    assert response.status_code == 200
    assert response.json()["data"]["receipt_url"] == "https://pay.stripe.com/receipts/r1"


async def test_receipt_requires_token(client):
    response = await client.get(f"{PREFIX}/orders/1/receipt")
    assert response.status_code == 401


async def test_receipt_foreign_order(client, db_manager):
    order = make_order("user-2", "pi_api_foreign")
    await seed(db_manager, order)

    response = await client.get(f"{PREFIX}/orders/{order.id}/receipt", headers=bearer())

    assert response.status_code == 403


# ========== 发货 ==========

async def test_dispatch_requires_admin_key(client):
    response = await client.post(f"{PREFIX}/orders/1/dispatch", json={"courier": "brt"})
    assert response.status_code == 401

    response = await client.post(
        f"{PREFIX}/orders/1/dispatch", json={"courier": "brt"}, headers={"X-API-Key": "wrong"}
    )
    assert response.status_code == 401


async def test_dispatch_unconfigured_courier(client, db_manager):
    order = make_order("user-1", "pi_api_dispatch")
    await seed(db_manager, order)

    response = await client.post(
        f"{PREFIX}/orders/{order.id}/dispatch", json={"courier": "dhl"}, headers={"X-API-Key": ADMIN_API_KEY}
    )

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["status"] == OrderStatus.MANUAL_REVIEW
    assert data["review_reason"] == "Courier dhl not configured"


async def test_dispatch_missing_order(client):
    response = await client.post(
        f"{PREFIX}/orders/999/dispatch", json={}, headers={"X-API-Key": ADMIN_API_KEY}
    )

    assert response.status_code == 404


async def test_dispatch_shipped_order_conflicts(client, db_manager):
    order = make_order("user-1", "pi_api_shipped", status=OrderStatus.SHIPPED)
    await seed(db_manager, order)

    response = await client.post(
        f"{PREFIX}/orders/{order.id}/dispatch", json={}, headers={"X-API-Key": ADMIN_API_KEY}
    )

    assert response.status_code == 409
    assert response.json()["error"]["code"] == "ORDER_NOT_DISPATCHABLE"


# ========== 应用工厂 ==========

async def test_factory_settings_drive_default_dependencies(settings, db_manager):
    app = create_app(settings, db_manager)
    body = event_body(merchandise_session(payment_intent="pi_api_factory"))

    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver") as http:
        response = await http.post(
            f"{PREFIX}/webhooks/stripe", content=body, headers={"Stripe-Signature": signed(body)}
        )

    assert response.status_code == 200
    assert response.json()["data"]["status"] == "settled"
    assert app.state.db_manager is db_manager
    assert len(await fetch_all(db_manager, Order)) == 1


async def test_factory_settings_drive_admin_key(settings, db_manager):
    app = create_app(settings.model_copy(update={"admin_api_key": "rotated-key"}), db_manager)

    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver") as http:
        stale = await http.post(f"{PREFIX}/orders/999/dispatch", json={}, headers={"X-API-Key": ADMIN_API_KEY})
        current = await http.post(f"{PREFIX}/orders/999/dispatch", json={}, headers={"X-API-Key": "rotated-key"})

    assert stale.status_code == 401
    assert current.status_code == 404


async def test_factory_builds_database_manager_from_settings(settings):
    app = create_app(settings)

    assert app.state.settings is settings
    assert app.state.db_manager.settings is settings


async def test_webhook_non_finite_amount_is_bad_request(client, db_manager):
    body = event_body(merchandise_session(payment_intent="pi_api_inf", userCreditAmount="Infinity"))

    response = await client.post(f"{PREFIX}/webhooks/stripe", content=body, headers={"Stripe-Signature": signed(body)})

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "MALFORMED_EVENT"
    assert await fetch_all(db_manager, Order) == []


async def test_unhandled_error_is_problem_detail(settings, db_manager):
    class ExplodingSettlement:
        async def handle_webhook(self, raw_body, signature_header):
            raise RuntimeError("boom")

    app = create_app(settings, db_manager)
    app.dependency_overrides[get_settlement_service] = lambda: ExplodingSettlement()
    transport = httpx.ASGITransport(app=app, raise_app_exceptions=False)

    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as http:
        response = await http.post(f"{PREFIX}/webhooks/stripe", content=b"{}")

    assert response.status_code == 500
    payload = response.json()
    assert payload["ok"] is False
    assert payload["error"]["code"] == "INTERNAL_SERVER_ERROR"
    assert "boom" not in payload["error"]["detail"]
