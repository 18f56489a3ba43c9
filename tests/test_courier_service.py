"""
快递发货测试
"""
import json
from decimal import Decimal
from typing import List

import httpx
import pytest

from sf_core.models import AuditLog, Order, OrderItem, OrderStatus
from sf_core.services.courier_client import CourierClient
from sf_core.services.courier_service import CourierDispatchService
from sf_core.services.notification_service import OrderEmailNotifier
from sf_core.tasks.background import drain_background_tasks
from sf_core.utils.errors import ConflictError, NotFoundError

from tests.conftest import fetch_all, fetch_one, make_order, seed


@pytest.fixture
def courier_settings(settings):
    return settings.model_copy(update={
        "brt_api_key": "brt-key",
        "brt_api_url": "https://brt.test/v1",
        "order_email_endpoint": "https://mail.test/send-order-email",
    })


class CourierStub:
    """记录请求的承运商 / 邮件接口"""

    def __init__(self, response: httpx.Response = None, error: Exception = None):
        self.response = response or httpx.Response(201, json={"trackingNumber": "BRT000123"})
        self.error = error
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.host == "mail.test":
            return httpx.Response(200, json={"ok": True})
        if self.error is not None:
            raise self.error
        return self.response

    @property
    def shipment_requests(self) -> List[httpx.Request]:
        return [r for r in self.requests if r.url.host != "mail.test"]

    @property
    def email_requests(self) -> List[httpx.Request]:
        return [r for r in self.requests if r.url.host == "mail.test"]


def build_service(settings, db_manager, notifier, stub: CourierStub) -> CourierDispatchService:
    transport = httpx.MockTransport(stub)
    return CourierDispatchService(
        settings,
        db_manager,
        client=CourierClient(timeout=5, transport=transport),
        notifier=notifier,
        email_notifier=OrderEmailNotifier(settings, transport=transport),
    )


async def seed_order(db_manager, payment_id="pi_ship", **fields) -> Order:
    order = make_order("user-1", payment_id, **fields)
    await seed(db_manager, order)
    await seed(db_manager, OrderItem(order_id=order.id, product_id="prod-1", product_name="Miele",
                                     product_price=Decimal("25.00"), quantity=2, weight_grams=1500,
                                     unit_measure="kg"))
    return order


async def test_successful_dispatch(courier_settings, db_manager, notifier):
    order = await seed_order(db_manager)
    stub = CourierStub()
    service = build_service(courier_settings, db_manager, notifier, stub)

    result = await service.submit(order.id, "BRT")

    assert result.success is True
    assert result.data["tracking_number"] == "BRT000123"
    assert result.data["courier"] == "brt"

    stored = await fetch_one(db_manager, Order, Order.id == order.id)
    assert stored.status == OrderStatus.SHIPPED
    assert stored.tracking_number == "BRT000123"
    assert stored.shipped_at is not None

    request = stub.shipment_requests[0]
    assert str(request.url) == "https://brt.test/v1/shipments"
    assert request.headers["Authorization"] == "Bearer brt-key"
    payload = json.loads(request.content)
    assert payload["reference"] == order.order_number
    assert payload["recipient"]["city"] == "Milano"
    assert payload["parcels"][0]["weight"] == 1.5

    audit = await fetch_one(db_manager, AuditLog, AuditLog.action == "order_shipped")
    assert audit.details["tracking_number"] == "BRT000123"

    await drain_background_tasks()
    email = stub.email_requests[0]
    assert json.loads(email.content) == {"orderId": order.id, "status": "shipped"}


async def test_unconfigured_courier_goes_to_manual_review(courier_settings, db_manager, notifier):
    order = await seed_order(db_manager)
    stub = CourierStub()
    service = build_service(courier_settings, db_manager, notifier, stub)

    result = await service.submit(order.id, "gls")

    assert result.success is False
    assert result.error_code == "MANUAL_REVIEW"
    assert result.error == "Courier gls not configured"
    assert stub.shipment_requests == []

    stored = await fetch_one(db_manager, Order, Order.id == order.id)
    assert stored.status == OrderStatus.MANUAL_REVIEW
    assert stored.review_reason == "Courier gls not configured"

    await drain_background_tasks()
    assert any("REVISIONE MANUALE" in message for message in notifier.messages)


@pytest.mark.parametrize("stub", [
    CourierStub(response=httpx.Response(500, text="upstream exploded")),
    CourierStub(response=httpx.Response(200, json={"status": "created"})),
    CourierStub(response=httpx.Response(200, text="<html>")),
    CourierStub(error=httpx.ConnectError("connection refused")),
])
async def test_courier_failures_go_to_manual_review(courier_settings, db_manager, notifier, stub):
    order = await seed_order(db_manager)
    service = build_service(courier_settings, db_manager, notifier, stub)

    result = await service.submit(order.id)

    assert result.success is False
    assert result.error.startswith("Courier API error:")
    stored = await fetch_one(db_manager, Order, Order.id == order.id)
    assert stored.status == OrderStatus.MANUAL_REVIEW
    assert stored.tracking_number is None
    assert len(await fetch_all(db_manager, AuditLog, AuditLog.action == "manual_review")) == 1


async def test_manual_review_can_be_retried(courier_settings, db_manager, notifier):
    order = await seed_order(db_manager, status=OrderStatus.MANUAL_REVIEW, review_reason="Courier API error: HTTP 500")
    service = build_service(courier_settings, db_manager, notifier, CourierStub())

    result = await service.submit(order.id)

    assert result.success is True
    stored = await fetch_one(db_manager, Order, Order.id == order.id)
    assert stored.status == OrderStatus.SHIPPED
    assert stored.review_reason is None


async def test_shipped_order_not_dispatchable(courier_settings, db_manager, notifier):
    order = await seed_order(db_manager, status=OrderStatus.SHIPPED, tracking_number="OLD1")
    stub = CourierStub()
    service = build_service(courier_settings, db_manager, notifier, stub)

    with pytest.raises(ConflictError) as exc_info:
        await service.submit(order.id)

    assert exc_info.value.code == "ORDER_NOT_DISPATCHABLE"
    assert stub.requests == []


async def test_digital_order_not_shippable(courier_settings, db_manager, notifier):
    order = await seed_order(db_manager, is_digital=True)
    service = build_service(courier_settings, db_manager, notifier, CourierStub())

    with pytest.raises(ConflictError) as exc_info:
        await service.submit(order.id)

    assert exc_info.value.code == "ORDER_NOT_SHIPPABLE"


async def test_missing_order(courier_settings, db_manager, notifier):
    service = build_service(courier_settings, db_manager, notifier, CourierStub())

    with pytest.raises(NotFoundError):
        await service.submit(999)
