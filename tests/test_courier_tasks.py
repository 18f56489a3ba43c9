"""
发货任务测试
"""
import asyncio
import json
from datetime import timedelta
from decimal import Decimal
from typing import List

import httpx
import pytest

from sf_core.models import Order, OrderItem, OrderStatus
from sf_core.models.base import utcnow
from sf_core.services.courier_client import CourierClient
from sf_core.services.courier_service import CourierDispatchService
from sf_core.services.notification_service import OrderEmailNotifier
from sf_core.tasks import courier_tasks
from sf_core.tasks.courier_tasks import _dispatch_confirmed_async, _submit_order_async, dispatch_confirmed

from tests.conftest import fetch_one, make_order, seed


@pytest.fixture
def dispatch_settings(settings):
    return settings.model_copy(update={
        "brt_api_key": "brt-key",
        "brt_api_url": "https://brt.test/v1",
        "courier_auto_dispatch_enabled": True,
        "courier_dispatch_grace_minutes": 30,
        "courier_dispatch_batch_size": 2,
    })


class ShipmentRecorder:
    """按顺序记录运单请求并返回递增的运单号"""

    def __init__(self):
        self.references: List[str] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        reference = json.loads(request.content)["reference"]
        self.references.append(reference)
        return httpx.Response(201, json={"trackingNumber": f"BRT{len(self.references):06d}"})


def build_service(settings, db_manager, notifier, handler) -> CourierDispatchService:
    transport = httpx.MockTransport(handler)
    return CourierDispatchService(
        settings,
        db_manager,
        client=CourierClient(timeout=5, transport=transport),
        notifier=notifier,
        email_notifier=OrderEmailNotifier(settings, transport=transport),
    )


async def seed_order(db_manager, payment_id: str, age: timedelta, **fields) -> Order:
    order = make_order("user-1", payment_id, created_at=utcnow() - age, **fields)
    await seed(db_manager, order)
    await seed(db_manager, OrderItem(order_id=order.id, product_id="prod-1", product_name="Miele",
                                     product_price=Decimal("25.00"), quantity=1, weight_grams=500,
                                     unit_measure="kg"))
    return order


async def test_dispatch_task_disabled_by_default(settings, monkeypatch):
    monkeypatch.setattr(courier_tasks, "get_settings", lambda: settings)

    # 任务内部自建事件循环，放到独立线程执行
    result = await asyncio.to_thread(dispatch_confirmed.apply)

    assert result.get() == {"skipped": True}


async def test_dispatch_confirmed_ships_oldest_batch(dispatch_settings, db_manager, notifier):
    oldest = await seed_order(db_manager, "pi_batch_aa", timedelta(hours=3))
    older = await seed_order(db_manager, "pi_batch_bb", timedelta(hours=2))
    waiting = await seed_order(db_manager, "pi_batch_cc", timedelta(hours=1))
    fresh = await seed_order(db_manager, "pi_batch_dd", timedelta(minutes=5))
    await seed_order(db_manager, "pi_batch_ee", timedelta(hours=4), status=OrderStatus.SHIPPED)
    await seed_order(db_manager, "pi_batch_ff", timedelta(hours=4), is_digital=True)
    recorder = ShipmentRecorder()
    service = build_service(dispatch_settings, db_manager, notifier, recorder)

    counts = await _dispatch_confirmed_async(service, dispatch_settings)

    assert counts == {"shipped": 2, "manual_review": 0, "skipped": 0}
    assert recorder.references == [oldest.order_number, older.order_number]
    for order in (oldest, older):
        stored = await fetch_one(db_manager, Order, Order.id == order.id)
        assert stored.status == OrderStatus.SHIPPED
        assert stored.tracking_number.startswith("BRT")
    for order in (waiting, fresh):
        stored = await fetch_one(db_manager, Order, Order.id == order.id)
        assert stored.status == OrderStatus.CONFIRMED


async def test_dispatch_confirmed_counts_manual_review(dispatch_settings, db_manager, notifier):
    first = await seed_order(db_manager, "pi_review_a", timedelta(hours=2))
    second = await seed_order(db_manager, "pi_review_b", timedelta(hours=1))
    service = build_service(
        dispatch_settings, db_manager, notifier, lambda request: httpx.Response(503, json={"error": "down"})
    )

    counts = await _dispatch_confirmed_async(service, dispatch_settings)

    assert counts == {"shipped": 0, "manual_review": 2, "skipped": 0}
    for order in (first, second):
        stored = await fetch_one(db_manager, Order, Order.id == order.id)
        assert stored.status == OrderStatus.MANUAL_REVIEW
        assert stored.review_reason.startswith("Courier API error")


async def test_dispatch_confirmed_skips_orders_that_changed(dispatch_settings, db_manager, notifier):
    shipped = await seed_order(db_manager, "pi_stale_a", timedelta(hours=2), status=OrderStatus.SHIPPED)
    pending = await seed_order(db_manager, "pi_stale_b", timedelta(hours=1))

    class StaleStore:
        """查询结果早于并发的状态变更"""

        async def list_confirmed_order_ids(self, session, created_before, limit=20):
            return [shipped.id, 999999, pending.id]

    recorder = ShipmentRecorder()
    service = build_service(dispatch_settings, db_manager, notifier, recorder)

    counts = await _dispatch_confirmed_async(service, dispatch_settings, store=StaleStore())

    assert counts == {"shipped": 1, "manual_review": 0, "skipped": 2}
    assert recorder.references == [pending.order_number]


async def test_submit_order_reports_result(dispatch_settings, db_manager, notifier):
    order = await seed_order(db_manager, "pi_queue_a", timedelta(hours=1))
    service = build_service(dispatch_settings, db_manager, notifier, ShipmentRecorder())

    result = await _submit_order_async(service, order.id, "brt")

    assert result["success"] is True
    assert result["data"]["tracking_number"] == "BRT000001"
    assert result["error"] is None


async def test_submit_order_reports_manual_review(settings, db_manager, notifier):
    order = await seed_order(db_manager, "pi_queue_b", timedelta(hours=1))
    service = build_service(settings, db_manager, notifier, ShipmentRecorder())

    result = await _submit_order_async(service, order.id, "gls")

    assert result["success"] is False
    assert result["error"] == "Courier gls not configured"
    assert result["metadata"]["status"] == OrderStatus.MANUAL_REVIEW
