"""
Pytest 配置和 fixtures
"""
import json
from datetime import timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio
from sqlalchemy import select

from sf_core.config import Settings
from sf_core.database import DatabaseManager
from sf_core.models import GiftCard, Order, OrderStatus
from sf_core.models.base import utcnow
from sf_core.services.notification_service import TelegramNotifier
from sf_core.tasks.background import drain_background_tasks
from sf_core.utils.signatures import sign_payload

WEBHOOK_SECRET = "whsec_test_secret"
JWT_SECRET = "test-jwt-secret"
ADMIN_API_KEY = "test-admin-key"


class RecordingNotifier(TelegramNotifier):
    """记录消息而不发送的通知器"""

    def __init__(self, settings: Settings):
        super().__init__(settings)
        self.messages: List[str] = []

    async def notify(self, message: str) -> None:
        self.messages.append(message)


@pytest.fixture
def settings(tmp_path) -> Settings:
    """测试配置：临时 SQLite 数据库，外部服务全部未配置"""
    return Settings(
        _env_file=None,
        db_url=f"sqlite+aiosqlite:///{tmp_path / 'settleflow_test.db'}",
        stripe_webhook_secret=WEBHOOK_SECRET,
        stripe_secret_key="sk_test_123",
        stripe_api_base="https://stripe.test",
        jwt_secret=JWT_SECRET,
        admin_api_key=ADMIN_API_KEY,
        telegram_bot_token=None,
        telegram_chat_id=None,
        order_email_endpoint=None,
        brt_api_key=None,
        dhl_api_key=None,
        gls_api_key=None,
        side_effect_timeout_seconds=5,
        log_format="console",
    )


@pytest_asyncio.fixture
async def db_manager(settings):
    """数据库管理器 fixture，每个测试重建表"""
    manager = DatabaseManager(settings)
    await manager.create_tables()

    yield manager

    await manager.drop_tables()
    await manager.close()


@pytest_asyncio.fixture(autouse=True)
async def drain_background():
    """测试结束前等待后台通知"""
    yield
    await drain_background_tasks(timeout=5)


@pytest.fixture
def notifier(settings) -> RecordingNotifier:
    return RecordingNotifier(settings)


# ========== 数据辅助函数 ==========

async def seed(db_manager: DatabaseManager, *objects: Any) -> None:
    """在独立事务中写入测试数据"""
    async with db_manager.get_transaction() as session:
        session.add_all(objects)


async def fetch_all(db_manager: DatabaseManager, model, *criteria) -> list:
    async with db_manager.get_session() as session:
        result = await session.execute(select(model).where(*criteria))
        return list(result.scalars().all())


async def fetch_one(db_manager: DatabaseManager, model, *criteria):
    rows = await fetch_all(db_manager, model, *criteria)
    assert len(rows) == 1, f"expected exactly one {model.__name__}, got {len(rows)}"
    return rows[0]


def make_gift_card(code: str, amount: str, balance: Optional[str] = None, **fields: Any) -> GiftCard:
    amount_value = Decimal(amount)
    balance_value = Decimal(balance) if balance is not None else amount_value
    values = dict(
        code=code,
        redemption_token=f"token-{code}",
        amount=amount_value,
        balance=balance_value,
        is_active=balance_value > 0,
        template="elegant",
        version=0,
        expires_at=utcnow() + timedelta(days=365),
    )
    values.update(fields)
    return GiftCard(**values)


def make_order(user_id: str, payment_id: str, order_number: Optional[str] = None, **fields: Any) -> Order:
    values = dict(
        order_number=order_number or f"MF-TEST-{payment_id[-6:].upper()}",
        user_id=user_id,
        status=OrderStatus.CONFIRMED,
        subtotal=Decimal("50.00"),
        discount=Decimal("0.00"),
        shipping_cost=Decimal("5.00"),
        total=Decimal("55.00"),
        payment_provider="stripe",
        payment_id=payment_id,
        payment_status="completed",
        is_digital=False,
        shipping_address={
            "firstName": "Mario",
            "lastName": "Rossi",
            "address": "Via Roma 1",
            "city": "Milano",
            "postalCode": "20100",
            "province": "MI",
            "phone": "3331234567",
            "country": "IT",
        },
    )
    values.update(fields)
    return Order(**values)


# ========== Stripe 事件构造 ==========

def merchandise_session(
    payment_intent: str = "pi_merch_1",
    user_id: str = "user-1",
    subtotal_cents: int = 5000,
    shipping_cents: int = 500,
    total_cents: int = 5500,
    items: Optional[List[Dict[str, Any]]] = None,
    **metadata: Any,
) -> Dict[str, Any]:
    """商品订单 checkout session"""
    meta = {
        "userId": user_id,
        "itemsJson": json.dumps(items or [
            {"productId": "prod-1", "name": "Miele di acacia", "price": "25.00", "quantity": 2, "weight_grams": 500},
        ]),
        "shippingAddress": json.dumps({
            "firstName": "Mario",
            "lastName": "Rossi",
            "address": "Via Roma 1",
            "city": "Milano",
            "postalCode": "20100",
            "province": "MI",
            "phone": "3331234567",
        }),
    }
    meta.update({key: str(value) for key, value in metadata.items()})
    return {
        "id": f"cs_{payment_intent}",
        "object": "checkout.session",
        "payment_intent": payment_intent,
        "payment_status": "paid",
        "amount_subtotal": subtotal_cents,
        "amount_total": total_cents,
        "shipping_cost": {"amount_total": shipping_cents},
        "metadata": meta,
    }


def gift_card_session(
    payment_intent: str = "pi_gift_1",
    user_id: str = "user-1",
    total_cents: int = 5000,
    **metadata: Any,
) -> Dict[str, Any]:
    """礼品卡 checkout session"""
    meta = {
        "type": "gift_card",
        "userId": user_id,
        "recipientName": "Giulia",
        "recipientEmail": "giulia@example.com",
        "senderName": "Marco",
        "giftCardMessage": "Buon compleanno!",
        "template": "birthday",
    }
    meta.update({key: str(value) for key, value in metadata.items()})
    return {
        "id": f"cs_{payment_intent}",
        "object": "checkout.session",
        "payment_intent": payment_intent,
        "payment_status": "paid",
        "amount_subtotal": total_cents,
        "amount_total": total_cents,
        "metadata": meta,
    }


def event_body(session_object: Dict[str, Any], event_type: str = "checkout.session.completed",
               event_id: str = "evt_test_1") -> bytes:
    return json.dumps({
        "id": event_id,
        "object": "event",
        "type": event_type,
        "data": {"object": session_object},
    }).encode("utf-8")


def signed(body: bytes, secret: str = WEBHOOK_SECRET) -> str:
    return sign_payload(body, secret)
