"""
促销使用计数测试
"""
import asyncio
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from sf_core.models import Promotion, PromotionRedemption
from sf_core.services.promotion_service import PromotionService

from tests.conftest import fetch_all, fetch_one, seed


def make_promotion(code: str, **fields) -> Promotion:
    values = dict(
        name=f"Promo {code}",
        code=code,
        discount_type="percentage",
        discount_value=Decimal("10.00"),
        min_purchase=Decimal("0.00"),
        usage_count=0,
        applies_to="all",
        applies_to_ids=[],
        is_active=True,
    )
    values.update(fields)
    return Promotion(**values)


@pytest.fixture
def promotions(settings, db_manager) -> PromotionService:
    return PromotionService(settings, db_manager)


async def test_redeem_counts_once_per_order(promotions, db_manager):
    await seed(db_manager, make_promotion("ESTATE10"))

    assert await promotions.redeem("estate10", order_id=1, user_id="user-1") is True
    with pytest.raises(IntegrityError):
        # 同一订单重复兑换：兑换记录唯一约束使事务回滚
        await promotions.redeem("ESTATE10", order_id=1, user_id="user-1")

    promotion = await fetch_one(db_manager, Promotion, Promotion.code == "ESTATE10")
    assert promotion.usage_count == 1
    assert len(await fetch_all(db_manager, PromotionRedemption)) == 1


async def test_unknown_or_inactive_code(promotions, db_manager):
    await seed(db_manager, make_promotion("OLD", is_active=False))

    assert await promotions.redeem("MISSING", order_id=1) is False
    assert await promotions.redeem("OLD", order_id=1) is False


async def test_per_user_limit(promotions, db_manager):
    await seed(db_manager, make_promotion("WELCOME15", per_user_limit=1))

    assert await promotions.redeem("WELCOME15", order_id=1, user_id="user-1") is True
    assert await promotions.redeem("WELCOME15", order_id=2, user_id="user-1") is False
    assert await promotions.redeem("WELCOME15", order_id=3, user_id="user-2") is True


async def test_usage_limit_holds_under_concurrency(promotions, db_manager):
    await seed(db_manager, make_promotion("LAST1", usage_limit=1))

    results = await asyncio.gather(
        *(promotions.redeem("LAST1", order_id=order_id, user_id=f"user-{order_id}") for order_id in range(1, 6))
    )

    assert results.count(True) == 1
    promotion = await fetch_one(db_manager, Promotion, Promotion.code == "LAST1")
    assert promotion.usage_count == 1
    assert len(await fetch_all(db_manager, PromotionRedemption)) == 1
