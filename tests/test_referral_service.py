"""
推荐转化测试
"""
import asyncio
from decimal import Decimal

import pytest
import pytest_asyncio

from sf_core.models import CreditTransaction, Referral, ReferralStatus, UserCredit, UserReferralCode
from sf_core.models.base import utcnow
from sf_core.services.referral_service import ReferralConversionResolver

from tests.conftest import fetch_all, fetch_one, make_order, seed


def make_referral(referee_id: str = "user-1", referrer_id: str = "ref-1", **fields) -> Referral:
    values = dict(
        referrer_id=referrer_id,
        referee_id=referee_id,
        referral_code="AMICO5",
        status=ReferralStatus.PENDING,
        reward_amount=Decimal("0.00"),
        reward_credited=False,
        ip_address="10.0.0.1",
    )
    values.update(fields)
    return Referral(**values)


@pytest.fixture
def resolver(settings, db_manager) -> ReferralConversionResolver:
    return ReferralConversionResolver(settings, db_manager)


@pytest_asyncio.fixture
async def first_order(db_manager):
    order = make_order("user-1", "pi_first_order")
    await seed(
        db_manager,
        make_referral(),
        UserReferralCode(user_id="ref-1", code="AMICO5", is_active=True,
                         total_referrals=1, total_conversions=0, total_earned=Decimal("0.00")),
        order,
    )
    return order


async def test_first_order_converts_and_rewards(resolver, db_manager, first_order):
    result = await resolver.try_convert("user-1", first_order.id)

    assert result.converted is True
    assert result.reward_credited is True
    assert result.reward_amount == Decimal("5.00")
    assert result.referrer_id == "ref-1"

    referral = await fetch_one(db_manager, Referral, Referral.referee_id == "user-1")
    assert referral.status == ReferralStatus.CONVERTED
    assert referral.converted_order_id == first_order.id

    credit = await fetch_one(db_manager, UserCredit, UserCredit.user_id == "ref-1")
    assert credit.balance == Decimal("5.00")
    transaction = await fetch_one(db_manager, CreditTransaction, CreditTransaction.user_id == "ref-1")
    assert transaction.transaction_type == CreditTransaction.TYPE_REFERRAL_REWARD
    assert transaction.description == f"Bonus referral: ordine #{first_order.order_number}"

    stats = await fetch_one(db_manager, UserReferralCode, UserReferralCode.user_id == "ref-1")
    assert stats.total_conversions == 1
    assert stats.total_earned == Decimal("5.00")


async def test_second_attempt_finds_no_pending_referral(resolver, first_order):
    await resolver.try_convert("user-1", first_order.id)
    again = await resolver.try_convert("user-1", first_order.id)

    assert again.converted is False
    assert again.reason == ReferralConversionResolver.NO_PENDING_REFERRAL


async def test_concurrent_conversions_reward_once(resolver, db_manager, first_order):
    results = await asyncio.gather(*(resolver.try_convert("user-1", first_order.id) for _ in range(5)))

    assert sum(1 for r in results if r.converted) == 1
    credit = await fetch_one(db_manager, UserCredit, UserCredit.user_id == "ref-1")
    assert credit.balance == Decimal("5.00")
    assert len(await fetch_all(db_manager, CreditTransaction)) == 1


async def test_minimum_order_converts_without_reward(resolver, db_manager):
    order = make_order("user-1", "pi_small", subtotal=Decimal("20.00"), total=Decimal("25.00"))
    await seed(db_manager, make_referral(), order)

    result = await resolver.try_convert("user-1", order.id)

    assert result.converted is True
    assert result.reward_credited is False
    assert result.reason == ReferralConversionResolver.MINIMUM_ORDER_NOT_MET
    assert await fetch_all(db_manager, UserCredit) == []


async def test_ip_daily_limit(resolver, db_manager):
    earlier = [
        make_referral(referee_id=f"old-{i}", status=ReferralStatus.CONVERTED, reward_credited=True,
                      reward_amount=Decimal("5.00"), converted_at=utcnow())
        for i in range(3)
    ]
    order = make_order("user-1", "pi_ip_limit")
    await seed(db_manager, make_referral(), order, *earlier)

    result = await resolver.try_convert("user-1", order.id)

    assert result.converted is True
    assert result.reward_credited is False
    assert result.reason == ReferralConversionResolver.IP_LIMIT_EXCEEDED


async def test_not_first_order(resolver, db_manager):
    previous = make_order("user-1", "pi_previous", order_number="MF-PREV-0001")
    order = make_order("user-1", "pi_current", order_number="MF-CURR-0001")
    await seed(db_manager, make_referral(), previous, order)

    result = await resolver.try_convert("user-1", order.id)

    assert result.converted is False
    assert result.reason == ReferralConversionResolver.NOT_FIRST_ORDER
    referral = await fetch_one(db_manager, Referral, Referral.referee_id == "user-1")
    assert referral.status == ReferralStatus.PENDING


async def test_gift_card_orders_do_not_count_as_first_order(resolver, db_manager):
    gift_order = make_order("user-1", "pi_gift", order_number="MF-GIFT-0001", is_digital=True,
                            shipping_cost=Decimal("0.00"), total=Decimal("50.00"))
    order = make_order("user-1", "pi_merch", order_number="MF-MERC-0001")
    await seed(db_manager, make_referral(), gift_order, order)

    result = await resolver.try_convert("user-1", order.id)

    assert result.converted is True


async def test_self_referral_rejected(resolver, db_manager):
    order = make_order("user-1", "pi_self")
    await seed(db_manager, make_referral(referrer_id="user-1"), order)

    result = await resolver.try_convert("user-1", order.id)

    assert result.converted is False
    assert result.reason == ReferralConversionResolver.SELF_REFERRAL


async def test_order_of_another_user(resolver, db_manager):
    order = make_order("someone-else", "pi_foreign")
    await seed(db_manager, make_referral(), order)

    result = await resolver.try_convert("user-1", order.id)

    assert result.converted is False
    assert result.reason == ReferralConversionResolver.ORDER_NOT_FOUND
