"""
SettlementStore 查询测试
"""
from datetime import timedelta

from sf_core.models import OrderStatus
from sf_core.models.base import utcnow
from sf_core.services.store import SettlementStore

from tests.conftest import make_order, seed


async def test_list_confirmed_order_ids_filters_and_orders(db_manager):
    now = utcnow()
    oldest = make_order("user-1", "pi_store_old", created_at=now - timedelta(hours=3))
    older = make_order("user-2", "pi_store_mid", created_at=now - timedelta(hours=2))
    recent = make_order("user-3", "pi_store_new", created_at=now - timedelta(minutes=5))
    shipped = make_order("user-4", "pi_store_shp", status=OrderStatus.SHIPPED, created_at=now - timedelta(hours=4))
    digital = make_order("user-5", "pi_store_dig", is_digital=True, created_at=now - timedelta(hours=4))
    await seed(db_manager, oldest, older, recent, shipped, digital)

    store = SettlementStore()
    async with db_manager.get_session() as session:
        ids = await store.list_confirmed_order_ids(session, created_before=now - timedelta(minutes=30))

    assert ids == [oldest.id, older.id]


async def test_list_confirmed_order_ids_respects_limit(db_manager):
    now = utcnow()
    orders = [
        make_order(f"user-{i}", f"pi_store_lim{i}", created_at=now - timedelta(hours=10 - i))
        for i in range(3)
    ]
    await seed(db_manager, *orders)

    async with db_manager.get_session() as session:
        ids = await SettlementStore().list_confirmed_order_ids(session, created_before=now, limit=2)

    assert ids == [orders[0].id, orders[1].id]
