# tests/unit/services/test_stock_service.py
import pytest

from storecore.core.exceptions import TenantRequiredError
from storecore.models import StoreConfig
from storecore.services.stock_service import StockService
from tests.factories import STORE_A, STORE_B, create_product
from tests.mocks import MockDispatcher


@pytest.mark.asyncio
async def test_threshold_defaults_then_persists(stock_service, stores):
    assert await stock_service.get_low_stock_threshold(STORE_A) == 5

    await stock_service.set_low_stock_threshold(STORE_A, 12)
    await stock_service.set_low_stock_threshold(STORE_A, 8)

    assert await stock_service.get_low_stock_threshold(STORE_A) == 8
    assert await stock_service.get_low_stock_threshold(STORE_B) == 5


@pytest.mark.asyncio
async def test_threshold_validation(stock_service, stores):
    with pytest.raises(ValueError):
        await stock_service.set_low_stock_threshold(STORE_A, -1)
    with pytest.raises(TenantRequiredError):
        await stock_service.set_low_stock_threshold(None, 3)


@pytest.mark.asyncio
async def test_unparsable_threshold_falls_back_to_default(stock_service, session_factory, stores):
    async with session_factory() as session:
        async with session.begin():
            session.add(StoreConfig(store_id=STORE_A, key="low_stock_threshold", value="lots"))

    assert await stock_service.get_low_stock_threshold(STORE_A) == 5


@pytest.mark.asyncio
async def test_low_and_out_of_stock_lists(stock_service, session_factory, stores):
    await create_product(session_factory, STORE_A, name="Two", stock=2)
    await create_product(session_factory, STORE_A, name="Five", stock=5)
    await create_product(session_factory, STORE_A, name="Plenty", stock=50)
    await create_product(session_factory, STORE_A, name="Gone", stock=0)
    await create_product(session_factory, STORE_B, name="Other", stock=1)

    low = await stock_service.get_low_stock_products(STORE_A)
    out = await stock_service.get_out_of_stock_products(STORE_A)

    assert [p.name for p in low] == ["Two", "Five"]
    assert [p.name for p in out] == ["Gone"]
    assert out[0].stock_status == "Out of stock"


@pytest.mark.asyncio
async def test_stock_summary(stock_service, session_factory, stores):
    await create_product(session_factory, STORE_A, stock=2, price=100)
    await create_product(session_factory, STORE_A, stock=10, price=50)
    await create_product(session_factory, STORE_A, stock=0, price=999)
    await create_product(session_factory, STORE_B, stock=100, price=100)

    summary = await stock_service.get_stock_summary(STORE_A)

    assert summary.total_products == 3
    assert summary.in_stock == 1
    assert summary.low_stock == 1
    assert summary.out_of_stock == 1
    assert summary.total_stock_value == 2 * 100 + 10 * 50
    assert summary.threshold == 5


@pytest.mark.asyncio
async def test_summary_of_empty_store(stock_service, stores):
    summary = await stock_service.get_stock_summary(STORE_A)
    assert summary.total_products == 0
    assert summary.total_stock_value == 0


@pytest.mark.asyncio
async def test_movements_are_scoped_and_filterable(stock_service, product_service, session_factory, stores):
    a = await create_product(session_factory, STORE_A, stock=10)
    b = await create_product(session_factory, STORE_A, stock=10)
    other = await create_product(session_factory, STORE_B, stock=10)
    await product_service.decrement_stock(STORE_A, a, 1)
    await product_service.decrement_stock(STORE_A, b, 1)
    await product_service.decrement_stock(STORE_B, other, 1)

    all_a = await stock_service.get_stock_movements(STORE_A)
    only_b = await stock_service.get_stock_movements(STORE_A, product_id=b)

    assert {m.product_id for m in all_a} == {a, b}
    assert [m.product_id for m in only_b] == [b]
    assert await stock_service.get_stock_movements(None) == []


# --- low stock digest ---

@pytest.mark.asyncio
async def test_digest_with_nothing_low_queues_nothing(stock_service, dispatcher, session_factory, stores):
    await create_product(session_factory, STORE_A, stock=50)
    await create_product(session_factory, STORE_A, stock=0)

    digest = await stock_service.send_low_stock_digest(STORE_A)

    assert digest.sent is False
    assert digest.products_count == 0
    assert dispatcher.messages == []


@pytest.mark.asyncio
async def test_digest_queues_one_alert_for_the_owner(stock_service, dispatcher, session_factory, stores):
    await create_product(session_factory, STORE_A, name="Candle", stock=2)
    await create_product(session_factory, STORE_A, name="Mug", stock=4)
    await create_product(session_factory, STORE_A, name="Plenty", stock=40)
    await create_product(session_factory, STORE_B, name="Elsewhere", stock=1)

    digest = await stock_service.send_low_stock_digest(STORE_A)

    assert digest.sent is True
    assert digest.products_count == 2
    [alert] = dispatcher.messages
    assert alert.store_id == STORE_A
    assert alert.recipient == "owner-a@test.local"
    assert alert.threshold == 5
    assert [(p.name, p.stock) for p in alert.products] == [("Candle", 2), ("Mug", 4)]


@pytest.mark.asyncio
async def test_digest_reports_unsent_when_queue_is_full(session_factory, stores):
    await create_product(session_factory, STORE_A, stock=1)
    refusing = MockDispatcher(accept=False)
    service = StockService(session_factory=session_factory, default_threshold=5, dispatcher=refusing)

    digest = await service.send_low_stock_digest(STORE_A, recipient="buyer@test.local")

    assert digest.sent is False
    assert digest.products_count == 1


@pytest.mark.asyncio
async def test_digest_caps_at_fifty_products(stock_service, dispatcher, session_factory, stores):
    for _ in range(55):
        await create_product(session_factory, STORE_A, stock=1)

    digest = await stock_service.send_low_stock_digest(STORE_A)

    assert digest.products_count == 50
    assert len(dispatcher.messages[0].products) == 50


@pytest.mark.asyncio
async def test_digest_requires_tenant(stock_service):
    with pytest.raises(TenantRequiredError):
        await stock_service.send_low_stock_digest(None)
