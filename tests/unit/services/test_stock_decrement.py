# tests/unit/services/test_stock_decrement.py
import pytest

from storecore.core.enums import DecrementOutcome
from storecore.schemas.notifications import LowStockAlert
from storecore.schemas.stock import StockItemRequest
from tests.factories import STORE_A, STORE_B, create_product, get_product_row


def item(product_id, quantity=1, variant=None):
    return StockItemRequest(product_id=product_id, quantity=quantity, variant=variant)


# --- decrement_stock ---

@pytest.mark.asyncio
async def test_decrement_applies_and_records_movement(product_service, stock_service, session_factory, stores):
    product_id = await create_product(session_factory, STORE_A, stock=10)

    result = await product_service.decrement_stock(STORE_A, product_id, 3, order_id="order-1")

    assert result
    assert result.outcome == DecrementOutcome.APPLIED
    assert result.remaining == 7
    assert (await get_product_row(session_factory, product_id)).stock == 7

    movements = await stock_service.get_stock_movements(STORE_A, product_id=product_id)
    assert len(movements) == 1
    assert (movements[0].delta, movements[0].previous_stock, movements[0].new_stock) == (-3, 10, 7)
    assert movements[0].reason == "sale"
    assert movements[0].order_id == "order-1"


@pytest.mark.asyncio
async def test_decrement_to_exactly_zero(product_service, session_factory, stores):
    product_id = await create_product(session_factory, STORE_A, stock=2)

    result = await product_service.decrement_stock(STORE_A, product_id, 2)

    assert result.remaining == 0
    assert (await get_product_row(session_factory, product_id)).stock == 0


@pytest.mark.asyncio
async def test_insufficient_stock_changes_nothing(product_service, stock_service, session_factory, stores):
    product_id = await create_product(session_factory, STORE_A, stock=2)

    result = await product_service.decrement_stock(STORE_A, product_id, 3)

    assert not result
    assert result.outcome == DecrementOutcome.INSUFFICIENT_STOCK
    assert result.remaining == 2
    assert (await get_product_row(session_factory, product_id)).stock == 2
    assert await stock_service.get_stock_movements(STORE_A) == []


@pytest.mark.asyncio
async def test_decrement_unknown_product(product_service, stores):
    result = await product_service.decrement_stock(STORE_A, "ghost", 1)
    assert result.outcome == DecrementOutcome.NOT_FOUND
    assert result.remaining is None


@pytest.mark.asyncio
async def test_decrement_other_stores_product_is_not_found(product_service, session_factory, stores):
    product_id = await create_product(session_factory, STORE_B, stock=10)

    result = await product_service.decrement_stock(STORE_A, product_id, 1)

    assert result.outcome == DecrementOutcome.NOT_FOUND
    assert (await get_product_row(session_factory, product_id)).stock == 10


@pytest.mark.asyncio
async def test_decrement_without_tenant_is_not_found(product_service, session_factory, stores):
    product_id = await create_product(session_factory, STORE_A, stock=10)

    result = await product_service.decrement_stock(None, product_id, 1)

    assert result.outcome == DecrementOutcome.NOT_FOUND
    assert (await get_product_row(session_factory, product_id)).stock == 10


@pytest.mark.asyncio
@pytest.mark.parametrize("quantity", [0, -1])
async def test_decrement_rejects_non_positive_quantity(product_service, quantity):
    with pytest.raises(ValueError):
        await product_service.decrement_stock(STORE_A, "any", quantity)


@pytest.mark.asyncio
async def test_variant_tracked_product_requires_variant(product_service, session_factory, stores):
    product_id = await create_product(session_factory, STORE_A, stock=5, variants_stock={"Red": 2, "Blue": 3})

    result = await product_service.decrement_stock(STORE_A, product_id, 1)

    assert result.outcome == DecrementOutcome.VARIANT_REQUIRED
    assert (await get_product_row(session_factory, product_id)).stock == 5


@pytest.mark.asyncio
async def test_variant_decrement_keeps_sum_invariant(product_service, session_factory, stores):
    product_id = await create_product(session_factory, STORE_A, stock=5, variants_stock={"Red": 2, "Blue": 3})

    result = await product_service.decrement_stock(STORE_A, product_id, 2, variant="Blue")

    assert result
    assert result.remaining == 1
    row = await get_product_row(session_factory, product_id)
    assert row.variants_stock == {"Red": 2, "Blue": 1}
    assert row.stock == 3
    assert sum(row.variants_stock.values()) == row.stock


@pytest.mark.asyncio
async def test_unknown_or_short_variant_is_insufficient(product_service, session_factory, stores):
    product_id = await create_product(session_factory, STORE_A, stock=5, variants_stock={"Red": 2, "Blue": 3})

    unknown = await product_service.decrement_stock(STORE_A, product_id, 1, variant="Green")
    short = await product_service.decrement_stock(STORE_A, product_id, 3, variant="Red")

    assert unknown.outcome == DecrementOutcome.INSUFFICIENT_STOCK
    assert short.outcome == DecrementOutcome.INSUFFICIENT_STOCK
    assert short.remaining == 2
    row = await get_product_row(session_factory, product_id)
    assert row.variants_stock == {"Red": 2, "Blue": 3}


@pytest.mark.asyncio
async def test_variant_label_on_plain_product_uses_scalar_stock(product_service, session_factory, stores):
    product_id = await create_product(session_factory, STORE_A, stock=4)

    result = await product_service.decrement_stock(STORE_A, product_id, 1, variant="Red")

    assert result
    assert (await get_product_row(session_factory, product_id)).stock == 3


@pytest.mark.asyncio
async def test_decrement_invalidates_cached_reads(product_service, session_factory, stores):
    product_id = await create_product(session_factory, STORE_A, stock=10)
    assert (await product_service.get_product(STORE_A, product_id)).stock == 10

    await product_service.decrement_stock(STORE_A, product_id, 4)

    assert (await product_service.get_product(STORE_A, product_id)).stock == 6


# --- low stock alerts ---

@pytest.mark.asyncio
async def test_low_stock_alert_after_sale(product_service, dispatcher, session_factory, stores):
    product_id = await create_product(session_factory, STORE_A, name="Candle", stock=6)

    await product_service.decrement_stock(STORE_A, product_id, 2)

    assert len(dispatcher.messages) == 1
    alert = dispatcher.messages[0]
    assert isinstance(alert, LowStockAlert)
    assert alert.store_id == STORE_A
    assert alert.recipient == "owner-a@test.local"
    assert alert.threshold == 5
    assert [(p.id, p.name, p.stock) for p in alert.products] == [(product_id, "Candle", 4)]


@pytest.mark.asyncio
async def test_no_alert_above_threshold_or_on_rejection(product_service, dispatcher, session_factory, stores):
    product_id = await create_product(session_factory, STORE_A, stock=20)

    await product_service.decrement_stock(STORE_A, product_id, 1)
    await product_service.decrement_stock(STORE_A, product_id, 100)

    assert dispatcher.messages == []


@pytest.mark.asyncio
async def test_alert_uses_store_threshold(product_service, stock_service, dispatcher, session_factory, stores):
    await stock_service.set_low_stock_threshold(STORE_A, 15)
    product_id = await create_product(session_factory, STORE_A, stock=20)

    await product_service.decrement_stock(STORE_A, product_id, 5)

    assert dispatcher.messages[0].threshold == 15


@pytest.mark.asyncio
async def test_variant_alert_names_the_variant(product_service, dispatcher, session_factory, stores):
    product_id = await create_product(
        session_factory, STORE_A, name="Tee", stock=30, variants_stock={"Red": 5, "Blue": 25}
    )

    await product_service.decrement_stock(STORE_A, product_id, 1, variant="Red")

    [line] = dispatcher.messages[0].products
    assert (line.variant, line.stock) == ("Red", 4)


# --- batch_decrement_stock ---

@pytest.mark.asyncio
async def test_batch_applies_all_rows(product_service, stock_service, session_factory, stores):
    a = await create_product(session_factory, STORE_A, stock=10)
    b = await create_product(session_factory, STORE_A, stock=3)

    result = await product_service.batch_decrement_stock(STORE_A, [item(a, 4), item(b, 3)], order_id="o-7")

    assert result
    assert result.failures == []
    assert (await get_product_row(session_factory, a)).stock == 6
    assert (await get_product_row(session_factory, b)).stock == 0
    movements = await stock_service.get_stock_movements(STORE_A)
    assert sorted((m.product_id, m.delta) for m in movements) == sorted([(a, -4), (b, -3)])
    assert {m.order_id for m in movements} == {"o-7"}


@pytest.mark.asyncio
async def test_batch_is_all_or_nothing(product_service, session_factory, stores):
    a = await create_product(session_factory, STORE_A, stock=10)
    b = await create_product(session_factory, STORE_A, stock=1)

    result = await product_service.batch_decrement_stock(STORE_A, [item(a, 4), item(b, 2), item("ghost", 1)])

    assert not result
    reasons = {(f.product_id, f.reason) for f in result.failures}
    assert reasons == {(b, DecrementOutcome.INSUFFICIENT_STOCK), ("ghost", DecrementOutcome.NOT_FOUND)}
    shortfall = next(f for f in result.failures if f.product_id == b)
    assert (shortfall.requested, shortfall.available) == (2, 1)
    assert (await get_product_row(session_factory, a)).stock == 10
    assert (await get_product_row(session_factory, b)).stock == 1


@pytest.mark.asyncio
async def test_batch_merges_duplicate_products(product_service, session_factory, stores):
    product_id = await create_product(session_factory, STORE_A, stock=5)

    result = await product_service.batch_decrement_stock(STORE_A, [item(product_id, 3), item(product_id, 3)])

    assert not result
    assert result.failures[0].requested == 6
    assert (await get_product_row(session_factory, product_id)).stock == 5


@pytest.mark.asyncio
async def test_empty_batch_is_applied(product_service):
    result = await product_service.batch_decrement_stock(STORE_A, [])
    assert result
    assert result.applied is True


@pytest.mark.asyncio
async def test_batch_cannot_touch_other_stores(product_service, session_factory, stores):
    own = await create_product(session_factory, STORE_A, stock=5)
    foreign = await create_product(session_factory, STORE_B, stock=5)

    result = await product_service.batch_decrement_stock(STORE_A, [item(own, 1), item(foreign, 1)])

    assert not result
    assert [(f.product_id, f.reason) for f in result.failures] == [(foreign, DecrementOutcome.NOT_FOUND)]
    assert (await get_product_row(session_factory, foreign)).stock == 5
    assert (await get_product_row(session_factory, own)).stock == 5


@pytest.mark.asyncio
async def test_batch_with_variants(product_service, session_factory, stores):
    tee = await create_product(session_factory, STORE_A, stock=5, variants_stock={"Red": 2, "Blue": 3})
    mug = await create_product(session_factory, STORE_A, stock=8)

    result = await product_service.batch_decrement_stock(STORE_A, [
        item(tee, 1, "Red"), item(tee, 2, "Blue"), item(mug, 1),
    ])

    assert result
    tee_row = await get_product_row(session_factory, tee)
    assert tee_row.stock == 2
    assert tee_row.variants_stock == {"Red": 1, "Blue": 1}
    mug_row = await get_product_row(session_factory, mug)
    assert mug_row.stock == 7
    assert mug_row.variants_stock is None


@pytest.mark.asyncio
async def test_batch_variant_shortfall_and_missing_variant(product_service, session_factory, stores):
    tee = await create_product(session_factory, STORE_A, stock=5, variants_stock={"Red": 2, "Blue": 3})

    result = await product_service.batch_decrement_stock(STORE_A, [item(tee, 3, "Red"), item(tee, 1)])

    assert not result
    assert {f.reason for f in result.failures} == {
        DecrementOutcome.INSUFFICIENT_STOCK, DecrementOutcome.VARIANT_REQUIRED,
    }
    assert (await get_product_row(session_factory, tee)).variants_stock == {"Red": 2, "Blue": 3}


@pytest.mark.asyncio
async def test_batch_alerts_low_stock_rows(product_service, dispatcher, session_factory, stores):
    low = await create_product(session_factory, STORE_A, name="Low", stock=6)
    high = await create_product(session_factory, STORE_A, name="High", stock=60)

    await product_service.batch_decrement_stock(STORE_A, [item(low, 2), item(high, 2)])

    [alert] = dispatcher.messages
    assert [p.name for p in alert.products] == ["Low"]


# --- set_stock ---

@pytest.mark.asyncio
async def test_set_stock_records_manual_movement(product_service, session_factory, stores):
    product_id = await create_product(session_factory, STORE_A, stock=4)

    movement = await product_service.set_stock(STORE_A, product_id, 12, user_id="admin-1")

    assert (movement.previous_stock, movement.new_stock, movement.delta) == (4, 12, 8)
    assert movement.reason == "manual_update"
    assert movement.user_id == "admin-1"
    assert (await get_product_row(session_factory, product_id)).stock == 12


@pytest.mark.asyncio
async def test_set_stock_clears_mismatched_variants(product_service, session_factory, stores):
    product_id = await create_product(session_factory, STORE_A, stock=5, variants_stock={"Red": 2, "Blue": 3})

    await product_service.set_stock(STORE_A, product_id, 9)

    row = await get_product_row(session_factory, product_id)
    assert row.stock == 9
    assert row.variants_stock is None


@pytest.mark.asyncio
async def test_set_stock_rejects_negative(product_service):
    with pytest.raises(ValueError):
        await product_service.set_stock(STORE_A, "any", -1)
