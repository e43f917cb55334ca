from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from domain.common.exceptions import OrderAlreadyExistsException, PaymentAlreadyExistsException
from domain.discount.entity import DiscountCode, DiscountScope
from domain.order.entity import Order
from domain.payment.entity import OPEN_STATUSES, PaymentStatus
from domain.pricing import DiscountContext
from infrastructure.unit_of_work import uow_factory
from tests.factories import make_record, make_snapshot


NOW = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)


async def _add(record):
    async with uow_factory() as uow:
        return await uow.payment_repository.add(record)


async def _get(transaction_id):
    async with uow_factory(readonly=True) as uow:
        return await uow.payment_repository.get_by_transaction_id(transaction_id)


@pytest.mark.asyncio
async def test_add_and_load(db):
    await _add(make_record(checkout_id="chk-1"))
    loaded = await _get("ORDER_1792324800_u1_ABCD1234")
    assert loaded.amount == Decimal("178.88")
    assert loaded.status == PaymentStatus.PENDING

    async with uow_factory(readonly=True) as uow:
        by_checkout = await uow.payment_repository.get_by_checkout_id("simulation", "chk-1")
    assert by_checkout.transaction_id == loaded.transaction_id


@pytest.mark.asyncio
async def test_duplicate_transaction_id(db):
    await _add(make_record())
    with pytest.raises(PaymentAlreadyExistsException):
        await _add(make_record())


@pytest.mark.asyncio
async def test_complete_if_open_wins_once(db):
    await _add(make_record())
    first = await _get("ORDER_1792324800_u1_ABCD1234")
    second = await _get("ORDER_1792324800_u1_ABCD1234")

    first.mark_completed(order_id=1, now=NOW)
    second.mark_completed(order_id=2, now=NOW)
    async with uow_factory() as uow:
        won_first = await uow.payment_repository.complete_if_open(first)
    async with uow_factory() as uow:
        won_second = await uow.payment_repository.complete_if_open(second)

    assert (won_first, won_second) == (True, False)
    stored = await _get("ORDER_1792324800_u1_ABCD1234")
    assert stored.status == PaymentStatus.COMPLETED
    assert stored.order_id == 1


@pytest.mark.asyncio
async def test_transition_if_open_does_not_reopen_terminal(db):
    await _add(make_record())
    stale_view = await _get("ORDER_1792324800_u1_ABCD1234")

    cancelled = await _get("ORDER_1792324800_u1_ABCD1234")
    cancelled.mark_cancelled("expired")
    async with uow_factory() as uow:
        assert await uow.payment_repository.transition_if_open(cancelled) is True

    stale_view.mark_processing()
    async with uow_factory() as uow:
        assert await uow.payment_repository.transition_if_open(stale_view) is False
    assert (await _get("ORDER_1792324800_u1_ABCD1234")).status == PaymentStatus.CANCELLED


@pytest.mark.asyncio
async def test_list_stale_only_open_and_old(db):
    old = NOW - timedelta(minutes=30)
    await _add(make_record("ORDER_1_u1_OLDOPEN1", created_at=old))
    await _add(make_record("ORDER_2_u1_OLDDONE1", created_at=old, status=PaymentStatus.FAILED))
    await _add(make_record("ORDER_3_u1_NEWOPEN1", created_at=NOW))

    async with uow_factory(readonly=True) as uow:
        stale = await uow.payment_repository.list_stale(NOW - timedelta(minutes=10), OPEN_STATUSES)
    assert [r.transaction_id for r in stale] == ["ORDER_1_u1_OLDOPEN1"]


@pytest.mark.asyncio
async def test_coupon_mark_used_once(db):
    async with uow_factory() as uow:
        await uow.discount_code_repository.add(
            DiscountCode(id=None, code="save10", percentage=Decimal("10"), scope=DiscountScope.COUPON)
        )
    async with uow_factory() as uow:
        first = await uow.discount_code_repository.mark_used("SAVE10", "u1", NOW)
    async with uow_factory() as uow:
        second = await uow.discount_code_repository.mark_used("SAVE10", "u2", NOW)
    async with uow_factory(readonly=True) as uow:
        coupon = await uow.discount_code_repository.get_by_code("save10")

    assert (first, second) == (True, False)
    assert coupon.is_used is True
    assert coupon.used_by == "u1"


@pytest.mark.asyncio
async def test_one_order_per_payment(db, pricing_engine):
    snapshot = make_snapshot(pricing_engine, NOW)

    pricing = pricing_engine.compute_totals(snapshot.items, DiscountContext(user_id="u1", now=NOW))
    order = Order.from_checkout(
        snapshot=snapshot, pricing=pricing, transaction_id="ORDER_1_u1_X", payment_method="card", now=NOW
    )
    async with uow_factory() as uow:
        saved = await uow.order_repository.add(order)

    duplicate = Order.from_checkout(
        snapshot=snapshot, pricing=pricing, transaction_id="ORDER_1_u1_X", payment_method="card", now=NOW
    )
    with pytest.raises(OrderAlreadyExistsException):
        async with uow_factory() as uow:
            await uow.order_repository.add(duplicate)

    async with uow_factory(readonly=True) as uow:
        loaded = await uow.order_repository.get_by_payment_transaction_id("ORDER_1_u1_X")
    assert loaded.id == saved.id
    assert loaded.total == Decimal("198.20")
    assert len(loaded.items) == 2


@pytest.mark.asyncio
async def test_transition_limited_to_pending(db):
    async with uow_factory() as uow:
        await uow.payment_repository.add(make_record(status=PaymentStatus.PROCESSING))

    record = make_record(status=PaymentStatus.PROCESSING)
    record.mark_cancelled("expired", datetime.now(timezone.utc))
    async with uow_factory() as uow:
        moved = await uow.payment_repository.transition_if_open(record, from_statuses=(PaymentStatus.PENDING,))

    assert moved is False
    async with uow_factory(readonly=True) as uow:
        stored = await uow.payment_repository.get_by_transaction_id(record.transaction_id)
    assert stored.status == PaymentStatus.PROCESSING


@pytest.mark.asyncio
async def test_catalog_get_many(catalog):
    async with uow_factory(readonly=True) as uow:
        products = await uow.product_repository.get_many(["p1", "p2", "p404"])
        missing = await uow.product_repository.get("p404")

    assert set(products) == {"p1", "p2"}
    assert products["p1"].price == Decimal("10.00")
    assert products["p2"].seller_id == "s1"
    assert missing is None
