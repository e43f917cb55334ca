from datetime import datetime, timezone
from decimal import Decimal

import pytest

from domain.checkout.entity import CheckoutData
from domain.common.exceptions import BusinessException, CheckoutValidationException
from domain.pricing import CartLineItem, DiscountContext
from infrastructure.cache.checkout_snapshot_store import CacheCheckoutSnapshotStore
from tests.factories import ADDRESS, make_snapshot


@pytest.mark.asyncio
async def test_store_and_retrieve(cache, clock, pricing_engine):
    store = CacheCheckoutSnapshotStore(cache, clock=clock)
    snapshot = make_snapshot(pricing_engine, clock())

    key = await store.store(snapshot)
    loaded = await store.retrieve(key)

    assert key == "sess_0001"
    assert loaded == snapshot
    assert loaded.final_total == Decimal("198.20")


@pytest.mark.asyncio
async def test_ttl_fixed_at_creation(cache, clock, pricing_engine):
    store = CacheCheckoutSnapshotStore(cache, clock=clock)
    await store.store(make_snapshot(pricing_engine, clock(), ttl=60))

    clock.advance(30)
    assert await store.retrieve("sess_0001") is not None
    clock.advance(30)
    assert await store.retrieve("sess_0001") is None


@pytest.mark.asyncio
async def test_store_refuses_expired_snapshot(cache, clock, pricing_engine):
    store = CacheCheckoutSnapshotStore(cache, clock=clock)
    snapshot = make_snapshot(pricing_engine, clock(), ttl=60)
    clock.advance(61)
    with pytest.raises(BusinessException):
        await store.store(snapshot)


@pytest.mark.asyncio
async def test_store_failure_surfaces(cache, clock, pricing_engine):
    store = CacheCheckoutSnapshotStore(cache, clock=clock)
    cache.fail_writes = True
    with pytest.raises(BusinessException) as exc_info:
        await store.store(make_snapshot(pricing_engine, clock()))
    assert exc_info.value.error_type == "ServiceUnavailable"


@pytest.mark.asyncio
async def test_corrupt_payload_reads_as_missing(cache, clock):
    store = CacheCheckoutSnapshotStore(cache, clock=clock)
    cache.put_raw("checkout_data_broken", {"session_id": "broken", "items": "nope"}, ttl=600)
    cache.put_raw("checkout_data_text", "not-a-dict", ttl=600)

    assert await store.retrieve("broken") is None
    assert await store.retrieve("text") is None
    assert cache.raw("checkout_data_broken") is None


@pytest.mark.asyncio
async def test_session_index_keeps_latest_five(cache, clock, pricing_engine):
    store = CacheCheckoutSnapshotStore(cache, clock=clock, session_cap=5)
    for i in range(7):
        await store.store(make_snapshot(pricing_engine, clock(), session_id=f"sess_{i:04d}"))

    sessions = await store.sessions_for_user("u1")
    assert sessions == ["sess_0006", "sess_0005", "sess_0004", "sess_0003", "sess_0002"]


@pytest.mark.asyncio
async def test_delete(cache, clock, pricing_engine):
    store = CacheCheckoutSnapshotStore(cache, clock=clock)
    await store.store(make_snapshot(pricing_engine, clock()))
    await store.delete("sess_0001")
    assert await store.retrieve("sess_0001") is None


def test_address_requires_all_fields(pricing_engine):
    now = datetime(2026, 10, 18, tzinfo=timezone.utc)
    items = (CartLineItem(product_id="p1", seller_id="s1", quantity=1, unit_price=Decimal("10.00")),)
    pricing = pricing_engine.compute_totals(items, DiscountContext(user_id="u1", now=now))
    with pytest.raises(CheckoutValidationException) as exc_info:
        CheckoutData.create(
            session_id="sess_0001",
            user_id="u1",
            shipping_data={**ADDRESS, "identification": ""},
            billing_data=ADDRESS,
            items=items,
            pricing=pricing,
            ttl_seconds=1800,
            now=now,
        )
    assert exc_info.value.details == {"missing": ["identification"]}
