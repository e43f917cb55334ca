import asyncio
from contextlib import asynccontextmanager
from decimal import Decimal

import pytest

from application.services.payment_reconciler import PaymentReconciler
from domain.discount.entity import DiscountCode, DiscountScope
from domain.payment.entity import PaymentStatus
from domain.payment.verification import PaymentVerificationResult
from infrastructure.cache.checkout_snapshot_store import CacheCheckoutSnapshotStore
from infrastructure.locks import LocalTransactionLocker
from infrastructure.unit_of_work import uow_factory
from tests.factories import WORKED_ITEMS, make_record, make_snapshot


TXN = "ORDER_1792324800_u1_ABCD1234"


@pytest.fixture
def store(cache, clock):
    return CacheCheckoutSnapshotStore(cache, clock=clock)


@pytest.fixture
def reconciler(store, clock, pricing_engine):
    return PaymentReconciler(
        uow_factory=uow_factory,
        snapshot_store=store,
        pricing_engine=pricing_engine,
        locker=LocalTransactionLocker(blocking_timeout=5),
        amount_tolerance=Decimal("0.01"),
        clock=clock,
    )


async def seed(store, clock, engine, *, with_coupon=True, record=None):
    coupon = None
    if with_coupon:
        coupon = DiscountCode(id=None, code="SAVE10", percentage=Decimal("10"), scope=DiscountScope.COUPON)
        async with uow_factory() as uow:
            await uow.discount_code_repository.add(coupon)
    snapshot = make_snapshot(engine, clock(), coupon=coupon)
    await store.store(snapshot)
    async with uow_factory() as uow:
        await uow.payment_repository.add(record or make_record(amount=str(snapshot.final_total)))
    return snapshot


async def load(transaction_id=TXN):
    async with uow_factory(readonly=True) as uow:
        record = await uow.payment_repository.get_by_transaction_id(transaction_id)
        order = await uow.order_repository.get_by_payment_transaction_id(transaction_id)
        coupon = await uow.discount_code_repository.get_by_code("SAVE10")
    return record, order, coupon


def paid(amount="178.88"):
    return PaymentVerificationResult.succeeded(
        TXN, "simulation", Decimal(amount), payment_method="card", provider_ref="gw-001"
    )


@pytest.mark.asyncio
async def test_success_creates_order_and_consumes_coupon(db, store, clock, pricing_engine, reconciler):
    await seed(store, clock, pricing_engine)

    outcome = await reconciler.reconcile(paid(), "sess_0001")

    record, order, coupon = await load()
    assert outcome.success is True
    assert outcome.order["order_id"] == order.id
    assert order.total == Decimal("178.88")
    assert order.coupon_code == "SAVE10"
    assert record.status == PaymentStatus.COMPLETED
    assert record.order_id == order.id
    assert record.provider_ref == "gw-001"
    assert coupon.is_used is True
    assert await store.retrieve("sess_0001") is None


@pytest.mark.asyncio
async def test_second_confirmation_is_a_noop(db, store, clock, pricing_engine, reconciler):
    await seed(store, clock, pricing_engine)

    first = await reconciler.reconcile(paid(), "sess_0001")
    second = await reconciler.reconcile(paid(), "sess_0001")

    assert second.success is True
    assert second.order["order_id"] == first.order["order_id"]
    assert second.message == "Payment already processed"


@pytest.mark.asyncio
async def test_concurrent_confirmations_create_one_order(db, store, clock, pricing_engine, reconciler):
    await seed(store, clock, pricing_engine)

    outcomes = await asyncio.gather(*(reconciler.reconcile(paid(), "sess_0001") for _ in range(5)))

    order_ids = {o.order["order_id"] for o in outcomes}
    assert all(o.success for o in outcomes)
    assert len(order_ids) == 1
    _, order, _ = await load()
    assert order.id in order_ids


@pytest.mark.asyncio
async def test_amount_within_tolerance(db, store, clock, pricing_engine, reconciler):
    await seed(store, clock, pricing_engine)
    outcome = await reconciler.reconcile(paid("178.89"), "sess_0001")
    assert outcome.success is True


@pytest.mark.asyncio
async def test_amount_mismatch_fails_payment(db, store, clock, pricing_engine, reconciler):
    await seed(store, clock, pricing_engine)

    outcome = await reconciler.reconcile(paid("178.90"), "sess_0001")

    record, order, coupon = await load()
    assert outcome.success is False
    assert outcome.error_code == "AMOUNT_MISMATCH"
    assert outcome.details == {"expected": "178.88", "received": "178.90"}
    assert record.status == PaymentStatus.FAILED
    assert order is None
    assert coupon.is_used is False


@pytest.mark.asyncio
async def test_expired_snapshot_keeps_payment_open(db, store, clock, pricing_engine, reconciler):
    await seed(store, clock, pricing_engine)
    clock.advance(1800)

    outcome = await reconciler.reconcile(paid(), "sess_0001")

    record, order, _ = await load()
    assert outcome.error_code == "CHECKOUT_EXPIRED"
    assert TXN in outcome.message
    assert record.status == PaymentStatus.PROCESSING
    assert order is None


@pytest.mark.asyncio
async def test_rejection_marks_failed(db, store, clock, pricing_engine, reconciler):
    await seed(store, clock, pricing_engine)
    rejected = PaymentVerificationResult.rejected(TXN, "datafast", "INSUFFICIENT_FUNDS", "Fondos insuficientes")

    outcome = await reconciler.reconcile(rejected, "sess_0001")
    again = await reconciler.reconcile(paid(), "sess_0001")

    record, order, _ = await load()
    assert outcome.error_code == "INSUFFICIENT_FUNDS"
    assert outcome.retry_allowed is False
    assert record.status == PaymentStatus.FAILED
    assert again.success is False
    assert order is None


@pytest.mark.asyncio
async def test_pending_is_retryable(db, store, clock, pricing_engine, reconciler):
    await seed(store, clock, pricing_engine)
    pending = PaymentVerificationResult.pending(TXN, "datafast", error_code="TIMEOUT")

    outcome = await reconciler.reconcile(pending, "sess_0001")

    record, _, _ = await load()
    assert outcome.retry_allowed is True
    assert outcome.error_code == "TIMEOUT"
    assert record.status == PaymentStatus.PROCESSING

    completed = await reconciler.reconcile(paid(), "sess_0001")
    assert completed.success is True


@pytest.mark.asyncio
async def test_already_processed_with_open_record_completes_order(db, store, clock, pricing_engine, reconciler):
    await seed(store, clock, pricing_engine)

    outcome = await reconciler.reconcile(
        PaymentVerificationResult.already_processed(TXN, "datafast"), "sess_0001"
    )
    again = await reconciler.reconcile(
        PaymentVerificationResult.already_processed(TXN, "datafast"), "sess_0001"
    )

    record, order, coupon = await load()
    assert outcome.success is True
    assert outcome.order["order_id"] == order.id
    assert again.order["order_id"] == order.id
    assert order.total == Decimal("178.88")
    assert record.status == PaymentStatus.COMPLETED
    assert coupon.is_used is True


@pytest.mark.asyncio
async def test_already_processed_still_checks_reported_amount(db, store, clock, pricing_engine, reconciler):
    await seed(store, clock, pricing_engine)

    outcome = await reconciler.reconcile(
        PaymentVerificationResult.already_processed(TXN, "datafast", amount=Decimal("150.00")), "sess_0001"
    )

    record, order, _ = await load()
    assert outcome.error_code == "AMOUNT_MISMATCH"
    assert record.status == PaymentStatus.FAILED
    assert order is None


@pytest.mark.asyncio
async def test_foreign_session_does_not_touch_bound_payment(db, store, clock, pricing_engine, reconciler):
    await seed(store, clock, pricing_engine)
    other = make_snapshot(pricing_engine, clock(), session_id="sess_0002", items=WORKED_ITEMS[:1])
    await store.store(other)

    outcome = await reconciler.reconcile(paid(), "sess_0002")

    record, order, coupon = await load()
    assert outcome.error_code == "CHECKOUT_MISMATCH"
    assert record.status == PaymentStatus.PENDING
    assert order is None
    assert coupon.is_used is False

    confirmed = await reconciler.reconcile(paid(), "sess_0001")
    assert confirmed.success is True


@pytest.mark.asyncio
async def test_unknown_transaction(db, reconciler):
    outcome = await reconciler.reconcile(paid(), "sess_0001")
    assert outcome.error_code == "PAYMENT_NOT_FOUND"


@pytest.mark.asyncio
async def test_snapshot_recovered_from_recent_sessions(db, store, clock, pricing_engine, reconciler):
    await seed(store, clock, pricing_engine, record=make_record(session_id=None))
    outcome = await reconciler.reconcile(paid(), None)
    assert outcome.success is True


@pytest.mark.asyncio
async def test_snapshot_of_other_user_rejected(db, store, clock, pricing_engine, reconciler):
    await seed(store, clock, pricing_engine, record=make_record(user_id="u2"))
    outcome = await reconciler.reconcile(paid(), "sess_0001")
    assert outcome.error_code == "CHECKOUT_MISMATCH"


@pytest.mark.asyncio
async def test_coupon_consumed_elsewhere(db, store, clock, pricing_engine, reconciler):
    await seed(store, clock, pricing_engine)
    async with uow_factory() as uow:
        await uow.discount_code_repository.mark_used("SAVE10", "someone-else", clock())

    outcome = await reconciler.reconcile(paid(), "sess_0001")

    _, order, _ = await load()
    assert outcome.error_code == "COUPON_USED"
    assert order is None


@pytest.mark.asyncio
async def test_lock_timeout_is_retryable(db, store, clock, pricing_engine):
    class BusyLocker:
        @asynccontextmanager
        async def hold(self, transaction_id):
            raise TimeoutError(transaction_id)
            yield

    reconciler = PaymentReconciler(
        uow_factory=uow_factory,
        snapshot_store=store,
        pricing_engine=pricing_engine,
        locker=BusyLocker(),
        clock=clock,
    )
    outcome = await reconciler.reconcile(paid(), "sess_0001")
    assert outcome.error_code == "RECONCILE_IN_PROGRESS"
    assert outcome.retry_allowed is True
