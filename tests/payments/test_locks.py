import asyncio
from decimal import Decimal

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from application.services.payment_reconciler import PaymentReconciler
from domain.payment.verification import PaymentVerificationResult
from infrastructure.cache.checkout_snapshot_store import CacheCheckoutSnapshotStore
from infrastructure.external.cache.redis_client import RedisClient
from infrastructure.locks import LocalTransactionLocker, RedisTransactionLocker
from infrastructure.unit_of_work import uow_factory


@pytest.mark.asyncio
async def test_local_locker_serializes_same_transaction():
    locker = LocalTransactionLocker(blocking_timeout=1)
    trace = []

    async def worker(name):
        async with locker.hold("T1"):
            trace.append(f"{name}-in")
            await asyncio.sleep(0.01)
            trace.append(f"{name}-out")

    await asyncio.gather(worker("a"), worker("b"))

    assert trace in (["a-in", "a-out", "b-in", "b-out"], ["b-in", "b-out", "a-in", "a-out"])
    assert locker._locks == {}


@pytest.mark.asyncio
async def test_local_locker_times_out():
    locker = LocalTransactionLocker(blocking_timeout=0.05)
    async with locker.hold("T1"):
        with pytest.raises(TimeoutError):
            async with locker.hold("T1"):
                pass


@pytest.mark.asyncio
async def test_redis_locker_uses_transaction_key(cache):
    locker = RedisTransactionLocker(cache, blocking_timeout=0.05)
    async with locker.hold("T1"):
        with pytest.raises(TimeoutError):
            async with cache.lock("payment:reconcile:T1", blocking_timeout=0.05):
                pass


class _UnreachableLock:
    async def acquire(self):
        raise RedisConnectionError("Connection refused")

    async def release(self):
        raise AssertionError("never acquired")


class _UnreachableRedis:
    def lock(self, name, timeout, blocking_timeout):
        return _UnreachableLock()


@pytest.mark.asyncio
async def test_redis_lock_connection_error_is_reported_as_busy():
    client = RedisClient(_UnreachableRedis(), namespace="checkout", default_ttl=60)
    with pytest.raises(TimeoutError):
        async with client.lock("payment:reconcile:T1"):
            pass


@pytest.mark.asyncio
async def test_reconcile_with_unreachable_redis_is_retryable(db, cache, clock, pricing_engine):
    reconciler = PaymentReconciler(
        uow_factory=uow_factory,
        snapshot_store=CacheCheckoutSnapshotStore(cache, clock=clock),
        pricing_engine=pricing_engine,
        locker=RedisTransactionLocker(RedisClient(_UnreachableRedis(), default_ttl=60)),
        clock=clock,
    )
    verification = PaymentVerificationResult.succeeded(
        "ORDER_1792324800_u1_ABCD1234", "simulation", Decimal("178.88")
    )

    outcome = await reconciler.reconcile(verification, "sess_0001")

    assert outcome.success is False
    assert outcome.error_code == "RECONCILE_IN_PROGRESS"
    assert outcome.retry_allowed is True
