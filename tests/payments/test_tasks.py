import asyncio

import pytest

from application.services.payment_reconciler import ReconcileOutcome
from infrastructure import bootstrap
from infrastructure.tasks.config.beat import CELERY_BEAT_SCHEDULE
from infrastructure.tasks.config.celery import celery_app
from infrastructure.tasks.tasks import payments as payment_tasks


class StubService:
    def __init__(self, outcome=None):
        self.outcome = outcome
        self.calls = []

    async def cancel_stale(self, **kwargs):
        self.calls.append(kwargs)
        return {"found_count": 1, "cancelled_count": 1, "skipped_count": 0, "error_count": 0, "dry_run": kwargs["dry_run"]}

    async def reverify(self, transaction_id):
        self.calls.append(transaction_id)
        return self.outcome

    async def aclose(self):
        self.calls.append("aclose")


class CountingEngine:
    def __init__(self):
        self.disposed = 0

    async def dispose(self):
        self.disposed += 1


@pytest.fixture
def stub(monkeypatch):
    service = StubService()
    monkeypatch.setattr(payment_tasks, "_run_with_service", lambda fn: asyncio.run(fn(service)))
    return service


def test_cleanup_runs_every_five_minutes():
    entry = CELERY_BEAT_SCHEDULE["payments-cleanup-expired"]
    assert entry["task"] == "payments.cleanup_expired"
    assert entry["schedule"] == 300
    assert "payments.cleanup_expired" in celery_app.tasks
    assert "payments.reconcile_retry" in celery_app.tasks


def test_cleanup_uses_configured_window(stub):
    result = payment_tasks.cleanup_expired.apply(kwargs={"dry_run": True}).get()
    assert result["dry_run"] is True
    assert stub.calls == [{"older_than_minutes": 10, "batch_size": 100, "dry_run": True}]


def test_reconcile_retry_finishes_on_final_outcome(stub):
    stub.outcome = ReconcileOutcome.ok("ORDER_1_u1_X", {"order_id": 1}, "Payment confirmed, order created")
    result = payment_tasks.reconcile_retry.apply(kwargs={"transaction_id": "ORDER_1_u1_X"}).get()
    assert result["success"] is True
    assert stub.calls == ["ORDER_1_u1_X"]


def test_reconcile_retry_gives_up_after_max_attempts(stub):
    stub.outcome = ReconcileOutcome.failure("ORDER_1_u1_X", "TIMEOUT", "pending", retry_allowed=True)
    result = payment_tasks.reconcile_retry.apply(kwargs={"transaction_id": "ORDER_1_u1_X"}, retries=5).get()
    assert result["retry_allowed"] is True
    assert result["attempt"] == 5


def test_each_task_run_disposes_the_connection_pool(monkeypatch):
    service = StubService(ReconcileOutcome.ok("ORDER_1_u1_X", {"order_id": 1}, "Payment already processed"))
    engine = CountingEngine()

    async def init_cache():
        return None

    monkeypatch.setattr(payment_tasks, "engine", engine)
    monkeypatch.setattr(payment_tasks, "get_redis_client", lambda: object())
    monkeypatch.setattr(payment_tasks, "init_redis_client", init_cache)
    monkeypatch.setattr(bootstrap, "build_payment_service", lambda cache: service)

    payment_tasks.reconcile_retry.apply(kwargs={"transaction_id": "ORDER_1_u1_X"}).get()
    payment_tasks.reconcile_retry.apply(kwargs={"transaction_id": "ORDER_1_u1_X"}).get()

    assert engine.disposed == 2
    assert service.calls == ["ORDER_1_u1_X", "aclose", "ORDER_1_u1_X", "aclose"]


def test_connection_pool_disposed_when_task_fails(monkeypatch):
    engine = CountingEngine()

    async def init_cache():
        return None

    async def boom(service):
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(payment_tasks, "engine", engine)
    monkeypatch.setattr(payment_tasks, "get_redis_client", lambda: object())
    monkeypatch.setattr(payment_tasks, "init_redis_client", init_cache)
    monkeypatch.setattr(bootstrap, "build_payment_service", lambda cache: StubService())

    with pytest.raises(RuntimeError):
        payment_tasks._run_with_service(boom)
    assert engine.disposed == 1
