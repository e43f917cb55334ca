"""Pytest bootstrap configuration.

Ensure mandatory environment variables are set before test collection
and module imports that depend on application settings.
"""
import os
import tempfile

_DB_DIR = tempfile.mkdtemp(prefix="checkout-engine-tests-")

# Mandatory secret key for settings validation
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("DATABASE__URL", f"sqlite+aiosqlite:///{os.path.join(_DB_DIR, 'test.db')}")
os.environ.setdefault("PAYMENT__TESTING__SIMULATION_ENABLED", "true")
os.environ.setdefault("PAYMENT__RECONCILIATION__SCHEDULE_RETRIES", "false")
os.environ.setdefault("PAYMENT__RETRY__MAX", "0")
os.environ.setdefault("PAYMENT__DATAFAST__ENTITY_ID", "8a829418test")
os.environ.setdefault("PAYMENT__DATAFAST__ACCESS_TOKEN", "datafast-token")
os.environ.setdefault("PAYMENT__DEUNA__API_KEY", "deuna-key")
os.environ.setdefault("PAYMENT__DEUNA__API_SECRET", "deuna-secret")
os.environ.setdefault("PAYMENT__DEUNA__POINT_OF_SALE", "4432")
os.environ.setdefault("PAYMENT__DEUNA__WEBHOOK_SECRET", "whsec_deuna")

from datetime import datetime, timezone
from decimal import Decimal

import pytest
import pytest_asyncio

from domain.pricing import PricingEngine, PricingPolicy, ShippingPolicy, VolumeTier
from infrastructure.database import create_tables, drop_tables
from tests.factories import seed_catalog
from tests.fakes import FakeCache, FrozenClock


@pytest_asyncio.fixture
async def db():
    """每个用例使用一套干净的表"""
    await drop_tables()
    await create_tables()
    yield
    await drop_tables()


@pytest.fixture
def clock():
    return FrozenClock(datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def cache(clock):
    return FakeCache(clock)


@pytest.fixture
def policy():
    return PricingPolicy(
        tax_rate=Decimal("15"),
        volume_tiers=(VolumeTier(5, Decimal("5")), VolumeTier(10, Decimal("10"))),
        shipping=ShippingPolicy(
            enabled=True,
            default_cost=Decimal("5.00"),
            free_threshold=None,
            single_seller_pct=Decimal("80"),
            multi_seller_pct=Decimal("40"),
        ),
        currency="USD",
    )


@pytest.fixture
def pricing_engine(policy):
    return PricingEngine(policy)


@pytest_asyncio.fixture
async def catalog(db):
    """db 之上写入 p1/p2 两个商品"""
    await seed_catalog()
