"""
数据库配置和连接管理
"""
from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import NullPool
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from core.config import settings
from infrastructure.models import Base


def _build_async_url(database_url: str) -> str:
    """确保数据库URL使用异步驱动"""
    url = make_url(database_url)
    drivername = url.drivername

    if "+" in drivername:
        return database_url

    driver_map = {
        "postgresql": "postgresql+asyncpg",
        "postgres": "postgresql+asyncpg",
        "sqlite": "sqlite+aiosqlite",
    }

    if drivername not in driver_map:
        raise ValueError(f"不支持的数据库驱动: {drivername}. 请使用 async 驱动或更新 DATABASE__URL")

    return url.set(drivername=driver_map[drivername]).render_as_string(hide_password=False)


def build_engine(database_url: str, *, echo: bool = False) -> AsyncEngine:
    url = _build_async_url(database_url)
    kwargs = {}
    if make_url(url).get_backend_name() == "sqlite":
        # SQLite 连接不跨事件循环复用（测试与 Celery 任务各自 asyncio.run）
        kwargs["poolclass"] = NullPool
    return create_async_engine(url, echo=echo, future=True, **kwargs)


engine = build_engine(settings.database.url, echo=settings.database.echo)

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    expire_on_commit=False,
)


async def ping_database(bind: AsyncEngine = engine) -> bool:
    """健康检查：执行 SELECT 1"""
    try:
        async with bind.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError):
        return False
    return True


async def create_tables(bind: AsyncEngine = engine):
    """根据models中定义的所有模型创建对应的数据库表"""
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_tables(bind: AsyncEngine = engine):
    """
    删除所有表

    警告：仅用于测试环境，会删除所有数据！
    """
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
