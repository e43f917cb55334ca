"""
结账定价与支付对账服务入口
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from redis.exceptions import RedisError

from api.middleware import LocaleMiddleware, LoggingMiddleware, RequestIDMiddleware
from api.routes import checkout as checkout_routes
from api.routes import payments as payments_routes
from core.config import settings
from core.exceptions import register_exception_handlers
from core.i18n import t
from core.logging_config import configure_logging, get_logger
from core.response import success_response
from core.settings import payment_settings
from infrastructure.database import create_tables, ping_database
from infrastructure.external.cache import get_redis_client, init_redis_client, shutdown_redis_client


configure_logging()
logger = get_logger(__name__)


async def _connect_cache() -> None:
    if not settings.redis.url:
        # 快照只存在于缓存中，没有 Redis 时结账接口返回 503
        logger.warning("redis_not_configured", impact="checkout snapshots unavailable")
        return
    try:
        await init_redis_client()
    except (RedisError, OSError) as exc:
        logger.error("redis_cache_init_failed", error=str(exc))


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.DEBUG:
        await create_tables()
        logger.info("database_tables_created")
    else:
        logger.info("database_migrations_required", command="alembic upgrade head")
    await _connect_cache()
    logger.info(
        "application_started",
        environment=settings.ENVIRONMENT,
        default_provider=payment_settings.default_provider,
        simulation_allowed=payment_settings.simulation_allowed,
    )

    yield

    await shutdown_redis_client()
    logger.info("application_shutdown")


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    debug=settings.DEBUG,
    lifespan=lifespan,
    description="Checkout pricing and payment reconciliation service",
)

# 中间件按添加的逆序执行：CORS -> RequestID -> Locale -> Logging
app.add_middleware(LoggingMiddleware)
app.add_middleware(LocaleMiddleware)
app.add_middleware(RequestIDMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

app.include_router(checkout_routes.router, prefix="/api/v1")
app.include_router(payments_routes.router, prefix="/api/v1")


@app.get("/", tags=["Root"])
async def root():
    return success_response(
        data={"name": settings.PROJECT_NAME, "version": settings.VERSION, "docs": "/docs"},
        message=t("welcome", default="Welcome"),
    )


@app.get("/health", tags=["Health"])
async def health_check():
    """存活检查；database/redis 字段反映依赖是否可用"""
    cache = get_redis_client()
    return success_response(
        data={
            "status": "healthy",
            "database": await ping_database(),
            "redis": await cache.health_check() if cache is not None else False,
        },
        message=t("health.ok", default="OK"),
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level="debug" if settings.DEBUG else "info",
    )
