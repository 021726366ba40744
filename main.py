"""
FastAPI应用主入口
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from api.routes import admin as admin_routes
from api.routes import cart as cart_routes
from api.routes import orders as order_routes
from api.routes import payments as payments_routes
from api.middleware import RequestIDMiddleware, LoggingMiddleware
from core.config import settings
from core.exceptions import register_exception_handlers
from core.response import success_response
from core.logging_config import get_logger, configure_logging
from infrastructure.database import create_tables, dispose_engine, engine


# 初始化日志：在入口处显式配置，避免模块导入时的副作用
configure_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    # 启动时创建数据库表（仅开发环境）。生产应使用 Alembic 迁移
    if settings.DEBUG:
        await create_tables()
        logger.info("database_initialized", message="Database tables created (development)")
    else:
        logger.info(
            "database_migrations_required",
            message="No auto-create in production, use Alembic migrations (alembic upgrade head)"
        )
    if not settings.alerting.slack_webhook_url:
        logger.warning("alerting_disabled", message="ALERTING__SLACK_WEBHOOK_URL not set, operator alerts are logged only")
    if not settings.ADMIN_API_TOKEN:
        logger.warning("admin_api_disabled", message="ADMIN_API_TOKEN not set, admin routes reject every request")
    logger.info(
        "fulfillment_configured",
        webhook_source=settings.webhook.source,
        webhook_max_retries=settings.webhook.max_retries,
        processing_timeout_seconds=settings.webhook.processing_timeout_seconds,
        default_currency=settings.cart.default_currency,
    )

    yield

    await dispose_engine()
    logger.info("application_shutdown", message="Application shutdown")


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    debug=settings.DEBUG,
    lifespan=lifespan,
    description="订单履约一致性服务：支付回调幂等入账、库存预留、购物车计价与订单状态机",
)

# 添加中间件（注意顺序：从下往上执行）
# 1. Request ID中间件（最先执行，为后续中间件提供request_id）
app.add_middleware(RequestIDMiddleware)

# 2. 日志中间件（依赖request_id）
app.add_middleware(LoggingMiddleware)

# 3. CORS中间件
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 注册全局异常处理器
register_exception_handlers(app)


# 注册路由
app.include_router(payments_routes.router, prefix="/api/v1")
app.include_router(cart_routes.router, prefix="/api/v1")
app.include_router(order_routes.router, prefix="/api/v1")
app.include_router(admin_routes.router, prefix="/api/v1")


# 根路径
@app.get("/", tags=["Root"])
async def root():
    """服务信息与已接入的支付网关"""
    return success_response(
        data={
            "name": settings.PROJECT_NAME,
            "version": settings.VERSION,
            "webhook_providers": sorted(payments_routes.SIGNATURE_HEADERS),
            "docs": "/docs",
        },
        message="Welcome"
    )


# 存活检查：不访问外部依赖
@app.get("/health", tags=["Health"])
async def health_check():
    return success_response(data={"status": "healthy"}, message="OK")


# 就绪检查：数据库不可用时返回 503，网关回调会被负载均衡摘除
@app.get("/health/ready", tags=["Health"])
async def readiness_check():
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.error("readiness_check_failed", error=str(exc))
        return JSONResponse(
            status_code=503,
            content=success_response(data={"status": "unavailable", "database": "down"}, message="Not ready").model_dump(mode="json"),
        )
    return success_response(data={"status": "ready", "database": "up"}, message="OK")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level="debug" if settings.DEBUG else "info"
    )
