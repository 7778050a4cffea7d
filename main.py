"""
FastAPI应用主入口
"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from api.routes import payments as payments_routes
from api.middleware import RequestIDMiddleware, LoggingMiddleware
from core.config import settings
from core.exceptions import register_exception_handlers
from core.response import success_response
from core.logging_config import get_logger, configure_logging
from core.settings import telebirr_settings
from infrastructure.bootstrap import build_payment_service
from infrastructure.cache import redis_health, shutdown_redis_cache
from infrastructure.database import create_tables, dispose_engine


# 初始化日志：在入口处显式配置，避免模块导入时的副作用
configure_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理：装配支付服务，关闭时释放连接"""
    if getattr(app.state, "telebirr_settings", None) is None:
        app.state.telebirr_settings = telebirr_settings
    tb_settings = app.state.telebirr_settings

    # 多商户模式依赖商户表（仅开发环境自动建表）
    if tb_settings.mode == "multi":
        if settings.DEBUG:
            try:
                await create_tables()
            except Exception as exc:
                logger.error("database_init_failed", error=str(exc))
        else:
            logger.info("database_migrations_required", message="Merchant table is managed by migrations")

    # 测试可预先注入 payment_service
    if getattr(app.state, "payment_service", None) is None:
        app.state.payment_service = await build_payment_service(tb_settings)
    logger.info("application_started", mode=tb_settings.mode, environment=settings.ENVIRONMENT)

    yield

    # 关闭时的清理工作
    await app.state.payment_service.aclose()
    if settings.redis.url:
        await shutdown_redis_cache()
        logger.info("redis_cache_shutdown", message="Redis cache shutdown")
    await dispose_engine()
    logger.info("application_shutdown", message="Application shutdown")


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    debug=settings.DEBUG,
    lifespan=lifespan,
    description="Telebirr 支付网关集成服务",
    redoc_url="/redoc",
)

# 添加中间件（注意顺序：从下往上执行）
# 1. Request ID中间件（最先执行，为后续中间件提供request_id与客户端IP）
app.add_middleware(RequestIDMiddleware, trust_forwarded_for=telebirr_settings.webhook.trust_forwarded_for)

# 2. 日志中间件（依赖request_id）
app.add_middleware(LoggingMiddleware, webhook_path=telebirr_settings.webhook.path)

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


# 注册路由（features.routes 关闭时仅保留服务本身，由宿主自行暴露）
if telebirr_settings.features.routes:
    app.include_router(payments_routes.router, prefix="/api/v1")


# 根路径
@app.get("/", tags=["Root"])
async def root():
    """API根路径"""
    return success_response(
        data={
            "name": settings.PROJECT_NAME,
            "version": settings.VERSION,
            "docs": "/docs",
            "redoc": "/redoc"
        },
        message="Telebirr gateway service",
    )


# 健康检查
@app.get("/health", tags=["Health"])
async def health_check():
    """健康检查端点：Redis 不可达时令牌缓存与事件会降级，但服务本身仍可用"""
    return success_response(data={"status": "healthy", "redis": await redis_health()}, message="OK")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level="debug" if settings.DEBUG else "info"
    )
