"""
交易所数据网关
独立 FastAPI 应用程序入口

启动方式:
    uvicorn gateway_service.main:app --host 0.0.0.0 --port 3010
    python -m gateway_service.main
"""

import logging
import time
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from gateway_service import __version__, db
from gateway_service.config import settings
from gateway_service.layers.acquisition import close_content_source
from gateway_service.models.response import ApiResponse
from gateway_service.routers import content, health, ticker

# ── 日志配置 ──────────────────────────────────────────────
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


# ── 生命周期管理 ──────────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用启动/关闭生命周期钩子"""
    logger.info("=" * 60)
    logger.info(f"🚀 Exchange Data Gateway v{__version__} 启动中")
    logger.info(f"   Redis     : {settings.REDIS_HOST}:{settings.REDIS_PORT}")
    logger.info(f"   Repos     : {', '.join(str(r) for r in settings.ALLOWED_REPOS)}")
    logger.info("=" * 60)

    if not settings.GITHUB_TOKEN:
        logger.warning("⚠️ 未配置 GITHUB_TOKEN，将使用匿名配额（60 次/小时）")

    # Redis 连接失败不阻断启动，降级为无缓存模式
    if await db.init_redis():
        logger.info("✅ 缓存就绪")
    else:
        logger.warning("⚠️ Redis 不可用，所有请求将直接访问上游")

    yield

    logger.info("🔄 网关服务正在关闭...")
    await close_content_source()
    await db.close_connections()
    logger.info("✅ 网关服务已关闭")


# ── 应用实例 ──────────────────────────────────────────────
app = FastAPI(
    title="Exchange Data Gateway",
    description=(
        "只读交易所数据网关：从 GitHub 数据仓库读取快照文件，缓存并聚合。\n"
        "- 📊 代币跨交易所统计（均价 / 总成交量 / VWAP）\n"
        "- 📈 OHLCV 历史 K 线（1m / 5m / 1h / 1d）\n"
        "- 📁 白名单仓库内容代理\n"
        "- 🗄️ Redis 缓存（不可用时自动降级）\n\n"
        "**分层架构**\n"
        "```\n"
        "Acquisition Layer  ← GitHub contents API + 限流重试\n"
        "Cache Layer        ← Redis TTL 缓存\n"
        "Processing Layer   ← 快照解码、统计、K 线分桶\n"
        "```"
    ),
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# ── CORS 中间件 ───────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── 请求计时中间件 ─────────────────────────────────────────
@app.middleware("http")
async def add_process_time(request: Request, call_next):
    start = time.time()
    response = await call_next(request)
    response.headers["X-Process-Time"] = f"{(time.time() - start) * 1000:.1f}ms"
    return response


# ── 全局异常处理 ──────────────────────────────────────────
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"未处理的异常: {exc}", exc_info=True)
    body = ApiResponse.fail(error="内部服务错误", message=str(exc), error_code="INTERNAL_ERROR")
    return JSONResponse(status_code=500, content=body.model_dump())


# ── 注册路由 ──────────────────────────────────────────────
app.include_router(health.router)
app.include_router(ticker.router)
app.include_router(content.router)


# ── 根路由 ───────────────────────────────────────────────
@app.get("/", include_in_schema=False)
async def root():
    return {
        "service": "Exchange Data Gateway",
        "version": __version__,
        "mode": "read-only",
        "docs": "/docs",
        "health": "/health",
    }


# ── 直接运行入口 ──────────────────────────────────────────
if __name__ == "__main__":
    uvicorn.run(
        "gateway_service.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
    )
