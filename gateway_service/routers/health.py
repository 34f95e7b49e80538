"""健康检查 / 指标路由"""

import time

from fastapi import APIRouter, Response
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST

from gateway_service import __version__
from gateway_service.config import settings
from gateway_service.layers.cache import get_cache_layer
from gateway_service.metrics import get_metrics_collector
from gateway_service.models.response import ApiResponse, HealthData

router = APIRouter(tags=["系统"])


async def _redis_status() -> str:
    if not settings.REDIS_ENABLED:
        return "disabled"
    return "healthy" if await get_cache_layer().health_check() else "unavailable"


@router.get("/health")
async def health():
    """服务健康检查（Redis 已启用但不可用时返回 503 / degraded）"""
    redis_status = await _redis_status()
    degraded = redis_status == "unavailable"
    data = HealthData(
        status="degraded" if degraded else "ok",
        version=__version__,
        timestamp=int(time.time()),
        dependencies={"redis": {"status": redis_status, "host": settings.REDIS_HOST}},
    )
    if degraded:
        body = ApiResponse(success=False, data=data.model_dump(), message="缓存不可用，服务降级运行")
        return JSONResponse(status_code=503, content=body.model_dump())
    return ApiResponse.ok(data=data.model_dump(), message="服务运行正常")


@router.get("/healthz")
async def healthz():
    """Kubernetes liveness probe"""
    return {"status": "ok"}


@router.get("/readyz")
async def readyz():
    """Kubernetes readiness probe"""
    return {"ready": True}


@router.get("/metrics", include_in_schema=False)
def metrics() -> Response:
    """Prometheus 文本格式指标"""
    return Response(content=get_metrics_collector().render(), media_type=CONTENT_TYPE_LATEST)
