"""
Ticker 路由
GET /v1/ticker/{token}           - 代币跨交易所统计
GET /v1/ticker/{token}/history   - 代币 OHLCV 历史
"""

import logging

from fastapi import APIRouter, HTTPException, Query, status

from gateway_service.exceptions import GatewayError, NoSourcesFound
from gateway_service.metrics import get_metrics_collector
from gateway_service.models.response import ApiResponse
from gateway_service.routers.errors import to_http_exception
from gateway_service.services.ticker_service import get_ticker_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/ticker", tags=["Ticker"])

_RANGES = ["today", "7d", "30d"]
_RESOLUTIONS = ["1m", "5m", "1h", "1d"]


def _validate_range(range_: str) -> None:
    if range_ not in _RANGES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid range. Use: today, 7d, or 30d",
        )


@router.get("/{token}", response_model=ApiResponse)
async def get_ticker_stats(
    token: str,
    range_: str = Query(default="today", alias="range", description="回看范围: today / 7d / 30d"),
):
    """获取代币在所有交易所的统计与汇总（均价、总成交量、VWAP）"""
    _validate_range(range_)
    get_metrics_collector().record_request("ticker_stats")

    try:
        response = await get_ticker_service().get_ticker_stats(token, range_)
    except GatewayError as exc:
        if not isinstance(exc, NoSourcesFound):
            logger.error(f"Ticker 统计失败 {token}: {exc.message}")
        raise to_http_exception(exc, f"ticker/{token}")
    return ApiResponse.ok(data=response.model_dump(), message=f"获取 {token} 统计成功")


@router.get("/{token}/history", response_model=ApiResponse)
async def get_ticker_history(
    token: str,
    range_: str = Query(default="7d", alias="range", description="回看范围: today / 7d / 30d"),
    resolution: str = Query(default="1h", description="K 线分辨率: 1m / 5m / 1h / 1d"),
):
    """获取代币 OHLCV 历史（用于图表）"""
    _validate_range(range_)
    if resolution not in _RESOLUTIONS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid resolution. Use: 1m, 5m, 1h, or 1d",
        )
    get_metrics_collector().record_request("ticker_history")

    try:
        response = await get_ticker_service().get_ticker_history(token, range_, resolution)
    except GatewayError as exc:
        if not isinstance(exc, NoSourcesFound):
            logger.error(f"Ticker 历史失败 {token}: {exc.message}")
        raise to_http_exception(exc, f"ticker/{token}/history")
    return ApiResponse.ok(data=response.model_dump(), message=f"获取 {token} 历史成功")
