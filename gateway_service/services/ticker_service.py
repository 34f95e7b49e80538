"""
Ticker 聚合服务
按代币发现其下所有交易所目录，并发拉取快照，汇总为统计与 OHLCV K 线。
调用方无需了解仓库的目录结构。
"""

import asyncio
import logging
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from gateway_service.config import RepoConfig, settings
from gateway_service.exceptions import (
    CacheError,
    GatewayError,
    NetworkError,
    NoSourcesFound,
    ParseError,
    RateLimitExhausted,
    UpstreamError,
)
from gateway_service.layers.cache import make_cache_key
from gateway_service.layers.interfaces import CacheBackend, ContentSource, MetricsSink
from gateway_service.layers.processing import (
    ProcessingLayer,
    calculate_date_range,
    get_processing_layer,
    snapshot_path,
)
from gateway_service.models.content import ContentItem
from gateway_service.models.ticker import (
    ExchangeStats,
    TickerHistoryResponse,
    TickerStatsResponse,
)

logger = logging.getLogger(__name__)

_CACHE_NS = "ticker"

# 统计接口回看天数：今天 → 昨天 → 前天
_STATS_LOOKBACK_DAYS = 3

# 单日拉取失败只影响该交易所该日的数据
_FETCH_ERRORS = (UpstreamError, NetworkError, RateLimitExhausted, ParseError)

ResponseT = TypeVar("ResponseT", bound=BaseModel)


def _utc_today() -> date:
    return datetime.now(timezone.utc).date()


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class TickerService:
    """Ticker 聚合引擎：只依赖 ContentSource / CacheBackend / MetricsSink 三个能力"""

    def __init__(
        self,
        content: ContentSource,
        cache: CacheBackend,
        default_repo: RepoConfig,
        metrics: MetricsSink,
        *,
        processor: Optional[ProcessingLayer] = None,
        cache_ttl: Optional[int] = None,
        max_concurrency: Optional[int] = None,
        history_max_sources: Optional[int] = None,
        history_max_tries: Optional[int] = None,
    ):
        self._content = content
        self._cache = cache
        self._repo = default_repo
        self._metrics = metrics
        self._proc = processor or get_processing_layer()
        self._cache_ttl = cache_ttl or settings.TICKER_CACHE_TTL
        self._max_concurrency = max_concurrency or settings.STATS_MAX_CONCURRENCY
        self._history_max_sources = history_max_sources or settings.HISTORY_MAX_SOURCES
        self._history_max_tries = history_max_tries or settings.HISTORY_MAX_TRIES

    # ── 统计 ──────────────────────────────────────────────

    async def get_ticker_stats(self, token: str, range_: str = "today") -> TickerStatsResponse:
        """
        获取代币在所有交易所的最新统计及跨交易所汇总

        Args:
            token: 代币名称（大小写不敏感地映射到 data/{token} 目录）
            range_: today / 7d / 30d，由路由层校验

        Raises:
            NoSourcesFound: 代币目录下没有交易所子目录
            UpstreamError / NetworkError / RateLimitExhausted: 交易所列表拉取失败
        """
        cache_key = make_cache_key(_CACHE_NS, token, "stats", range_)
        cached = await self._read_cache(cache_key, TickerStatsResponse)
        if cached is not None:
            return cached

        exchanges = await self._discover_exchanges(token)
        start_date, end_date = calculate_date_range(range_, _utc_today())

        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def _bounded(exchange: str) -> ExchangeStats:
            async with semaphore:
                return await self._fetch_exchange_stats(token, exchange)

        results = await asyncio.gather(
            *(_bounded(e.name) for e in exchanges), return_exceptions=True
        )

        exchange_stats: List[ExchangeStats] = []
        for exchange, result in zip(exchanges, results):
            if isinstance(result, Exception):
                logger.warning(f"交易所统计获取失败 {token}/{exchange.name}: {result}")
                continue
            if isinstance(result, BaseException):
                raise result
            exchange_stats.append(result)

        response = TickerStatsResponse(
            token=token,
            timestamp=_utc_now_iso(),
            range=range_,
            start_date=start_date.isoformat(),
            end_date=end_date.isoformat(),
            exchanges=exchange_stats,
            aggregate=self._proc.calculate_aggregate(exchange_stats),
        )

        await self._write_cache(cache_key, response)
        return response

    async def _fetch_exchange_stats(self, token: str, exchange: str) -> ExchangeStats:
        """依次尝试今天、昨天、前天的快照，取第一个可解析的"""
        today = _utc_today()
        for offset in range(_STATS_LOOKBACK_DAYS):
            day = today - timedelta(days=offset)
            path = snapshot_path(token, exchange, day)
            try:
                document = await self._load_snapshot(path)
            except _FETCH_ERRORS as exc:
                logger.debug(f"快照不可用 {path}: {exc}")
                continue
            logger.info(f"找到 {token} 在 {exchange} 的 {day} 快照")
            return self._proc.parse_exchange_stats(exchange, document)

        return ExchangeStats.empty(exchange)

    # ── 历史 K 线 ─────────────────────────────────────────

    async def get_ticker_history(
        self, token: str, range_: str = "7d", resolution: str = "1h"
    ) -> TickerHistoryResponse:
        """
        获取代币的 OHLCV 历史（用于图表）

        按列表顺序逐个交易所拉取区间内每一天的原始数据点；
        凑够 history_max_sources 个有数据的交易所，或已尝试 history_max_tries 个交易所即停止。
        """
        cache_key = make_cache_key(_CACHE_NS, token, "history", range_, resolution)
        cached = await self._read_cache(cache_key, TickerHistoryResponse)
        if cached is not None:
            return cached

        exchanges = await self._discover_exchanges(token)
        start_date, end_date = calculate_date_range(range_, _utc_today())

        pool: List[Dict[str, Any]] = []
        exchanges_with_data = 0
        for exchange in exchanges[: self._history_max_tries]:
            if exchanges_with_data >= self._history_max_sources:
                break
            try:
                points = await self._fetch_exchange_raw_data(token, exchange.name, start_date, end_date)
            except GatewayError as exc:
                logger.warning(f"交易所历史数据获取失败 {token}/{exchange.name}: {exc}")
                continue
            if points:
                logger.info(f"{exchange.name} 提供了 {len(points)} 个历史数据点")
                pool.extend(points)
                exchanges_with_data += 1

        response = TickerHistoryResponse(
            token=token,
            range=range_,
            resolution=resolution,
            start_date=start_date.isoformat(),
            end_date=end_date.isoformat(),
            data=self._proc.aggregate_to_ohlcv(pool, resolution),
        )

        await self._write_cache(cache_key, response)
        return response

    async def _fetch_exchange_raw_data(
        self, token: str, exchange: str, start_date: date, end_date: date
    ) -> List[Dict[str, Any]]:
        points: List[Dict[str, Any]] = []
        current = start_date
        while current <= end_date:
            path = snapshot_path(token, exchange, current)
            try:
                document = await self._load_snapshot(path)
            except _FETCH_ERRORS as exc:
                logger.debug(f"跳过 {path}: {exc}")
            else:
                points.extend(self._proc.extract_points(document))
            current += timedelta(days=1)
        return points

    # ── 公共步骤 ──────────────────────────────────────────

    async def _discover_exchanges(self, token: str) -> List[ContentItem]:
        """列出 data/{token} 下的交易所目录；列表失败直接向上抛出"""
        items = await self._content.list(self._repo, f"data/{token.lower()}")
        exchanges = [item for item in items if item.is_dir]
        if not exchanges:
            raise NoSourcesFound(token)
        return exchanges

    async def _load_snapshot(self, path: str) -> Any:
        """拉取单个快照：优先内联内容，没有内联内容时（大文件）走 download_url"""
        item = await self._content.fetch(self._repo, path)
        if item.content:
            return self._proc.decode_snapshot(item)
        if item.download_url:
            return await self._content.fetch_raw(item.download_url)
        raise ParseError("快照既没有内联内容也没有下载地址", path)

    async def _read_cache(self, key: str, model: Type[ResponseT]) -> Optional[ResponseT]:
        try:
            cached = await self._cache.get(key)
        except CacheError as exc:
            logger.warning(f"缓存读取失败，降级为直接计算: {exc}")
            self._metrics.record_cache("error")
            return None

        if cached is None:
            self._metrics.record_cache("miss")
            return None

        try:
            response = model.model_validate_json(cached)
        except ValidationError as exc:
            logger.warning(f"缓存内容损坏，重新计算 {key}: {exc.error_count()} 个错误")
            self._metrics.record_cache("miss")
            return None

        logger.info(f"Cache HIT: {key}")
        self._metrics.record_cache("hit")
        return response

    async def _write_cache(self, key: str, response: BaseModel) -> None:
        try:
            await self._cache.set(key, response.model_dump_json(), self._cache_ttl)
        except CacheError as exc:
            logger.warning(f"缓存写入失败 {key}: {exc}")


# ── 模块级别单例 ──────────────────────────────────────────
_ticker_service: Optional[TickerService] = None


def get_ticker_service() -> TickerService:
    global _ticker_service
    if _ticker_service is None:
        from gateway_service.layers.acquisition import get_content_source
        from gateway_service.layers.cache import get_cache_layer
        from gateway_service.metrics import get_metrics_collector

        _ticker_service = TickerService(
            get_content_source(),
            get_cache_layer(),
            settings.default_repo,
            get_metrics_collector(),
        )
    return _ticker_service
