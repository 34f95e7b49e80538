"""
网关服务单元测试

覆盖范围：
  - 配置模块（服务发现、仓库白名单解析）
  - 缓存键生成逻辑
  - 数据处理层（快照解码、交易所统计、VWAP、OHLCV 分桶）
  - API 响应模型
  - FastAPI 路由（通过 TestClient 测试，无需 Redis / GitHub）
"""

import base64
import json
import os
import sys
from datetime import date
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

# 确保仓库根目录在 sys.path
ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)


# ─────────────────────────────────────────────────────────
# 辅助函数
# ─────────────────────────────────────────────────────────

# 2025-12-29 10:00:00 UTC（毫秒）
T_10_00 = 1767002400 * 1000
T_10_05 = 1767002700 * 1000
T_10_45 = 1767005100 * 1000
T_11_00 = 1767006000 * 1000


def _snapshot_item(document, path="data/kaspa/ascendex/2025/12/2025-12-29-raw.json"):
    from gateway_service.models.content import ContentItem
    encoded = base64.b64encode(json.dumps(document).encode()).decode()
    # GitHub 每 60 个字符插入一个换行
    wrapped = "\n".join(encoded[i:i + 60] for i in range(0, len(encoded), 60))
    return ContentItem(name=path.rsplit("/", 1)[-1], path=path, item_type="file",
                       content=wrapped, encoding="base64")


def _stats(exchange, last=None, volume=None):
    from gateway_service.models.ticker import ExchangeStats
    return ExchangeStats(exchange=exchange, last=last, volume_24h=volume,
                         data_points=1 if last is not None else 0)


# ─────────────────────────────────────────────────────────
# 1. 配置模块测试
# ─────────────────────────────────────────────────────────

class TestConfig:
    def test_defaults(self):
        from gateway_service.config import GatewaySettings
        s = GatewaySettings()
        assert s.PORT == 3010
        assert s.TICKER_CACHE_TTL == 300
        assert s.RATE_LIMIT_MAX_ATTEMPTS == 5
        assert s.default_repo.repo == "Kaspa-Exchange-Data"

    def test_redis_url_no_auth(self):
        from gateway_service.config import GatewaySettings
        s = GatewaySettings(REDIS_PASSWORD="")
        assert s.REDIS_URL.startswith("redis://")
        assert "@" not in s.REDIS_URL

    def test_redis_url_with_auth(self):
        from gateway_service.config import GatewaySettings
        s = GatewaySettings(REDIS_PASSWORD="secret", REDIS_HOST="cache", REDIS_PORT=6379)
        assert ":secret@cache:6379" in s.REDIS_URL

    def test_docker_service_discovery(self):
        with patch.dict(os.environ, {"DOCKER_CONTAINER": "true"}, clear=False):
            from gateway_service import config as cfg_module
            assert cfg_module._default_redis_host() == "redis"

    def test_allowed_repos_from_env(self):
        from gateway_service.config import GatewaySettings
        repos = [{"source": "github", "owner": "acme", "repo": "prices"},
                 {"source": "github", "owner": "acme", "repo": "archive"}]
        with patch.dict(os.environ, {"ALLOWED_REPOS": json.dumps(repos)}, clear=False):
            s = GatewaySettings()
        assert len(s.ALLOWED_REPOS) == 2
        assert str(s.default_repo) == "github/acme/prices"

    def test_empty_repo_list_rejected(self):
        from pydantic import ValidationError
        from gateway_service.config import GatewaySettings
        with pytest.raises(ValidationError):
            GatewaySettings(ALLOWED_REPOS=[])

    def test_repo_config_is_hashable(self):
        from gateway_service.config import RepoConfig
        a = RepoConfig(source="github", owner="o", repo="r")
        assert a in {RepoConfig(source="github", owner="o", repo="r")}


# ─────────────────────────────────────────────────────────
# 2. 缓存键生成测试
# ─────────────────────────────────────────────────────────

class TestCacheKeys:
    def test_stats_key_format(self):
        from gateway_service.layers.cache import make_cache_key
        assert make_cache_key("ticker", "kaspa", "stats", "today") == "v1:ticker:kaspa:stats:today"

    def test_history_key_includes_resolution(self):
        from gateway_service.layers.cache import make_cache_key
        k1 = make_cache_key("ticker", "kaspa", "history", "7d", "1h")
        k2 = make_cache_key("ticker", "kaspa", "history", "7d", "1d")
        assert k1 != k2

    def test_long_key_hashed(self):
        from gateway_service.layers.cache import make_cache_key
        assert len(make_cache_key("content", *["segment"] * 50)) <= 250

    def test_key_consistency(self):
        from gateway_service.layers.cache import make_cache_key
        assert make_cache_key("a", "b", 1) == make_cache_key("a", "b", "1")


class TestRedisCache:
    @pytest.mark.asyncio
    async def test_no_connection_is_miss(self):
        from gateway_service.layers.cache import RedisCache
        with patch("gateway_service.layers.cache.get_redis", return_value=None):
            cache = RedisCache()
            assert await cache.get("k") is None
            assert await cache.set("k", "v", 300) is False
            assert await cache.health_check() is False

    @pytest.mark.asyncio
    async def test_read_failure_raises_cache_error(self):
        from redis.exceptions import ConnectionError as RedisConnectionError
        from gateway_service.exceptions import CacheError
        from gateway_service.layers.cache import RedisCache
        redis = MagicMock()
        redis.get = AsyncMock(side_effect=RedisConnectionError("down"))
        with patch("gateway_service.layers.cache.get_redis", return_value=redis):
            with pytest.raises(CacheError):
                await RedisCache().get("k")

    @pytest.mark.asyncio
    async def test_write_failure_swallowed(self):
        from redis.exceptions import TimeoutError as RedisTimeoutError
        from gateway_service.layers.cache import RedisCache
        redis = MagicMock()
        redis.setex = AsyncMock(side_effect=RedisTimeoutError("slow"))
        with patch("gateway_service.layers.cache.get_redis", return_value=redis):
            assert await RedisCache().set("k", "v", 300) is False

    @pytest.mark.asyncio
    async def test_set_uses_ttl(self):
        from gateway_service.layers.cache import RedisCache
        redis = MagicMock()
        redis.setex = AsyncMock(return_value=True)
        with patch("gateway_service.layers.cache.get_redis", return_value=redis):
            assert await RedisCache().set("k", "v", 300) is True
        redis.setex.assert_awaited_once_with("k", 300, "v")


# ─────────────────────────────────────────────────────────
# 3. 数据处理层测试
# ─────────────────────────────────────────────────────────

class TestSnapshotHelpers:
    def test_snapshot_path(self):
        from gateway_service.layers.processing import snapshot_path
        path = snapshot_path("KASPA", "ascendex", date(2025, 1, 5))
        assert path == "data/kaspa/ascendex/2025/01/2025-01-05-raw.json"

    @pytest.mark.parametrize("range_, start", [
        ("today", date(2025, 12, 29)),
        ("7d", date(2025, 12, 22)),
        ("30d", date(2025, 11, 29)),
        ("bogus", date(2025, 12, 29)),
    ])
    def test_date_range(self, range_, start):
        from gateway_service.layers.processing import calculate_date_range
        assert calculate_date_range(range_, date(2025, 12, 29)) == (start, date(2025, 12, 29))


class TestProcessingLayer:
    def setup_method(self):
        from gateway_service.layers.processing import ProcessingLayer
        self.proc = ProcessingLayer()

    def test_decode_snapshot(self):
        doc = {"data": [{"last": 1.5}]}
        assert self.proc.decode_snapshot(_snapshot_item(doc)) == doc

    def test_decode_invalid_base64(self):
        from gateway_service.exceptions import ParseError
        from gateway_service.models.content import ContentItem
        item = ContentItem(name="x", path="x", item_type="file", content="@@@not base64@@@",
                           encoding="base64")
        with pytest.raises(ParseError):
            self.proc.decode_snapshot(item)

    def test_decode_invalid_json(self):
        from gateway_service.exceptions import ParseError
        from gateway_service.models.content import ContentItem
        item = ContentItem(name="x", path="x", item_type="file",
                           content=base64.b64encode(b"{not json").decode(), encoding="base64")
        with pytest.raises(ParseError):
            self.proc.decode_snapshot(item)

    def test_decode_without_inline_content(self):
        from gateway_service.exceptions import ParseError
        from gateway_service.models.content import ContentItem
        item = ContentItem(name="x", path="x", item_type="file", encoding="none")
        with pytest.raises(ParseError):
            self.proc.decode_snapshot(item)

    def test_exchange_stats(self):
        doc = {"data": [
            {"last": 1.0, "high": 1.2, "low": 0.9, "quoteVolume": 100.0, "percentage": 1.0},
            {"last": 1.1, "high": 1.5, "low": 0.95, "quoteVolume": 250.0, "percentage": 2.0},
            {"last": 1.05, "low": 0.8, "percentage": -0.5},
        ]}
        stats = self.proc.parse_exchange_stats("ascendex", doc)
        assert stats.last == 1.05
        assert stats.high == 1.5
        assert stats.low == 0.8
        # quoteVolume 为累计量：取最后一个而不是求和
        assert stats.volume_24h == 250.0
        assert stats.change_pct == -0.5
        assert stats.data_points == 3

    @pytest.mark.parametrize("doc", [{}, {"data": []}, {"data": "nope"}, [1, 2]])
    def test_exchange_stats_empty(self, doc):
        stats = self.proc.parse_exchange_stats("x", doc)
        assert stats.data_points == 0
        assert stats.last is None and stats.high is None and stats.low is None
        assert stats.volume_24h is None and stats.change_pct is None

    def test_non_numeric_fields_ignored(self):
        stats = self.proc.parse_exchange_stats("x", {"data": [{"last": "1.0", "high": True, "low": 0.5}]})
        assert stats.last is None
        assert stats.high is None
        assert stats.low == 0.5
        assert stats.data_points == 1

    def test_points_without_numbers_count_as_empty(self):
        stats = self.proc.parse_exchange_stats("x", {"data": [{"last": "n/a"}, {"foo": 1}]})
        assert stats == self.proc.parse_exchange_stats("x", {"data": []})
        assert stats.data_points == 0

    def test_oversized_numbers_ignored(self):
        doc = {"data": [{"last": 10 ** 400, "high": 2.0, "quoteVolume": 10 ** 400}]}
        stats = self.proc.parse_exchange_stats("x", doc)
        assert stats.last is None
        assert stats.volume_24h is None
        assert stats.high == 2.0

    def test_out_of_range_points_skipped(self):
        points = [
            {"timestamp": 2 ** 64, "last": 2.0},
            {"timestamp": float(2 ** 70), "last": 4.0},
            {"timestamp": T_10_00, "last": 10 ** 400, "high": 10 ** 400},
            {"timestamp": T_10_05, "last": 3.0},
        ]
        (candle,) = self.proc.aggregate_to_ohlcv(points, "1h")
        assert candle.open == 0.0
        assert candle.close == 3.0
        assert candle.high == 3.0

    def test_vwap(self):
        agg = self.proc.calculate_aggregate([_stats("a", 2.0, 100.0), _stats("b", 4.0, 300.0)])
        assert agg.vwap == pytest.approx(3.5)
        assert agg.avg_price == pytest.approx(3.0)
        assert agg.total_volume_24h == pytest.approx(400.0)
        assert agg.exchange_count == 2

    def test_vwap_absent_when_no_volume(self):
        agg = self.proc.calculate_aggregate([_stats("a", 2.0, 0.0), _stats("b", 4.0, None)])
        assert agg.vwap is None
        assert agg.avg_price == pytest.approx(3.0)
        assert agg.exchange_count == 2

    def test_inactive_exchanges_excluded(self):
        agg = self.proc.calculate_aggregate([_stats("a", 2.0, 10.0), _stats("b")])
        assert agg.exchange_count == 1
        assert agg.avg_price == 2.0

    def test_aggregate_empty(self):
        agg = self.proc.calculate_aggregate([_stats("a"), _stats("b")])
        assert agg.exchange_count == 0
        assert agg.avg_price is None and agg.total_volume_24h is None and agg.vwap is None

    def test_hourly_bucketing(self):
        points = [
            {"timestamp": T_10_00, "last": 1.0, "high": 1.1, "low": 0.9, "quoteVolume": 10.0},
            {"timestamp": T_10_45, "last": 1.2, "high": 1.3, "low": 1.0, "quoteVolume": 20.0},
            {"timestamp": T_11_00, "last": 1.4, "quoteVolume": 30.0},
        ]
        candles = self.proc.aggregate_to_ohlcv(points, "1h")
        assert [c.timestamp for c in candles] == [T_10_00 // 1000, T_11_00 // 1000]
        first = candles[0]
        assert (first.open, first.high, first.low, first.close, first.volume) == (1.0, 1.3, 0.9, 1.2, 20.0)

    def test_bucket_starts_are_interval_multiples(self):
        points = [{"timestamp": T_10_00 + i * 61_000, "last": 1.0} for i in range(30)]
        for resolution, interval in [("1m", 60), ("5m", 300), ("1h", 3600), ("1d", 86400)]:
            candles = self.proc.aggregate_to_ohlcv(points, resolution)
            starts = [c.timestamp for c in candles]
            assert all(s % interval == 0 for s in starts)
            assert starts == sorted(set(starts))

    def test_high_low_fallback_to_close(self):
        points = [
            {"timestamp": T_10_00, "last": 2.0},
            {"timestamp": T_10_05, "last": 3.0},
        ]
        (candle,) = self.proc.aggregate_to_ohlcv(points, "1h")
        assert candle.high == candle.low == candle.close == 3.0
        assert candle.volume == 0.0

    def test_open_close_follow_timestamps(self):
        # 多交易所合并后的数据池不保证时间顺序
        points = [
            {"timestamp": T_10_45, "last": 5.0},
            {"timestamp": T_10_00, "last": 1.0},
            {"timestamp": T_10_05, "last": 3.0},
        ]
        (candle,) = self.proc.aggregate_to_ohlcv(points, "1h")
        assert candle.open == 1.0
        assert candle.close == 5.0

    def test_points_without_timestamp_skipped(self):
        points = [{"last": 1.0}, {"timestamp": "abc", "last": 2.0}, {"timestamp": T_10_00, "last": 3.0}]
        candles = self.proc.aggregate_to_ohlcv(points, "5m")
        assert len(candles) == 1
        assert candles[0].close == 3.0

    def test_empty_pool(self):
        assert self.proc.aggregate_to_ohlcv([], "1h") == []

    def test_unknown_resolution_defaults_to_hourly(self):
        candles = self.proc.aggregate_to_ohlcv(
            [{"timestamp": T_10_00, "last": 1.0}, {"timestamp": T_10_45, "last": 2.0}], "3w")
        assert len(candles) == 1


# ─────────────────────────────────────────────────────────
# 4. API 响应模型测试
# ─────────────────────────────────────────────────────────

class TestApiResponse:
    def test_ok(self):
        from gateway_service.models.response import ApiResponse
        r = ApiResponse.ok(data={"k": "v"}, message="done")
        assert r.success and r.error is None

    def test_fail(self):
        from gateway_service.models.response import ApiResponse
        r = ApiResponse.fail(error="oops", error_code="UPSTREAM_ERROR")
        assert not r.success and r.error == "oops" and r.error_code == "UPSTREAM_ERROR"


# ─────────────────────────────────────────────────────────
# 5. HTTP 路由测试（TestClient）
# ─────────────────────────────────────────────────────────

@pytest.fixture(scope="module")
def client():
    with patch("gateway_service.db.init_redis", new_callable=AsyncMock, return_value=False), \
         patch("gateway_service.db.close_connections", new_callable=AsyncMock):
        from gateway_service.main import app
        with TestClient(app) as c:
            yield c


def _stats_response():
    from gateway_service.models.ticker import AggregateStats, TickerStatsResponse
    return TickerStatsResponse(
        token="kaspa", timestamp="2025-12-29T10:00:00+00:00", range="today",
        start_date="2025-12-29", end_date="2025-12-29",
        exchanges=[_stats("ascendex", 0.1, 1000.0)],
        aggregate=AggregateStats(avg_price=0.1, total_volume_24h=1000.0, vwap=0.1, exchange_count=1),
    )


class TestHealthRoutes:
    def test_health_ok(self, client):
        cache = MagicMock()
        cache.health_check = AsyncMock(return_value=True)
        with patch("gateway_service.routers.health.get_cache_layer", return_value=cache):
            r = client.get("/health")
        assert r.status_code == 200
        body = r.json()
        assert body["data"]["status"] == "ok"
        assert body["data"]["mode"] == "read-only"
        from gateway_service import __version__
        assert body["data"]["version"] == __version__
        assert body["data"]["dependencies"]["redis"]["status"] == "healthy"

    def test_health_degraded(self, client):
        cache = MagicMock()
        cache.health_check = AsyncMock(return_value=False)
        with patch("gateway_service.routers.health.get_cache_layer", return_value=cache):
            r = client.get("/health")
        assert r.status_code == 503
        assert r.json()["data"]["status"] == "degraded"

    def test_healthz(self, client):
        assert client.get("/healthz").json()["status"] == "ok"

    def test_readyz(self, client):
        assert client.get("/readyz").json()["ready"] is True

    def test_root(self, client):
        body = client.get("/").json()
        assert "version" in body and "docs" in body

    def test_process_time_header(self, client):
        assert "X-Process-Time" in client.get("/healthz").headers

    def test_metrics(self, client):
        client.get("/v1/ticker/kaspa?range=bogus")
        r = client.get("/metrics")
        assert r.status_code == 200
        assert "gateway_api_requests_total" in r.text


class TestTickerRoutes:
    def test_stats(self, client):
        svc = MagicMock()
        svc.get_ticker_stats = AsyncMock(return_value=_stats_response())
        with patch("gateway_service.routers.ticker.get_ticker_service", return_value=svc):
            r = client.get("/v1/ticker/kaspa?range=today")
        assert r.status_code == 200
        data = r.json()["data"]
        assert data["aggregate"]["exchange_count"] == 1
        assert data["exchanges"][0]["exchange"] == "ascendex"
        svc.get_ticker_stats.assert_awaited_once_with("kaspa", "today")

    def test_stats_default_range(self, client):
        svc = MagicMock()
        svc.get_ticker_stats = AsyncMock(return_value=_stats_response())
        with patch("gateway_service.routers.ticker.get_ticker_service", return_value=svc):
            client.get("/v1/ticker/kaspa")
        svc.get_ticker_stats.assert_awaited_once_with("kaspa", "today")

    def test_invalid_range(self, client):
        assert client.get("/v1/ticker/kaspa?range=1y").status_code == 400

    def test_invalid_resolution(self, client):
        assert client.get("/v1/ticker/kaspa/history?resolution=4h").status_code == 400

    def test_unknown_token(self, client):
        from gateway_service.exceptions import NoSourcesFound
        svc = MagicMock()
        svc.get_ticker_stats = AsyncMock(side_effect=NoSourcesFound("nope"))
        with patch("gateway_service.routers.ticker.get_ticker_service", return_value=svc):
            r = client.get("/v1/ticker/nope")
        assert r.status_code == 404

    def test_unhandled_error_envelope(self):
        from gateway_service.main import app
        svc = MagicMock()
        svc.get_ticker_stats = AsyncMock(side_effect=RuntimeError("boom"))
        with patch("gateway_service.routers.ticker.get_ticker_service", return_value=svc):
            r = TestClient(app, raise_server_exceptions=False).get("/v1/ticker/kaspa")
        assert r.status_code == 500
        body = r.json()
        assert body["success"] is False
        assert body["error_code"] == "INTERNAL_ERROR"

    def test_rate_limited_upstream(self, client):
        from gateway_service.exceptions import RateLimitExhausted
        svc = MagicMock()
        svc.get_ticker_history = AsyncMock(side_effect=RateLimitExhausted(5))
        with patch("gateway_service.routers.ticker.get_ticker_service", return_value=svc):
            r = client.get("/v1/ticker/kaspa/history?range=7d&resolution=1h")
        assert r.status_code == 503

    def test_history(self, client):
        from gateway_service.models.ticker import OhlcvPoint, TickerHistoryResponse
        svc = MagicMock()
        svc.get_ticker_history = AsyncMock(return_value=TickerHistoryResponse(
            token="kaspa", range="7d", resolution="1h",
            start_date="2025-12-22", end_date="2025-12-29",
            data=[OhlcvPoint(timestamp=1767002400, open=1, high=2, low=0.5, close=1.5, volume=10)],
        ))
        with patch("gateway_service.routers.ticker.get_ticker_service", return_value=svc):
            r = client.get("/v1/ticker/kaspa/history")
        assert r.status_code == 200
        assert r.json()["data"]["data"][0]["timestamp"] == 1767002400
        svc.get_ticker_history.assert_awaited_once_with("kaspa", "7d", "1h")


class TestContentRoutes:
    def test_forbidden_repository(self, client):
        r = client.get("/v1/api/github/UnknownOrg/PrivateRepo/data")
        assert r.status_code == 403

    def test_not_found(self, client):
        from gateway_service.exceptions import UpstreamError
        svc = MagicMock()
        svc.get_content = AsyncMock(side_effect=UpstreamError("GitHub API Error: 404", 404))
        with patch("gateway_service.routers.content.get_content_service", return_value=svc):
            r = client.get("/v1/api/github/KaspaDev/Kaspa-Exchange-Data/invalid/path")
        assert r.status_code == 404

    def test_nested_path_and_paging(self, client):
        svc = MagicMock()
        svc.get_content = AsyncMock(return_value={"type": "dir", "items": []})
        with patch("gateway_service.routers.content.get_content_service", return_value=svc):
            r = client.get("/v1/api/github/KaspaDev/Kaspa-Exchange-Data/data/kaspa/2025?page=2&limit=10")
        assert r.status_code == 200
        svc.get_content.assert_awaited_once_with(
            "github", "KaspaDev", "Kaspa-Exchange-Data", "data/kaspa/2025", page=2, limit=10)

    def test_limit_validated(self, client):
        r = client.get("/v1/api/github/KaspaDev/Kaspa-Exchange-Data/data?limit=500")
        assert r.status_code == 422
