"""
Layer 3 – 数据处理层
快照解码、单交易所统计、跨交易所汇总、按分辨率聚合 OHLCV。

快照文件格式：
    data/{token}/{exchange}/{YYYY}/{MM}/{YYYY-MM-DD}-raw.json
    {"data": [{"last": .., "high": .., "low": .., "quoteVolume": .., "percentage": .., "timestamp": ms}, ...]}
每个数据点的字段都可能缺失。quoteVolume 是累计值，取最后一个而不是求和。
"""

import base64
import binascii
import json
import logging
import math
from datetime import date, timedelta
from typing import Any, Dict, List, Optional, Sequence, Tuple

import pandas as pd

from gateway_service.exceptions import ParseError
from gateway_service.models.content import ContentItem
from gateway_service.models.ticker import AggregateStats, ExchangeStats, OhlcvPoint

logger = logging.getLogger(__name__)

RANGE_DAYS: Dict[str, int] = {"today": 0, "7d": 7, "30d": 30}

RESOLUTION_SECONDS: Dict[str, int] = {
    "1m": 60,
    "5m": 300,
    "1h": 3600,
    "1d": 86400,
}
_DEFAULT_INTERVAL = 3600

_POINT_COLUMNS = ["timestamp", "last", "high", "low", "quoteVolume"]

_INT64_MIN = -(2 ** 63)
_INT64_MAX = 2 ** 63 - 1


def _as_float(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    try:
        result = float(value)
    except OverflowError:
        return None
    return result if math.isfinite(result) else None


def _as_timestamp(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, float):
        if not value.is_integer():
            return None
        value = int(value)
    if not isinstance(value, int):
        return None
    # 超出 int64 的时间戳无法进入 DataFrame，按缺失处理
    if not _INT64_MIN <= value <= _INT64_MAX:
        return None
    return value


def snapshot_path(token: str, exchange: str, day: date) -> str:
    """单日原始快照文件路径"""
    return (
        f"data/{token.lower()}/{exchange}/{day:%Y}/{day:%m}/"
        f"{day:%Y-%m-%d}-raw.json"
    )


def calculate_date_range(range_: str, today: date) -> Tuple[date, date]:
    """today → [今天, 今天]；7d / 30d → [今天-N 天, 今天]；未知取值按 today 处理"""
    days = RANGE_DAYS.get(range_, 0)
    return today - timedelta(days=days), today


class ProcessingLayer:
    """数据处理层：快照 → 统计 / K 线"""

    # ── 快照解码 ──────────────────────────────────────────

    def decode_text(self, item: ContentItem) -> str:
        """解码 contents API 的内联 base64 内容为 UTF-8 文本"""
        if not item.content or item.encoding != "base64":
            raise ParseError(f"没有可用的内联内容（encoding={item.encoding}）", item.path)
        try:
            raw = base64.b64decode(item.content.replace("\n", ""), validate=True)
            return raw.decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as exc:
            raise ParseError(f"内容解码失败: {exc}", item.path) from exc

    def decode_snapshot(self, item: ContentItem) -> Any:
        """解码内联内容并解析 JSON"""
        text = self.decode_text(item)
        try:
            return json.loads(text)
        except ValueError as exc:
            raise ParseError(f"快照 JSON 解析失败: {exc}", item.path) from exc

    def extract_points(self, document: Any) -> List[Dict[str, Any]]:
        """取出快照中的 data 数组；结构不符时返回空列表"""
        if not isinstance(document, dict):
            return []
        data = document.get("data")
        if not isinstance(data, list):
            return []
        return [p for p in data if isinstance(p, dict)]

    # ── 单交易所统计 ──────────────────────────────────────

    def parse_exchange_stats(self, exchange: str, document: Any) -> ExchangeStats:
        """
        由单日快照计算交易所统计

        - last / change_pct 取最后一个数据点
        - high / low 为全部数据点 high / low 字段的最大 / 最小值
        - volume_24h 为最后一个携带 quoteVolume 的数据点的值（累计量）
        """
        points = self.extract_points(document)
        if not points:
            return ExchangeStats.empty(exchange)

        high: Optional[float] = None
        low: Optional[float] = None
        volume: Optional[float] = None
        for point in points:
            h = _as_float(point.get("high"))
            if h is not None:
                high = h if high is None else max(high, h)
            l = _as_float(point.get("low"))
            if l is not None:
                low = l if low is None else min(low, l)
            v = _as_float(point.get("quoteVolume"))
            if v is not None:
                volume = v

        latest = points[-1]
        last = _as_float(latest.get("last"))
        change_pct = _as_float(latest.get("percentage"))
        # 数据点存在但没有任何可用数值，与无数据等同
        if all(v is None for v in (last, high, low, volume, change_pct)):
            return ExchangeStats.empty(exchange)

        return ExchangeStats(
            exchange=exchange,
            last=last,
            high=high,
            low=low,
            volume_24h=volume,
            change_pct=change_pct,
            data_points=len(points),
        )

    # ── 跨交易所汇总 ──────────────────────────────────────

    def calculate_aggregate(self, exchanges: Sequence[ExchangeStats]) -> AggregateStats:
        """简单均价 + 总成交量 + VWAP；仅统计 last 存在的交易所"""
        active = [e for e in exchanges if e.last is not None]
        if not active:
            return AggregateStats()

        avg_price = sum(e.last for e in active) / len(active)
        total_volume = sum(e.volume_24h for e in active if e.volume_24h is not None)

        weighted_sum = 0.0
        volume_sum = 0.0
        for e in active:
            if e.volume_24h is not None:
                weighted_sum += e.last * e.volume_24h
                volume_sum += e.volume_24h
        vwap = weighted_sum / volume_sum if volume_sum > 0 else None

        return AggregateStats(
            avg_price=avg_price,
            total_volume_24h=total_volume,
            vwap=vwap,
            exchange_count=len(active),
        )

    # ── OHLCV 聚合 ────────────────────────────────────────

    def to_frame(self, points: Sequence[Dict[str, Any]]) -> pd.DataFrame:
        """原始数据点 → 标准 DataFrame，丢弃没有整数时间戳的点"""
        rows = []
        for point in points:
            ts = _as_timestamp(point.get("timestamp"))
            if ts is None:
                continue
            rows.append({
                "timestamp": ts,
                "last": _as_float(point.get("last")),
                "high": _as_float(point.get("high")),
                "low": _as_float(point.get("low")),
                "quoteVolume": _as_float(point.get("quoteVolume")),
            })
        df = pd.DataFrame(rows, columns=_POINT_COLUMNS)
        return df.astype({
            "timestamp": "int64",
            "last": "float64",
            "high": "float64",
            "low": "float64",
            "quoteVolume": "float64",
        })

    def aggregate_to_ohlcv(
        self, points: Sequence[Dict[str, Any]], resolution: str
    ) -> List[OhlcvPoint]:
        """
        按固定分辨率分桶生成 K 线

        分桶起点 = (毫秒时间戳 // 1000) // 间隔 * 间隔。
        桶内先按时间戳稳定排序，再取首 / 尾点的 last 作为 open / close
        （缺失 last 计为 0.0）；桶内没有任何 high / low 字段时回落为 close；
        volume 取桶内最后一个 quoteVolume（累计量），没有则为 0.0。
        """
        df = self.to_frame(points)
        if df.empty:
            return []

        interval = RESOLUTION_SECONDS.get(resolution, _DEFAULT_INTERVAL)
        df["bucket"] = (df["timestamp"] // 1000) // interval * interval
        df["last"] = df["last"].fillna(0.0)
        df = df.sort_values(["bucket", "timestamp"], kind="mergesort")

        grouped = df.groupby("bucket", sort=True)
        ohlc = pd.DataFrame({
            "open": grouped["last"].first(),
            "high": grouped["high"].max(),
            "low": grouped["low"].min(),
            "close": grouped["last"].last(),
            "volume": grouped["quoteVolume"].last(),
        })
        ohlc["high"] = ohlc["high"].fillna(ohlc["close"])
        ohlc["low"] = ohlc["low"].fillna(ohlc["close"])
        ohlc["volume"] = ohlc["volume"].fillna(0.0)

        return [
            OhlcvPoint(
                timestamp=int(bucket),
                open=float(row["open"]),
                high=float(row["high"]),
                low=float(row["low"]),
                close=float(row["close"]),
                volume=float(row["volume"]),
            )
            for bucket, row in ohlc.iterrows()
        ]


# ── 模块级别单例 ──────────────────────────────────────────
_processor: Optional[ProcessingLayer] = None


def get_processing_layer() -> ProcessingLayer:
    global _processor
    if _processor is None:
        _processor = ProcessingLayer()
    return _processor
