"""Ticker 聚合结果模型"""

from typing import List, Optional

from pydantic import BaseModel, Field


class ExchangeStats(BaseModel):
    """单个交易所的统计（数值字段缺失表示回看窗口内没有可用数据，而不是 0）"""

    exchange: str
    last: Optional[float] = None
    high: Optional[float] = None
    low: Optional[float] = None
    volume_24h: Optional[float] = None
    change_pct: Optional[float] = None
    data_points: int = 0

    @classmethod
    def empty(cls, exchange: str) -> "ExchangeStats":
        return cls(exchange=exchange)


class AggregateStats(BaseModel):
    """跨交易所汇总"""

    avg_price: Optional[float] = None
    total_volume_24h: Optional[float] = None
    vwap: Optional[float] = None
    exchange_count: int = 0


class OhlcvPoint(BaseModel):
    """单根 K 线，timestamp 为分桶起始时间（Unix 秒）"""

    timestamp: int
    open: float
    high: float
    low: float
    close: float
    volume: float


class TickerStatsResponse(BaseModel):
    token: str
    timestamp: str = Field(description="生成时间（ISO 8601，UTC）")
    range: str
    start_date: str
    end_date: str
    exchanges: List[ExchangeStats] = Field(default_factory=list)
    aggregate: AggregateStats = Field(default_factory=AggregateStats)


class TickerHistoryResponse(BaseModel):
    token: str
    range: str
    resolution: str
    start_date: str
    end_date: str
    data: List[OhlcvPoint] = Field(default_factory=list)
