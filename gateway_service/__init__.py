"""
交易所数据网关服务
只读 API 网关：从 GitHub 数据仓库拉取交易所快照文件，缓存后聚合为统计与 K 线

架构分层：
  数据获取层 (Acquisition)  → GitHub contents API，限流检测与指数退避重试
  缓存层     (Cache)        → Redis TTL 缓存（cache-aside，失败降级）
  处理层     (Processing)   → 快照解码、单交易所统计、跨交易所聚合、OHLCV 分桶
  服务层     (Services)     → Ticker 聚合引擎、内容代理
"""

__version__ = "1.0.0"
