"""
数据流分层架构
  Layer 1 – Acquisition  : 上游内容获取（GitHub contents API + 限流重试）
  Layer 2 – Cache        : Redis TTL 缓存（cache-aside）
  Layer 3 – Processing   : 快照解码、统计计算、OHLCV 分桶

服务层只依赖 interfaces 中定义的两个能力协议（ContentSource / CacheBackend），
测试时可替换为内存实现。
"""
