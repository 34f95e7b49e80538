"""
Layer 2 – 缓存层
Redis TTL 缓存，实现 CacheBackend 协议。

缓存只起加速作用：Redis 未连接时一律视为未命中，写入失败只记日志。
"""

import hashlib
import logging
from typing import Optional

from redis.exceptions import RedisError

from gateway_service.db import get_redis
from gateway_service.exceptions import CacheError

logger = logging.getLogger(__name__)

_KEY_VERSION = "v1"


def make_cache_key(namespace: str, *parts: str) -> str:
    """生成规范化缓存键，例如 v1:ticker:kaspa:stats:today"""
    raw = ":".join([_KEY_VERSION, namespace] + [str(p) for p in parts])
    if len(raw) > 200:
        raw = f"{_KEY_VERSION}:{namespace}:" + hashlib.md5(raw.encode()).hexdigest()
    return raw


class RedisCache:
    """基于全局 Redis 连接池的缓存后端"""

    async def get(self, key: str) -> Optional[str]:
        redis = get_redis()
        if redis is None:
            return None
        try:
            raw = await redis.get(key)
        except RedisError as exc:
            raise CacheError(f"Redis 读取失败: {exc}", key) from exc
        if raw is not None:
            logger.debug(f"缓存命中（Redis）: {key}")
        return raw

    async def set(self, key: str, value: str, ttl: int) -> bool:
        redis = get_redis()
        if redis is None:
            return False
        try:
            await redis.setex(key, ttl, value)
        except RedisError as exc:
            logger.warning(f"Redis 写入失败 {key}: {exc}")
            return False
        logger.debug(f"缓存写入（Redis）: {key} ttl={ttl}")
        return True

    async def health_check(self) -> bool:
        redis = get_redis()
        if redis is None:
            return False
        try:
            return bool(await redis.ping())
        except RedisError as exc:
            logger.warning(f"Redis 健康检查失败: {exc}")
            return False


# ── 模块级别单例 ──────────────────────────────────────────
_cache: Optional[RedisCache] = None


def get_cache_layer() -> RedisCache:
    global _cache
    if _cache is None:
        _cache = RedisCache()
    return _cache
