"""
内容代理服务
按 {source}/{owner}/{repo}/{path} 透传白名单仓库中的文件或目录，带缓存
"""

import json
import logging
from typing import Any, Dict, List, Optional

from gateway_service.config import RepoConfig, settings
from gateway_service.exceptions import AccessDenied, CacheError, ParseError
from gateway_service.layers.cache import make_cache_key
from gateway_service.layers.interfaces import CacheBackend, ContentSource, MetricsSink
from gateway_service.layers.processing import ProcessingLayer, get_processing_layer
from gateway_service.models.content import ContentItem

logger = logging.getLogger(__name__)

_CACHE_NS = "content"


class ContentService:
    """白名单校验 + 缓存 + 文件 / 目录透传"""

    def __init__(
        self,
        content: ContentSource,
        cache: CacheBackend,
        allowed_repos: List[RepoConfig],
        metrics: MetricsSink,
        *,
        processor: Optional[ProcessingLayer] = None,
        cache_ttl: Optional[int] = None,
    ):
        self._content = content
        self._cache = cache
        self._allowed = set(allowed_repos)
        self._metrics = metrics
        self._proc = processor or get_processing_layer()
        self._cache_ttl = cache_ttl or settings.CONTENT_CACHE_TTL

    def check_access(self, source: str, owner: str, repo: str) -> RepoConfig:
        config = RepoConfig(source=source, owner=owner, repo=repo)
        if config not in self._allowed:
            raise AccessDenied(str(config))
        return config

    async def get_content(
        self,
        source: str,
        owner: str,
        repo: str,
        path: str,
        page: int = 1,
        limit: int = 30,
    ) -> Dict[str, Any]:
        """
        获取文件内容或目录列表

        文件：返回元数据 + 解码后的内容（能解析为 JSON 时返回 JSON）
        目录：按 page / limit 分页返回条目
        """
        config = self.check_access(source, owner, repo)
        cache_key = make_cache_key(_CACHE_NS, source, owner, repo, path, page, limit)

        cached = await self._read_cache(cache_key)
        if cached is not None:
            return cached

        result = await self._content.get_contents(config, path)
        if isinstance(result, list):
            payload = self._render_directory(path, result, page, limit)
        else:
            payload = await self._render_file(result)

        try:
            await self._cache.set(cache_key, json.dumps(payload, ensure_ascii=False), self._cache_ttl)
        except CacheError as exc:
            logger.warning(f"缓存写入失败 {cache_key}: {exc}")
        return payload

    def _render_directory(
        self, path: str, items: List[ContentItem], page: int, limit: int
    ) -> Dict[str, Any]:
        offset = (page - 1) * limit
        return {
            "type": "dir",
            "path": path,
            "total": len(items),
            "page": page,
            "limit": limit,
            "items": [item.summary() for item in items[offset:offset + limit]],
        }

    async def _render_file(self, item: ContentItem) -> Dict[str, Any]:
        payload = {
            "type": "file",
            "name": item.name,
            "path": item.path,
            "html_url": item.html_url,
            "download_url": item.download_url,
        }
        if item.content:
            try:
                text = self._proc.decode_text(item)
            except ParseError as exc:
                logger.warning(f"文件内容解码失败 {item.path}: {exc}")
                payload["content"] = None
                return payload
            try:
                payload["content"] = json.loads(text)
            except ValueError:
                payload["content"] = text
        elif item.download_url and item.name.endswith(".json"):
            payload["content"] = await self._content.fetch_raw(item.download_url)
        else:
            payload["content"] = None
        return payload

    async def _read_cache(self, key: str) -> Optional[Dict[str, Any]]:
        try:
            cached = await self._cache.get(key)
        except CacheError as exc:
            logger.warning(f"缓存读取失败，降级为直接请求: {exc}")
            self._metrics.record_cache("error")
            return None
        if cached is None:
            self._metrics.record_cache("miss")
            return None
        try:
            value = json.loads(cached)
        except ValueError:
            self._metrics.record_cache("miss")
            return None
        self._metrics.record_cache("hit")
        return value


# ── 模块级别单例 ──────────────────────────────────────────
_content_service: Optional[ContentService] = None


def get_content_service() -> ContentService:
    global _content_service
    if _content_service is None:
        from gateway_service.layers.acquisition import get_content_source
        from gateway_service.layers.cache import get_cache_layer
        from gateway_service.metrics import get_metrics_collector

        _content_service = ContentService(
            get_content_source(),
            get_cache_layer(),
            settings.ALLOWED_REPOS,
            get_metrics_collector(),
        )
    return _content_service
