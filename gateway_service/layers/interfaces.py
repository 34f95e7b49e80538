"""服务层依赖的能力协议"""

from typing import Any, List, Optional, Protocol, Union

from gateway_service.config import RepoConfig
from gateway_service.models.content import ContentItem


class ContentSource(Protocol):
    """上游内容读取能力"""

    async def get_contents(
        self, config: RepoConfig, path: str
    ) -> Union[ContentItem, List[ContentItem]]: ...

    async def fetch(self, config: RepoConfig, path: str) -> ContentItem: ...

    async def list(self, config: RepoConfig, path: str) -> List[ContentItem]: ...

    async def fetch_raw(self, url: str) -> Any: ...


class CacheBackend(Protocol):
    """键值缓存能力：get 未命中返回 None，失败抛出 CacheError；set 尽力而为"""

    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str, ttl: int) -> bool: ...

    async def health_check(self) -> bool: ...


class MetricsSink(Protocol):
    """指标上报能力"""

    def record_cache(self, operation: str) -> None: ...

    def record_request(self, endpoint: str) -> None: ...

    def record_retry(self, status: int) -> None: ...
