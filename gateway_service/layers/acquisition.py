"""
Layer 1 – 数据获取层
通过 GitHub contents API 拉取文件 / 目录列表，统一处理限流检测与指数退避重试。

重试只发生在这一层：上层调用方不会自行重发失败的请求。
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

import httpx

from gateway_service.config import RepoConfig, settings
from gateway_service.exceptions import (
    NetworkError,
    RateLimitExhausted,
    UpstreamError,
)
from gateway_service.layers.interfaces import MetricsSink
from gateway_service.models.content import ContentItem

logger = logging.getLogger(__name__)

# GitHub 在配额耗尽时既可能返回 429，也可能返回 403
RATE_LIMIT_STATUSES = (429, 403)

_ACCEPT_JSON = "application/vnd.github.v3+json"
_ACCEPT_RAW = "application/vnd.github.v3.raw"


class GitHubContentSource:
    """GitHub 内容读取适配器，实现 ContentSource 协议"""

    def __init__(
        self,
        token: Optional[str] = None,
        *,
        api_url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        max_attempts: Optional[int] = None,
        base_delay: Optional[float] = None,
        max_delay: Optional[float] = None,
        warn_threshold: Optional[int] = None,
        metrics: Optional[MetricsSink] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._token = settings.GITHUB_TOKEN if token is None else token
        self._api_url = (api_url or settings.GITHUB_API_URL).rstrip("/")
        self._client = client
        self._max_attempts = max_attempts or settings.RATE_LIMIT_MAX_ATTEMPTS
        self._base_delay = settings.RATE_LIMIT_BASE_DELAY if base_delay is None else base_delay
        self._max_delay = settings.RATE_LIMIT_MAX_DELAY if max_delay is None else max_delay
        self._warn_threshold = (
            settings.RATE_LIMIT_WARN_THRESHOLD if warn_threshold is None else warn_threshold
        )
        self._metrics = metrics
        self._sleep = sleep

    # ── 连接管理 ──────────────────────────────────────────

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(settings.HTTP_TIMEOUT, connect=settings.HTTP_CONNECT_TIMEOUT),
                follow_redirects=True,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _headers(self, accept: str) -> Dict[str, str]:
        headers = {"Accept": accept, "User-Agent": settings.GITHUB_USER_AGENT}
        if self._token:
            headers["Authorization"] = f"token {self._token}"
        return headers

    def _contents_url(self, config: RepoConfig, path: str) -> str:
        if config.source != "github":
            raise UpstreamError(f"不支持的数据源: {config.source}", status_code=400)
        clean_path = path.lstrip("/")
        return f"{self._api_url}/repos/{config.owner}/{config.repo}/contents/{clean_path}"

    # ── 限流与重试 ────────────────────────────────────────

    def _check_rate_limit(self, response: httpx.Response) -> None:
        """读取 X-RateLimit-Remaining，低于阈值时告警（仅用于观测）"""
        raw = response.headers.get("x-ratelimit-remaining")
        if raw is None:
            return
        try:
            remaining = int(raw)
        except ValueError:
            return
        if remaining < self._warn_threshold:
            logger.warning(f"GitHub API 剩余配额偏低: {remaining}")
        if remaining == 0:
            reset = response.headers.get("x-ratelimit-reset")
            if reset:
                logger.info(f"GitHub API 配额已耗尽，重置时间: {reset}")

    @staticmethod
    def _retry_after(response: httpx.Response) -> Optional[float]:
        raw = response.headers.get("retry-after")
        if raw is None:
            return None
        try:
            return float(int(raw.strip()))
        except ValueError:
            return None

    async def _execute_with_retry(self, url: str, accept: str) -> httpx.Response:
        """
        发送 GET 请求；遇到 429 / 403 时按指数退避重试

        等待时间优先取 Retry-After，否则取当前退避值；退避值每次翻倍，上限 max_delay。
        最后一次尝试仍被限流时抛出 RateLimitExhausted。
        """
        client = self._ensure_client()
        headers = self._headers(accept)
        delay = self._base_delay

        for attempt in range(1, self._max_attempts + 1):
            try:
                response = await client.get(url, headers=headers)
            except httpx.HTTPError as exc:
                raise NetworkError(f"请求上游失败: {exc}", {"url": url}) from exc

            self._check_rate_limit(response)

            if response.status_code not in RATE_LIMIT_STATUSES:
                return response

            if self._metrics is not None:
                self._metrics.record_retry(response.status_code)
            if attempt >= self._max_attempts:
                break

            hint = self._retry_after(response)
            wait = min(hint if hint is not None else delay, self._max_delay)
            logger.warning(
                f"上游限流（第 {attempt}/{self._max_attempts} 次，状态 {response.status_code}），"
                f"{wait:.2f} 秒后重试"
            )
            await self._sleep(wait)
            delay = min(delay * 2, self._max_delay)

        raise RateLimitExhausted(self._max_attempts, url)

    async def _get_json(self, url: str, accept: str = _ACCEPT_JSON) -> Any:
        response = await self._execute_with_retry(url, accept)
        if not response.is_success:
            raise UpstreamError(f"GitHub API Error: {response.status_code}", response.status_code, url)
        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamError(f"上游返回了无效 JSON: {exc}", response.status_code, url) from exc

    # ── ContentSource 协议 ────────────────────────────────

    async def get_contents(
        self, config: RepoConfig, path: str
    ) -> Union[ContentItem, List[ContentItem]]:
        """获取路径内容：文件返回单个条目，目录返回条目列表"""
        url = self._contents_url(config, path)
        payload = await self._get_json(url)
        if isinstance(payload, list):
            return [ContentItem.from_github(item) for item in payload if isinstance(item, dict)]
        if isinstance(payload, dict):
            return ContentItem.from_github(payload)
        raise UpstreamError("GitHub API 返回了无法识别的内容结构", url=url)

    async def fetch(self, config: RepoConfig, path: str) -> ContentItem:
        result = await self.get_contents(config, path)
        if isinstance(result, list):
            raise UpstreamError(f"路径是目录而不是文件: {path}")
        return result

    async def list(self, config: RepoConfig, path: str) -> List[ContentItem]:
        result = await self.get_contents(config, path)
        if isinstance(result, ContentItem):
            raise UpstreamError(f"路径是文件而不是目录: {path}")
        return result

    async def fetch_raw(self, url: str) -> Any:
        """按 download_url 直接拉取原始 JSON 文件"""
        return await self._get_json(url, accept=_ACCEPT_RAW)


# ── 模块级别单例 ──────────────────────────────────────────
_content_source: Optional[GitHubContentSource] = None


def get_content_source() -> GitHubContentSource:
    global _content_source
    if _content_source is None:
        from gateway_service.metrics import get_metrics_collector
        _content_source = GitHubContentSource(metrics=get_metrics_collector())
    return _content_source


async def close_content_source() -> None:
    global _content_source
    if _content_source is not None:
        await _content_source.aclose()
        _content_source = None
