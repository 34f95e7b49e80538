"""网关异常定义"""

from typing import Any, Dict, Optional


class GatewayError(Exception):
    """网关基础异常"""

    def __init__(
        self,
        message: str,
        error_code: str = "GATEWAY_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}


# ── 上游异常（会传播给调用方） ──────────────────────────────

class NetworkError(GatewayError):
    """无法连接上游（DNS、连接超时、读超时等传输层错误）"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "NETWORK_ERROR", details)


class RateLimitExhausted(GatewayError):
    """上游持续限流，重试次数耗尽"""

    def __init__(self, attempts: int, url: str = ""):
        super().__init__(
            f"上游请求在 {attempts} 次尝试后仍被限流: {url}",
            "RATE_LIMIT_EXHAUSTED",
            {"attempts": attempts, "url": url},
        )
        self.attempts = attempts


class UpstreamError(GatewayError):
    """上游返回非成功状态（与限流无关），例如路径不存在"""

    def __init__(self, message: str, status_code: Optional[int] = None, url: str = ""):
        super().__init__(
            message,
            "UPSTREAM_ERROR",
            {"status_code": status_code, "url": url},
        )
        self.status_code = status_code

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404


class NoSourcesFound(GatewayError):
    """代币下没有任何交易所目录"""

    def __init__(self, token: str):
        super().__init__(f"No exchanges found for token: {token}", "NO_SOURCES_FOUND", {"token": token})
        self.token = token


class AccessDenied(GatewayError):
    """请求的仓库不在白名单内"""

    def __init__(self, repository: str):
        super().__init__(f"Access denied for repository: {repository}", "ACCESS_DENIED",
                         {"repository": repository})


# ── 本地异常（在聚合过程中被吞掉，只影响结果集） ─────────────

class ParseError(GatewayError):
    """快照内容无法解码 / 解析"""

    def __init__(self, message: str, path: str = ""):
        super().__init__(message, "PARSE_ERROR", {"path": path})


class CacheError(GatewayError):
    """缓存读写失败"""

    def __init__(self, message: str, key: str = ""):
        super().__init__(message, "CACHE_ERROR", {"key": key})
