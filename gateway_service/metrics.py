"""Prometheus 指标收集"""

from typing import Optional

from prometheus_client import CollectorRegistry, Counter, generate_latest

_CACHE_OPERATIONS = ("hit", "miss", "error")


class MetricsCollector:
    """请求 / 缓存 / 上游重试计数，每个实例拥有独立的 registry"""

    def __init__(self, *, registry: Optional[CollectorRegistry] = None) -> None:
        self.registry = registry or CollectorRegistry()
        self.api_requests_total = Counter(
            "gateway_api_requests_total",
            "Total API requests received, grouped by endpoint.",
            ("endpoint",),
            registry=self.registry,
        )
        self.cache_operations_total = Counter(
            "gateway_cache_operations_total",
            "Cache lookups grouped by outcome.",
            ("operation",),
            registry=self.registry,
        )
        self.upstream_retries_total = Counter(
            "gateway_upstream_retries_total",
            "Rate-limited upstream responses, grouped by status code.",
            ("status",),
            registry=self.registry,
        )

    def record_request(self, endpoint: str) -> None:
        self.api_requests_total.labels(endpoint=endpoint).inc()

    def record_cache(self, operation: str) -> None:
        label = operation if operation in _CACHE_OPERATIONS else "__other__"
        self.cache_operations_total.labels(operation=label).inc()

    def record_retry(self, status: int) -> None:
        self.upstream_retries_total.labels(status=str(status)).inc()

    def render(self) -> bytes:
        return generate_latest(self.registry)


# ── 模块级别单例 ──────────────────────────────────────────
_collector: Optional[MetricsCollector] = None


def get_metrics_collector() -> MetricsCollector:
    global _collector
    if _collector is None:
        _collector = MetricsCollector()
    return _collector
