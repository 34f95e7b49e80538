"""网关异常 → HTTP 状态码映射"""

from fastapi import HTTPException, status

from gateway_service.exceptions import (
    AccessDenied,
    GatewayError,
    NetworkError,
    NoSourcesFound,
    RateLimitExhausted,
    UpstreamError,
)


def to_http_exception(exc: GatewayError, resource: str) -> HTTPException:
    if isinstance(exc, NoSourcesFound):
        return HTTPException(status.HTTP_404_NOT_FOUND, f"Token not found: {exc.token}")
    if isinstance(exc, AccessDenied):
        return HTTPException(status.HTTP_403_FORBIDDEN, exc.message)
    if isinstance(exc, UpstreamError) and exc.is_not_found:
        return HTTPException(status.HTTP_404_NOT_FOUND, f"Resource not found: {resource}")
    if isinstance(exc, RateLimitExhausted):
        return HTTPException(
            status.HTTP_503_SERVICE_UNAVAILABLE,
            "上游限流，请稍后重试",
            headers={"Retry-After": "60"},
        )
    if isinstance(exc, (UpstreamError, NetworkError)):
        return HTTPException(status.HTTP_502_BAD_GATEWAY, f"上游请求失败: {resource}")
    return HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, f"Internal server error processing: {resource}")
