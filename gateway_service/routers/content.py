"""
内容代理路由
GET /v1/api/{source}/{owner}/{repo}/{path}  - 读取白名单仓库中的文件或目录
"""

import logging

from fastapi import APIRouter, Query

from gateway_service.exceptions import GatewayError
from gateway_service.metrics import get_metrics_collector
from gateway_service.models.response import ApiResponse
from gateway_service.routers.errors import to_http_exception
from gateway_service.services.content_service import get_content_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/api", tags=["内容代理"])


@router.get("/{source}/{owner}/{repo}/{path:path}", response_model=ApiResponse)
async def get_content(
    source: str,
    owner: str,
    repo: str,
    path: str,
    page: int = Query(default=1, ge=1, le=10000, description="目录分页页码"),
    limit: int = Query(default=30, ge=1, le=100, description="每页条目数"),
):
    """读取文件（含解码后的内容）或目录列表"""
    get_metrics_collector().record_request("content")
    request_info = f"{source}/{owner}/{repo}/{path}"

    try:
        data = await get_content_service().get_content(source, owner, repo, path, page=page, limit=limit)
    except GatewayError as exc:
        logger.warning(f"内容请求失败 {request_info}: {exc.message}")
        raise to_http_exception(exc, request_info)
    return ApiResponse.ok(data=data)
