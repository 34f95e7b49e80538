"""统一 API 响应模型"""

from typing import Any, Dict, Optional
from pydantic import BaseModel, Field


class ApiResponse(BaseModel):
    """标准 API 响应封装"""
    success: bool = True
    data: Optional[Any] = None
    message: str = ""
    error: Optional[str] = None
    error_code: Optional[str] = None

    @classmethod
    def ok(cls, data: Any = None, message: str = "success") -> "ApiResponse":
        return cls(success=True, data=data, message=message)

    @classmethod
    def fail(cls, error: str, message: str = "failed", error_code: Optional[str] = None) -> "ApiResponse":
        return cls(success=False, error=error, message=message, error_code=error_code)


class HealthData(BaseModel):
    """健康检查返回体"""
    status: str
    version: str
    mode: str = "read-only"
    timestamp: int
    service: str = "Exchange Data Gateway"
    dependencies: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
