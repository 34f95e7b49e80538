"""上游文件树节点模型"""

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class ContentType(str, Enum):
    FILE = "file"
    DIR = "dir"

    @classmethod
    def from_github(cls, value: Optional[str]) -> "ContentType":
        # symlink / submodule 按文件处理
        return cls.DIR if value == "dir" else cls.FILE


class ContentItem(BaseModel):
    """GitHub contents API 返回的单个文件 / 目录条目"""

    name: str
    path: str
    item_type: ContentType = Field(alias="type")
    url: str = ""
    content: Optional[str] = None
    encoding: Optional[str] = None
    html_url: Optional[str] = None
    download_url: Optional[str] = None

    model_config = {"populate_by_name": True}

    @property
    def is_dir(self) -> bool:
        return self.item_type == ContentType.DIR

    @property
    def is_file(self) -> bool:
        return self.item_type == ContentType.FILE

    @classmethod
    def from_github(cls, payload: Dict[str, Any]) -> "ContentItem":
        return cls(
            name=payload.get("name", ""),
            path=payload.get("path", ""),
            item_type=ContentType.from_github(payload.get("type")),
            url=payload.get("url") or "",
            content=payload.get("content"),
            encoding=payload.get("encoding"),
            html_url=payload.get("html_url"),
            download_url=payload.get("download_url"),
        )

    def summary(self) -> Dict[str, Any]:
        """目录列表中使用的精简视图"""
        return {
            "name": self.name,
            "path": self.path,
            "type": self.item_type.value,
            "download_url": self.download_url,
        }
