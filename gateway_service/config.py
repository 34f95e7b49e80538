"""
网关服务配置模块
支持从环境变量 / .env 读取配置，自动检测 Docker 容器环境并启用服务发现
"""

import os
from functools import lru_cache
from typing import List

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _is_docker() -> bool:
    """检测当前是否运行在 Docker 容器内"""
    return (
        os.path.exists("/.dockerenv")
        or os.environ.get("DOCKER_CONTAINER", "").lower() in ("1", "true", "yes")
    )


def _default_redis_host() -> str:
    """Docker 环境使用服务名 'redis'，本地使用 'localhost'"""
    return "redis" if _is_docker() else "localhost"


class RepoConfig(BaseModel):
    """数据仓库标识：平台 / 组织 / 仓库名"""

    model_config = ConfigDict(frozen=True)

    source: str
    owner: str
    repo: str

    def __str__(self) -> str:
        return f"{self.source}/{self.owner}/{self.repo}"


def _default_repos() -> List[RepoConfig]:
    return [RepoConfig(source="github", owner="KaspaDev", repo="Kaspa-Exchange-Data")]


class GatewaySettings(BaseSettings):
    """网关服务配置"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── 基础配置 ──────────────────────────────────────────
    HOST: str = Field(default="0.0.0.0")
    PORT: int = Field(default=3010)
    DEBUG: bool = Field(default=False)
    ALLOWED_ORIGINS: List[str] = Field(
        default_factory=lambda: ["*"]
    )

    # ── 数据仓库白名单（第一个为 Ticker 默认仓库） ──────────
    ALLOWED_REPOS: List[RepoConfig] = Field(default_factory=_default_repos)

    @field_validator("ALLOWED_REPOS")
    @classmethod
    def _at_least_one_repo(cls, value: List[RepoConfig]) -> List[RepoConfig]:
        if not value:
            raise ValueError("ALLOWED_REPOS 至少需要配置一个仓库")
        return value

    @property
    def default_repo(self) -> RepoConfig:
        return self.ALLOWED_REPOS[0]

    # ── GitHub 配置 ───────────────────────────────────────
    GITHUB_TOKEN: str = Field(default="")
    GITHUB_API_URL: str = Field(default="https://api.github.com")
    GITHUB_USER_AGENT: str = Field(default="GitRows-API-Proxy")
    HTTP_TIMEOUT: float = Field(default=30.0)
    HTTP_CONNECT_TIMEOUT: float = Field(default=5.0)

    # ── 限流重试配置 ──────────────────────────────────────
    RATE_LIMIT_MAX_ATTEMPTS: int = Field(default=5)
    RATE_LIMIT_BASE_DELAY: float = Field(default=0.1)    # 首次退避（秒）
    RATE_LIMIT_MAX_DELAY: float = Field(default=30.0)    # 退避上限（秒）
    RATE_LIMIT_WARN_THRESHOLD: int = Field(default=100)  # 剩余配额告警阈值

    # ── Redis 配置（支持服务发现） ─────────────────────────
    REDIS_HOST: str = Field(default_factory=_default_redis_host)
    REDIS_PORT: int = Field(default=6379)
    REDIS_PASSWORD: str = Field(default="")
    REDIS_DB: int = Field(default=0)
    REDIS_ENABLED: bool = Field(default=True)
    REDIS_MAX_CONNECTIONS: int = Field(default=20)

    @property
    def REDIS_URL(self) -> str:
        if self.REDIS_PASSWORD:
            return f"redis://:{self.REDIS_PASSWORD}@{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    # ── 聚合引擎配置 ──────────────────────────────────────
    TICKER_CACHE_TTL: int = Field(default=300)     # Ticker 统计 / 历史缓存 TTL（秒）
    CONTENT_CACHE_TTL: int = Field(default=300)    # 内容代理缓存 TTL（秒）
    STATS_MAX_CONCURRENCY: int = Field(default=10)
    HISTORY_MAX_SOURCES: int = Field(default=5)
    HISTORY_MAX_TRIES: int = Field(default=15)

    # ── 日志配置 ──────────────────────────────────────────
    LOG_LEVEL: str = Field(default="INFO")


@lru_cache
def get_settings() -> GatewaySettings:
    """获取全局配置（单例）"""
    return GatewaySettings()


settings = get_settings()
