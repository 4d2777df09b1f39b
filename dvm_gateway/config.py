"""全局配置加载模块：从环境变量构建运行参数并提供缓存访问。"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _csv_to_list(value: str) -> list[str]:
    """将逗号分隔字符串转换为去空白列表。"""
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseSettings):
    """系统运行配置对象，从环境变量读取并提供类型化访问。"""
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "DVM Gateway"
    api_prefix: str = "/api/v1"
    environment: str = "dev"
    cors_allowed_origins: str = ""
    cors_allowed_methods: str = "GET,POST,OPTIONS"
    cors_allowed_headers: str = "Authorization,Content-Type,X-Request-Id"
    cors_allow_credentials: bool = False

    database_url: str = "sqlite:///./dvm_gateway.db"
    redis_url: str = "redis://localhost:6379/0"
    celery_task_always_eager: bool = False

    # 每个地址对应一个中继 HTTP 网关，查询时并发扇出并按事件 ID 合并。
    relay_urls: str = "http://127.0.0.1:7777"
    relay_auth_token: str | None = None
    relay_request_timeout_seconds: float = 10.0

    provider_list_timeout_seconds: float = 3.0
    provider_get_timeout_seconds: float = 2.0
    job_query_timeout_seconds: float = 3.0
    provider_jobs_timeout_seconds: float = 5.0

    job_poll_seconds: float = 5.0
    active_jobs_poll_seconds: float = 10.0
    active_jobs_window_hours: int = 24
    active_jobs_limit: int = 20
    job_history_limit: int = 50
    provider_jobs_limit: int = 50

    log_dir: Path = Field(default=Path("./logs"))
    log_level: str = "INFO"
    log_debug_modules: str = ""
    log_debug_job_ids: str = ""
    log_debug_pubkeys: str = ""
    log_redaction_mode: str = "standard"
    log_payload_preview_chars: int = 2000
    log_max_bytes: int = 20 * 1024 * 1024
    log_backup_count: int = 10

    def cors_allowed_origins_list(self) -> list[str]:
        return _csv_to_list(self.cors_allowed_origins)

    def cors_allowed_methods_list(self) -> list[str]:
        return _csv_to_list(self.cors_allowed_methods)

    def cors_allowed_headers_list(self) -> list[str]:
        return _csv_to_list(self.cors_allowed_headers)

    def relay_urls_list(self) -> list[str]:
        return _csv_to_list(self.relay_urls)

    def log_debug_modules_list(self) -> list[str]:
        return _csv_to_list(self.log_debug_modules)

    def log_debug_job_ids_list(self) -> list[str]:
        return _csv_to_list(self.log_debug_job_ids)

    def log_debug_pubkeys_list(self) -> list[str]:
        return _csv_to_list(self.log_debug_pubkeys)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """构建并缓存 Settings，同时将相对日志目录解析为绝对路径。"""
    settings = Settings()
    # 相对路径统一按当前工作目录解析，避免不同启动方式下语义漂移。
    if not settings.log_dir.is_absolute():
        settings.log_dir = (Path.cwd() / settings.log_dir).resolve()
    return settings
