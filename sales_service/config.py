"""
Sales Service — 設定

すべての設定は環境変数から読み込む。
DATABASE_URL だけは必須で、それ以外はデフォルト値を持つ。
"""

import os

from pydantic import BaseModel


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Settings(BaseModel):
    database_url: str
    redis_url: str | None = None
    service_name: str = "sales-service"
    log_level: str = "INFO"
    log_format: str = "text"
    db_connect_retries: int = 3
    db_retry_interval: float = 5.0
    db_pool_size: int = 10
    db_lock_timeout_ms: int = 5000
    db_create_schema: bool = True

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=os.environ["DATABASE_URL"],
            redis_url=os.environ.get("REDIS_URL") or None,
            service_name=os.environ.get("SERVICE_NAME", "sales-service"),
            log_level=os.environ.get("LOG_LEVEL", "INFO"),
            log_format=os.environ.get("LOG_FORMAT", "text"),
            db_connect_retries=int(os.environ.get("DB_CONNECT_RETRIES", "3")),
            db_retry_interval=float(os.environ.get("DB_RETRY_INTERVAL", "5")),
            db_pool_size=int(os.environ.get("DB_POOL_SIZE", "10")),
            db_lock_timeout_ms=int(os.environ.get("DB_LOCK_TIMEOUT_MS", "5000")),
            db_create_schema=_env_bool("DB_CREATE_SCHEMA", True),
        )
