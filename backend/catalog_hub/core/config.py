# Environment configuration
# pydantic-settings reads env vars and .env -> core/config.py

from typing import Optional
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# When running uvicorn directly (outside Docker), env_file=".env" resolves to backend/.env

class Settings(BaseSettings):

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_prefix="",
        case_sensitive=False,
    )

    # ========= project config =========
    PROJECT_NAME: str = "Catalog Sync Hub"
    ENVIRONMENT: str = "dev"
    API_PREFIX: str = "/api/v1"
    BACKEND_CORS_ORIGINS: str = "http://localhost:5173"


    # ========= Database =========
    # container default points at the "db" service; SQLite URLs work for local runs
    DATABASE_URL: str = Field(
        default="postgresql+psycopg://catalog_user:catalog_pass@db:5432/catalog_dev",
        alias="DATABASE_URL",
    )


    # ========= celery config =========
    CELERY_BROKER_URL: Optional[str] = None
    CELERY_RESULT_BACKEND: Optional[str] = None
    CELERY_TIMEZONE: str = "UTC"
    CRON_FULL_SYNC_SEC: int = Field(default=0, alias="CRON_FULL_SYNC_SEC")      # 0 = no beat schedule
    SYNC_TASKS_INLINE: bool = Field(default=True, alias="SYNC_TASKS_INLINE")


    # ========= sync engine =========
    SYNC_MAX_PAGES: int = Field(10_000, ge=1, alias="SYNC_MAX_PAGES")              # hard page cap per pagination
    SYNC_MAX_OFFERS: int = Field(1_000_000, ge=1, alias="SYNC_MAX_OFFERS")         # default item cap per storefront
    SYNC_PAGE_DELAY_SEC: float = Field(0.1, ge=0, alias="SYNC_PAGE_DELAY_SEC")
    SYNC_BATCH_DELAY_SEC: float = Field(0.2, ge=0, alias="SYNC_BATCH_DELAY_SEC")
    SYNC_FANOUT_CONCURRENCY: int = Field(2, ge=1, le=3, alias="SYNC_FANOUT_CONCURRENCY")
    SYNC_RETRY_MAX_ATTEMPTS: int = Field(3, ge=1, alias="SYNC_RETRY_MAX_ATTEMPTS")
    SYNC_RETRY_BASE_DELAY_SEC: float = Field(1.0, ge=0, alias="SYNC_RETRY_BASE_DELAY_SEC")
    SYNC_RETRY_MAX_DELAY_SEC: float = Field(60.0, ge=0, alias="SYNC_RETRY_MAX_DELAY_SEC")
    SYNC_WRITE_BATCH_SIZE: int = Field(100, ge=1, alias="SYNC_WRITE_BATCH_SIZE")
    SYNC_STATE_TTL_SEC: int = Field(300, ge=0, alias="SYNC_STATE_TTL_SEC")          # terminal state retention
    SYNC_SUBSTRING_MATCH_ENABLED: bool = Field(True, alias="SYNC_SUBSTRING_MATCH_ENABLED")
    SYNC_UNMATCHED_LOG_LIMIT: int = Field(5, ge=0, alias="SYNC_UNMATCHED_LOG_LIMIT")
    SYNC_RUN_STALE_MINUTES: int = Field(120, ge=1, alias="SYNC_RUN_STALE_MINUTES")

    # health thresholds, checked once per run
    SYNC_FAILED_BATCHES_ALERT: int = Field(0, ge=0, alias="SYNC_FAILED_BATCHES_ALERT")
    SYNC_ERROR_RATIO_ALERT: float = Field(0.02, ge=0, alias="SYNC_ERROR_RATIO_ALERT")


    # ========= Ozon seller API =========
    OZON_BASE_URL: str = Field("https://api-seller.ozon.ru", alias="OZON_BASE_URL")
    OZON_CONNECT_TIMEOUT: int = Field(10, ge=1, alias="OZON_CONNECT_TIMEOUT")
    OZON_READ_TIMEOUT: int = Field(60, ge=1, alias="OZON_READ_TIMEOUT")
    OZON_RATE_LIMIT_PER_MIN: int = Field(600, ge=1, alias="OZON_RATE_LIMIT_PER_MIN")
    OZON_DEFAULT_CURRENCY: str = "RUB"

    # ========= Market partner API =========
    MARKET_BASE_URL: str = Field("https://api.partner.market.yandex.ru", alias="MARKET_BASE_URL")
    MARKET_CONNECT_TIMEOUT: int = Field(10, ge=1, alias="MARKET_CONNECT_TIMEOUT")
    MARKET_READ_TIMEOUT: int = Field(60, ge=1, alias="MARKET_READ_TIMEOUT")
    MARKET_RATE_LIMIT_PER_MIN: int = Field(300, ge=1, alias="MARKET_RATE_LIMIT_PER_MIN")
    MARKET_DEFAULT_CURRENCY: str = "RUR"


    # ========= global rate limit (shared across workers) =========
    GLOBAL_RL_ENABLED: bool = False
    GLOBAL_RL_REDIS_URL: str = "redis://redis:6379/0"
    GLOBAL_RL_MAX_RPM: int = 300      # requests per minute per storefront
    GLOBAL_RL_BURST: int = 5          # bucket capacity
    GLOBAL_RL_MAX_WAIT_MS: int = 5000
    GLOBAL_RL_KEY_PREFIX: str = "catalog:rl"


settings = Settings()  # env (+ .env) only
