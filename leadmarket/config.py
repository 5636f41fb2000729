from pydantic_settings import BaseSettings
from pydantic import field_validator
from decimal import Decimal
from functools import lru_cache
import json


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./leadmarket.db"

    # Database Connection Pool Settings
    DB_POOL_SIZE: int = 10  # Base number of connections in pool
    DB_MAX_OVERFLOW: int = 20  # Extra connections allowed beyond pool_size
    DB_POOL_TIMEOUT: int = 30  # Seconds to wait for connection from pool
    DB_POOL_RECYCLE: int = 1800  # Recycle connections after 30 minutes

    # App Settings
    APP_NAME: str = "Lead Marketplace Core"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # CORS - accepts JSON string, comma-separated, or list
    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    # Commission Settings
    COMMISSION_BASE_RATE: Decimal = Decimal("0.30")
    COMMISSION_FRESH_SALE_BONUS: Decimal = Decimal("0.10")  # Lead sold within FRESH_SALE_DAYS of upload
    COMMISSION_HIGH_VERIFICATION_BONUS: Decimal = Decimal("0.05")
    COMMISSION_VOLUME_BONUS: Decimal = Decimal("0.05")
    COMMISSION_MAX_RATE: Decimal = Decimal("0.50")
    COMMISSION_HOLDBACK_DAYS: int = 14
    COMMISSION_MIN_PAYOUT_AMOUNT: Decimal = Decimal("50")
    COMMISSION_FRESH_SALE_DAYS: int = 7
    COMMISSION_HIGH_VERIFICATION_THRESHOLD: Decimal = Decimal("95")  # Percent
    COMMISSION_VOLUME_THRESHOLD: int = 10000  # Leads uploaded per month

    # Deduplication Settings
    DEDUP_QUERY_CHUNK_SIZE: int = 100  # Hash keys per IN (...) lookup
    UPLOAD_CHUNK_SIZE: int = 1000  # Rows per upload processing chunk

    # Scheduler Settings
    SCHEDULER_ENABLED: bool = True
    SCHEDULER_TIMEZONE: str = "UTC"
    HOLDBACK_INTERVAL_MINUTES: int = 60  # How often to mature pending commissions
    PAYOUT_CRON_DAY_OF_WEEK: str = "mon"
    PAYOUT_CRON_HOUR: int = 2

    @field_validator('CORS_ORIGINS', mode='before')
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                return [origin.strip() for origin in v.split(',')]
        return v

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
