"""
config/settings.py
Application settings loaded from environment variables.
Uses Pydantic BaseSettings for validation and type safety.
"""

from functools import lru_cache
from typing import List

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Application ──────────────────────────────────────────
    APP_NAME: str = "Legal Services Marketplace"
    APP_ENV: str = "development"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    API_PREFIX: str = "/api"

    # ── Server ───────────────────────────────────────────────
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    WORKERS: int = 4

    # ── Database ─────────────────────────────────────────────
    DATABASE_URL: str
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 40
    DATABASE_POOL_TIMEOUT: int = 30

    # ── Redis ────────────────────────────────────────────────
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_CACHE_TTL: int = 300          # 5 minutes

    # ── JWT ──────────────────────────────────────────────────
    JWT_SECRET_KEY: str
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24

    # ── CORS ─────────────────────────────────────────────────
    ALLOWED_ORIGINS: str = "http://localhost:3000"

    # ── Celery ───────────────────────────────────────────────
    CELERY_BROKER_URL: str = "redis://localhost:6379/1"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/2"

    # ── Rate Limiting ────────────────────────────────────────
    RATE_LIMIT_UNAUTH_PER_MINUTE: int = 100

    # ── Payments ─────────────────────────────────────────────
    DEFAULT_CURRENCY: str = "USD"
    PAYMENT_GATEWAY_MODE: str = "demo"          # demo | simulated
    PAYMENT_SIMULATED_SUCCESS_RATE: float = 0.95
    RECEIPT_BASE_URL: str = "https://example.com/receipts"

    # ── Notifications ────────────────────────────────────────
    NOTIFICATION_BACKEND: str = "background"    # background | celery

    # ── Business Config ──────────────────────────────────────
    CART_BOOKING_LEAD_DAYS: int = 7
    CART_BOOKING_START_HOUR: int = 9
    CART_BOOKING_DURATION_HOURS: int = 1

    @field_validator("PAYMENT_GATEWAY_MODE")
    @classmethod
    def validate_gateway_mode(cls, v: str) -> str:
        if v not in ("demo", "simulated"):
            raise ValueError("PAYMENT_GATEWAY_MODE must be 'demo' or 'simulated'")
        return v

    @field_validator("NOTIFICATION_BACKEND")
    @classmethod
    def validate_notification_backend(cls, v: str) -> str:
        if v not in ("background", "celery"):
            raise ValueError("NOTIFICATION_BACKEND must be 'background' or 'celery'")
        return v

    @property
    def allowed_origins_list(self) -> List[str]:
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",")]

    @property
    def is_production(self) -> bool:
        return self.APP_ENV == "production"

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")


@lru_cache()
def get_settings() -> Settings:
    """Cached settings instance."""
    return Settings()


settings = get_settings()
