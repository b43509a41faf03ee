from pydantic_settings import BaseSettings
from pydantic import field_validator
from typing import Optional
from functools import lru_cache
from decimal import Decimal
import json


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./storefront.db"

    # Database Connection Pool Settings (ignored for SQLite)
    DB_POOL_SIZE: int = 10  # Base number of connections in pool
    DB_MAX_OVERFLOW: int = 20  # Extra connections allowed beyond pool_size
    DB_POOL_TIMEOUT: int = 30  # Seconds to wait for connection from pool
    DB_POOL_RECYCLE: int = 1800  # Recycle connections after 30 minutes

    # Signing key for client-held tokens (referral attribution cookie)
    SECRET_KEY: str = "change-me"
    ALGORITHM: str = "HS256"

    # App Settings
    APP_NAME: str = "Houses of Medusa Storefront"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # CORS - accepts JSON string, comma-separated, or list
    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://localhost:3001",
    ]

    # Razorpay Payment Gateway (leave empty to run checkout in demo mode)
    RAZORPAY_KEY_ID: str = ""
    RAZORPAY_KEY_SECRET: str = ""

    # Checkout pricing
    CURRENCY: str = "INR"
    FREE_SHIPPING_THRESHOLD: Decimal = Decimal("10000")  # Subtotal at which shipping is free
    FLAT_SHIPPING_FEE: Decimal = Decimal("500")
    TAX_RATE: Decimal = Decimal("0.18")  # 18% GST
    ORDER_NUMBER_PREFIX: str = "HOM"

    # When False, settlement refuses to take inventory below zero
    ALLOW_OVERSELL: bool = True

    # Affiliate program
    REFERRAL_QUERY_PARAM: str = "ref"
    REFERRAL_COOKIE_NAME: str = "medusa-affiliate-ref"
    REFERRAL_EXPIRY_DAYS: int = 30
    DEFAULT_COMMISSION_RATE: Decimal = Decimal("10")  # Percent, used when affiliate has no rate

    @field_validator('CORS_ORIGINS', mode='before')
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                return [origin.strip() for origin in v.split(',')]
        return v

    @property
    def cors_origins_list(self) -> list[str]:
        return list(self.CORS_ORIGINS)

    @property
    def razorpay_configured(self) -> bool:
        return bool(self.RAZORPAY_KEY_ID and self.RAZORPAY_KEY_SECRET)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
