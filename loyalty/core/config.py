from pydantic_settings import BaseSettings
from typing import Optional
from functools import lru_cache


class Settings(BaseSettings):
    # Project
    PROJECT_NAME: str = "Stylist Loyalty API"
    VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str = "sqlite:///./loyalty.db"

    # Redis
    REDIS_URL: str = "redis://localhost:6379/0"

    # Celery
    CELERY_BROKER_URL: str = "redis://localhost:6379/1"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/2"
    ORDER_SYNC_MAX_RETRIES: int = 5
    ORDER_SYNC_RETRY_BACKOFF: int = 30  # seconds

    # Shopify
    SHOPIFY_SHOP_URL: Optional[str] = None
    SHOPIFY_ACCESS_TOKEN: Optional[str] = None
    SHOPIFY_API_VERSION: str = "2024-01"
    SHOPIFY_WEBHOOK_SECRET: Optional[str] = None
    SHOPIFY_TIMEOUT_SECONDS: float = 15.0
    # Single shared promotional price rule; codes are attached to it instead of a new rule each
    SHOPIFY_SHARED_PRICE_RULE_ID: Optional[str] = None

    # Referral defaults
    DEFAULT_DISCOUNT_VALUE: float = 20
    DEFAULT_VALIDITY_DAYS: int = 30
    DEFAULT_COMMISSION_RATE: float = 10
    DEFAULT_PHONE_COUNTRY_CODE: str = "91"

    # Pagination
    DEFAULT_PAGE_SIZE: int = 20
    MAX_PAGE_SIZE: int = 100

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
