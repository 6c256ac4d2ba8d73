from decimal import Decimal
from functools import lru_cache
from typing import Literal, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Global application settings."""

    # Application
    ENVIRONMENT: Literal["local", "development", "production", "test"] = "local"
    LOG_LEVEL: str = "INFO"
    APP_NAME: str = "Bookstore API"
    API_PREFIX: str = "/api/v1"
    ADMIN_EMAIL: str = "admin@bookstore.local"
    REQUEST_TIMEOUT_SECONDS: float = 30.0

    # Database
    DATABASE_URL: str
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 10
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 1800
    DB_STATEMENT_TIMEOUT_SECONDS: float = 5.0
    DB_HEALTH_TIMEOUT_SECONDS: float = 2.0
    CHECKOUT_ISOLATION_LEVEL: str = "SERIALIZABLE"
    SERIALIZATION_RETRY_ATTEMPTS: int = 3

    # Redis (cache + job queue)
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_TIMEOUT_SECONDS: float = 3.0
    BOOK_CACHE_TTL_SECONDS: int = 900
    STOCK_CACHE_TTL_SECONDS: int = 900

    # Rate limiting
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_STORAGE_URI: Optional[str] = None

    # Auth
    JWT_SECRET: str = "test-jwt-secret"
    JWT_ALGORITHM: str = "HS256"

    # Commerce
    RESERVATION_TTL_MINUTES: int = 15
    RESERVATION_SWEEP_LIMIT: int = 100
    PRICE_TOLERANCE: Decimal = Decimal("0.01")
    SHIPPING_FEE: Decimal = Decimal("15000")
    FREE_SHIPPING_THRESHOLD: Optional[Decimal] = None
    ORDER_NUMBER_PREFIX: str = "ORD"
    LOW_STOCK_DEFAULT_THRESHOLD: int = 10

    # Payment gateways
    VNPAY_TMN_CODE: str = "TESTTMN"
    VNPAY_HASH_SECRET: str = "test-vnpay-secret"
    VNPAY_PAYMENT_URL: str = "https://sandbox.vnpayment.vn/paymentv2/vpcpay.html"
    VNPAY_RETURN_URL: str = "http://localhost:3000/payment/vnpay/return"
    VNPAY_API_URL: str = "https://sandbox.vnpayment.vn/merchant_webapi/api/transaction"
    MOMO_PARTNER_CODE: str = "MOMOTEST"
    MOMO_ACCESS_KEY: str = "test-momo-access"
    MOMO_SECRET_KEY: str = "test-momo-secret"
    MOMO_ENDPOINT: str = "https://test-payment.momo.vn/v2/gateway/api"
    MOMO_REDIRECT_URL: str = "http://localhost:3000/payment/momo/return"
    MOMO_IPN_URL: str = "http://localhost:8000/api/v1/webhooks/momo"
    PAYMENT_TIMEOUT_MINUTES: int = 15
    PAYMENT_MAX_ATTEMPTS: int = 3
    PAYMENT_GATEWAY_TIMEOUT_SECONDS: float = 10.0
    REFUND_WINDOW_DAYS: int = 7

    # Jobs
    JOB_DEFAULT_MAX_RETRY: int = 3
    JOB_DEFAULT_TIMEOUT_SECONDS: int = 30
    JOB_BACKOFF_BASE_SECONDS: int = 60
    PROMOTION_SCAN_BATCH_SIZE: int = 100
    PROMOTION_SCAN_MAX_CARTS: int = 10000
    NOTIFICATION_SEND_LIMIT: int = 100
    NOTIFICATION_RETRY_LIMIT: int = 50
    NOTIFICATION_USER_HOURLY_CAP: int = 10
    NOTIFICATION_RETENTION_DAYS: int = 90
    NOTIFICATION_MAX_DELIVERY_ATTEMPTS: int = 5

    # Email (SMTP)
    SMTP_HOST: str = "localhost"
    SMTP_PORT: int = 587
    SMTP_USERNAME: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_TIMEOUT_SECONDS: float = 30.0
    DEFAULT_FROM_EMAIL: str = "no-reply@bookstore.local"
    DEFAULT_FROM_NAME: str = "Bookstore"

    # Accounts
    EMAIL_VERIFY_URL: str = "http://localhost:3000/verify-email"
    VERIFICATION_TOKEN_TTL_HOURS: int = 24

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    @field_validator("DATABASE_URL")
    @classmethod
    def assemble_db_connection(cls, v: Optional[str]) -> str:
        if isinstance(v, str):
            if v.startswith("postgresql://"):
                return v.replace("postgresql://", "postgresql+psycopg://", 1)
        return v

    @property
    def is_postgres(self) -> bool:
        return self.DATABASE_URL.startswith("postgresql")


@lru_cache
def get_settings() -> Settings:
    """
    Return the global settings instance, cached.
    """
    return Settings()
