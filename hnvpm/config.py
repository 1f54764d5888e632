"""Application settings loaded from the environment."""
from functools import lru_cache
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    APP_NAME: str = "HNV Property Management"
    APP_VERSION: str = "1.0.0"
    ENV: str = "dev"
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    LOG_LEVEL: str = "INFO"

    DATABASE_URL: str = "sqlite:///./hnv_property.db"

    SECRET_KEY: str = "dev-secret-key-change-in-production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24 * 7
    INVITATION_EXPIRE_DAYS: int = 7

    FRONTEND_URL: str = "http://localhost:3000"
    CORS_ORIGINS: List[str] = ["http://localhost:3000"]

    # Subscription lifecycle
    TRIAL_DAYS: int = 14
    EMAIL_VERIFICATION_GRACE_HOURS: int = 24
    MAX_FAILED_PAYMENT_ATTEMPTS: int = 3
    EXPIRY_WARNING_DAYS: int = 7
    SCHEDULER_ENABLED: bool = True

    # Startup seeding of default plans and the platform operator
    SEED_DEFAULTS: bool = True
    SUPER_ADMIN_EMAIL: str = "admin@hnvpm.local"
    SUPER_ADMIN_PASSWORD: str = "admin123"

    # 2Checkout
    TWOCHECKOUT_MERCHANT_CODE: str = ""
    TWOCHECKOUT_SECRET_KEY: str = ""
    TWOCHECKOUT_BUY_LINK_SECRET_WORD: str = ""
    TWOCHECKOUT_API_URL: str = "https://api.2checkout.com/rest/6.0/"
    TWOCHECKOUT_BUY_URL: str = "https://secure.2checkout.com/checkout/buy"
    TWOCHECKOUT_TIMEOUT_SECONDS: int = 15

    # SMTP
    SMTP_SERVER: str = ""
    SMTP_PORT: int = 587
    SMTP_USERNAME: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_USE_TLS: bool = True
    SMTP_FROM_EMAIL: str = "noreply@hnvpm.local"
    SMTP_FROM_NAME: str = "HNV Property Management"

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")

    @property
    def smtp_configured(self) -> bool:
        return bool(self.SMTP_SERVER)


@lru_cache()
def get_settings() -> Settings:
    return Settings()
