# app/core/config.py
from typing import *

from pydantic_settings import BaseSettings



class Settings(BaseSettings):
    APP_NAME: str = "Donation Platform"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Security
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24 * 7

    # Database
    DATABASE_URL: str
    # False forces sequential writes (deployments without multi-statement transactions)
    DB_TRANSACTIONS_ENABLED: bool = True

    # Payment gateway (Razorpay)
    RAZORPAY_KEY_ID: Optional[str] = None
    RAZORPAY_KEY_SECRET: Optional[str] = None
    RAZORPAY_WEBHOOK_SECRET: Optional[str] = None
    RAZORPAY_BASE_URL: str = "https://api.razorpay.com/v1"
    CURRENCY: str = "INR"

    GATEWAY_TIMEOUT_SECONDS: float = 10.0
    GATEWAY_MAX_ATTEMPTS: int = 3
    GATEWAY_BACKOFF_SECONDS: float = 1.0

    # Fail the verification (503) instead of skipping when the provider cannot be reached
    AMOUNT_RECONCILIATION_STRICT: bool = False

    # Certificates
    CERTIFICATE_PREFIX: str = "80G"
    ORGANIZATION_NAME: str = "Engala Trust"
    FILE_STORAGE_PATH: str = "./uploads"

    # Email
    EMAIL_PROVIDER: str = "console"  # console, smtp
    EMAIL_FROM: str = "no-reply@engalatrust.org"
    SMTP_HOST: Optional[str] = None
    SMTP_PORT: int = 587
    SMTP_USER: Optional[str] = None
    SMTP_PASSWORD: Optional[str] = None

    @property
    def webhook_secret(self) -> Optional[str]:
        return self.RAZORPAY_WEBHOOK_SECRET or self.RAZORPAY_KEY_SECRET

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
