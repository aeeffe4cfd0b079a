"""
Application configuration

Values are read from environment variables or a local .env file.
"""
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """ShopSmart backend settings"""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    # API
    API_TITLE: str = "ShopSmart API"
    API_VERSION: str = "1.0.0"
    PORT: int = 8000
    LOG_LEVEL: str = "info"
    ALLOWED_ORIGINS: Optional[str] = "*"

    # Storage backends
    DATABASE_URL: str = "mongodb://localhost:27017"
    DATABASE_NAME: str = "shopsmart"
    REDIS_URL: str = "redis://localhost:6379/0"

    # Tokens
    JWT_SECRET: str = "change-me"
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24
    RESET_TOKEN_EXPIRE_MINUTES: int = 15
    FRONTEND_URL: str = "http://localhost:5173"

    # Cache TTLs (seconds)
    PRODUCT_CACHE_TTL: int = 60
    PRODUCT_LIST_CACHE_TTL: int = 300
    USER_CACHE_TTL: int = 300

    # Outbound mail
    MAIL_HOST: str = "smtp.gmail.com"
    MAIL_PORT: int = 587
    MAIL_USER: str = ""
    MAIL_PASSWORD: str = ""
    MAIL_USE_TLS: bool = True

    # Image uploads
    STORAGE_PROVIDER: str = "local"
    LOCAL_UPLOAD_DIR: str = "uploads"
    S3_BUCKET: str = ""
    S3_REGION: str = "ap-south-1"

    # Payment gateway
    RAZORPAY_KEY_ID: str = ""
    RAZORPAY_KEY_SECRET: str = ""
    RAZORPAY_BASE_URL: str = "https://api.razorpay.com/v1"
    PAYMENT_CURRENCY: str = "INR"

    # Inventory alerts
    LOW_STOCK_THRESHOLD: int = 5
    STOCK_DIGEST_HOUR: int = 9
    SCHEDULER_ENABLED: bool = True

    # Requests per minute per client on the auth endpoints
    AUTH_RATE_LIMIT: int = 10

    def get_allowed_origins(self) -> List[str]:
        """Parse ALLOWED_ORIGINS into a list"""
        if not self.ALLOWED_ORIGINS or self.ALLOWED_ORIGINS == "*":
            return ["*"]
        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",") if origin.strip()]


settings = Settings()
