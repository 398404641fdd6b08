"""
Storefront Service configuration
"""

from decimal import Decimal
from pathlib import Path
from typing import Dict, List

from pydantic_settings import BaseSettings

# Get the root directory path (storefront_service)
ROOT_DIR = Path(__file__).parent.parent.parent
ENV_FILE = ROOT_DIR / ".env"


class StorefrontSettings(BaseSettings):
    # Application
    APP_NAME: str
    APP_VERSION: str
    DEBUG: bool
    ENVIRONMENT: str
    API_V1_PREFIX: str = "/api/v1"

    # Backend commerce service
    BACKEND_MODE: str = "http"  # "http" or "memory"
    COMMERCE_BACKEND_URL: str
    BACKEND_TIMEOUT_SECONDS: float = 10.0
    BACKEND_MAX_CONNECTIONS: int = 100

    # Security
    SECRET_KEY: str
    JWT_ALGORITHM: str = "HS256"
    GUEST_TOKEN_EXPIRE_DAYS: int = 90
    GUEST_TOKEN_COOKIE: str = "guest_order_token"
    COOKIE_SECURE: bool = True

    # Cancellation policy (minutes unless stated)
    FREE_CANCELLATION_WINDOW_MINUTES: int = 60
    RESTOCKING_CANCELLATION_WINDOW_MINUTES: int = 1440
    RESTOCKING_FEE_PERCENT: Decimal = Decimal("10")
    LATE_CANCELLATION_FEE: Decimal = Decimal("0")
    RETURN_WINDOW_DAYS: int = 30

    # Pricing
    CURRENCY: str = "INR"
    TAX_RATE: Decimal = Decimal("0.18")
    FREE_SHIPPING_THRESHOLD: Decimal = Decimal("500.00")
    SHIPPING_RATES: Dict[str, Decimal] = {
        "standard": Decimal("49.00"),
        "express": Decimal("99.00"),
        "overnight": Decimal("199.00"),
        "pickup": Decimal("0.00"),
    }

    # Password recovery rate limiting
    PASSWORD_RESET_WINDOW_SECONDS: int = 300
    PASSWORD_RESET_LIMIT: int = 1
    RATE_LIMIT_STORE: str = "cookie"  # "cookie" or "redis"
    REDIS_URL: str = "redis://localhost:6379/0"

    # CORS
    CORS_ORIGINS: List[str] = ["http://localhost:3000"]
    CORS_CREDENTIALS: bool = True
    CORS_METHODS: List[str] = ["GET", "POST", "OPTIONS"]
    CORS_HEADERS: List[str] = ["*"]

    # Logging
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ENV_FILE  # Path to service .env file
        case_sensitive = True
        extra = "ignore"  # Ignore extra fields from .env file


# Create a singleton instance
_settings_instance = None


def get_settings() -> StorefrontSettings:
    """Get settings singleton instance"""
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = StorefrontSettings()
    return _settings_instance
