from pydantic_settings import BaseSettings
from pydantic import field_validator, model_validator
from typing import List


class Settings(BaseSettings):
    # Project Info
    PROJECT_NAME: str = "Storefront Orders API"
    API_V1_STR: str = "/api/v1"

    # Database
    DATABASE_URL: str

    # Security (token verification only, tokens are issued elsewhere)
    SECRET_KEY: str
    ALGORITHM: str = "HS256"

    # CORS
    BACKEND_CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    # Environment
    ENVIRONMENT: str = "development"

    DEBUG: bool = False

    # Frontends
    FRONTEND_URL: str = "http://localhost:5173"
    ADMIN_URL: str = "http://localhost:5174"

    # Monitoring (Optional - Add to .env for production)
    SENTRY_DSN: str = ""

    # Pricing
    CURRENCY: str = "USD"
    TAX_RATE: float = 0.08
    FREE_SHIPPING_THRESHOLD: float = 75.0
    FLAT_SHIPPING_FEE: float = 9.99

    # Orders
    ORDER_NUMBER_PREFIX: str = "GB"
    ESTIMATED_DELIVERY_DAYS: int = 3
    DECREMENT_STOCK_ON_ORDER: bool = True
    RESTOCK_ON_CANCEL: bool = True

    # Guest identity carriers
    SESSION_HEADER: str = "X-Session-ID"
    SESSION_COOKIE: str = "session_id"

    # Logging
    LOG_LEVEL: str = "INFO"

    @field_validator("ENVIRONMENT")
    @classmethod
    def normalize_environment(cls, value: str) -> str:
        return value.lower().strip()

    @field_validator("TAX_RATE")
    @classmethod
    def validate_tax_rate(cls, value: float) -> float:
        if value < 0 or value >= 1:
            raise ValueError("TAX_RATE must be between 0 and 1")
        return value

    @model_validator(mode="after")
    def validate_production_secrets(self):
        if self.ENVIRONMENT == "production":
            normalized_secret = (self.SECRET_KEY or "").strip()
            if len(normalized_secret) < 32 or "your-secret-key-here" in normalized_secret.lower():
                raise ValueError("SECRET_KEY must be at least 32 chars and not use placeholders in production")
        return self

    model_config = {
        "env_file": ".env",
        "case_sensitive": True,
        "extra": "ignore",
    }


settings = Settings()
