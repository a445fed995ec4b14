from pydantic_settings import BaseSettings
from pydantic import field_validator, model_validator
from typing import List


class Settings(BaseSettings):
    # Project Info
    PROJECT_NAME: str = "Marketplace Commerce API"
    API_V1_STR: str = "/api/v1"

    # Database
    DATABASE_URL: str

    # Security (token verification only; sessions are issued elsewhere)
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30
    ADMIN_ROLE: str = "admin"

    # CORS
    BACKEND_CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    # Environment
    ENVIRONMENT: str = "development"

    DEBUG: bool = False

    # Monitoring (Optional - Add to .env for production)
    SENTRY_DSN: str = ""

    # Rate limiting
    RATE_LIMIT_ENABLED: bool = True

    # Guest order access codes
    ACCESS_CODE_BYTES: int = 16  # 128 bits of randomness
    ACCESS_CODE_MAX_ATTEMPTS: int = 5

    # Cart and order limits
    MAX_ITEM_QUANTITY: int = 999
    CART_CHECKOUT_MAX_ATTEMPTS: int = 3

    @field_validator("ENVIRONMENT")
    @classmethod
    def normalize_environment(cls, value: str) -> str:
        return value.lower().strip()

    @field_validator("ACCESS_CODE_BYTES")
    @classmethod
    def validate_access_code_entropy(cls, value: int) -> int:
        # token_urlsafe draws whole bytes; 16 bytes is the smallest size above 122 bits
        if value < 16:
            raise ValueError("ACCESS_CODE_BYTES must be at least 16")
        return value

    @field_validator("ACCESS_CODE_MAX_ATTEMPTS")
    @classmethod
    def validate_access_code_attempts(cls, value: int) -> int:
        if value < 1:
            raise ValueError("ACCESS_CODE_MAX_ATTEMPTS must be at least 1")
        return value

    @model_validator(mode="after")
    def validate_production_secrets(self):
        if self.ENVIRONMENT == "production":
            normalized_secret = (self.SECRET_KEY or "").strip()
            if len(normalized_secret) < 32 or "your-secret-key-here" in normalized_secret.lower():
                raise ValueError("SECRET_KEY must be at least 32 chars and not use placeholders in production")
            if self.DEBUG:
                raise ValueError("DEBUG must be disabled in production")
        return self

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")

    model_config = {
        "env_file": ".env",
        "case_sensitive": True,
        "extra": "ignore",
    }


settings = Settings()
