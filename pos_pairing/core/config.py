"""Application configuration loaded from environment variables."""

from typing import List

from pydantic_settings import BaseSettings

# Local development only; refused when ENVIRONMENT is production.
DEV_JWT_SECRET = "pos-system-dev-secret-change-me-0123456789abcdef"


class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite:///./pos_pairing.db"

    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    CORS_ORIGINS: List[str] = [
        "http://localhost:5173",
        "http://localhost:5174",
    ]

    API_V1_PREFIX: str = "/api/v1"

    # Create tables on startup (dev only, use Alembic in prod)
    AUTO_CREATE_TABLES: bool = True

    # Shared key for operator/back-office calls
    OPERATOR_API_KEY: str = ""

    # Tokens are stored as sha256(pepper:token)
    TOKEN_HASH_PEPPER: str = ""

    JWT_SECRET: str = DEV_JWT_SECRET
    JWT_ALGORITHM: str = "HS256"
    JWT_ISSUER: str = "pos-system"
    JWT_AUDIENCE: str = "pos-users"
    JWT_LEEWAY_SECONDS: int = 0

    ACCESS_TOKEN_TTL_SECONDS: int = 3600
    REFRESH_TOKEN_TTL_SECONDS: int = 30 * 24 * 3600

    ACTIVATION_CODE_TTL_HOURS: int = 24
    ACTIVATION_CODE_MAX_ATTEMPTS: int = 3
    ACTIVATION_CODE_MAX_DRAWS: int = 5
    REQUIRE_DEVICE_REF: bool = True

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


settings = Settings()
