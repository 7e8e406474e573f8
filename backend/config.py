"""
Policy Holder Gateway - Configuration Management

Centralized configuration for environment variables, CORS, and token
settings. Values are read once at startup; components receive what they
need explicitly (see server.lifespan), never this module.
"""

from typing import List
from datetime import timedelta
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
import logging

logger = logging.getLogger(__name__)

DEFAULT_DEV_SECRET = "policy-gateway-dev-secret-change-me"


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Uses pydantic-settings for validation and type coercion.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )

    # ==================== ENVIRONMENT ====================
    ENVIRONMENT: str = Field(
        default="development",
        description="Runtime environment: development, staging, production"
    )
    DEBUG: bool = Field(default=False)

    # ==================== DATABASE ====================
    DATABASE_URL: str = Field(
        default="sqlite+aiosqlite:///./policy_gateway.db",
        description="SQLAlchemy async URL (postgresql+asyncpg://... in production)"
    )

    # ==================== AUTHENTICATION ====================
    JWT_SECRET_KEY: str = Field(
        default=DEFAULT_DEV_SECRET,
        description="Secret key for token signing (must be changed in production)"
    )
    JWT_ALGORITHM: str = Field(default="HS256")
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = Field(
        default=60,
        description="Access token expiry in minutes"
    )
    CONFIRMATION_TOKEN_EXPIRE_HOURS: int = Field(
        default=48,
        description="Signup confirmation token expiry in hours"
    )

    # ==================== FEDERATED LOGIN ====================
    GOOGLE_CLIENT_ID: str = Field(default="", description="OAuth client ID expected as ID token audience")
    FACEBOOK_APP_ID: str = Field(default="", description="Facebook app ID access tokens must belong to")
    PROVIDER_TIMEOUT_SECONDS: float = Field(default=10.0)

    # ==================== CORS ====================
    CORS_ORIGINS: str = Field(
        default="",
        description="Comma-separated list of allowed origins"
    )

    # ==================== OBSERVABILITY ====================
    SENTRY_DSN: str = Field(default="", description="Sentry DSN for error tracking")
    LOG_LEVEL: str = Field(default="INFO")

    # ==================== API ====================
    API_TITLE: str = Field(default="Policy Holder Gateway")
    API_VERSION: str = Field(default="1.0.0")

    # ==================== COMPUTED PROPERTIES ====================

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT.lower() == "development"

    @property
    def debug_enabled(self) -> bool:
        return self.DEBUG or self.is_development

    @property
    def access_token_ttl(self) -> timedelta:
        return timedelta(minutes=self.JWT_ACCESS_TOKEN_EXPIRE_MINUTES)

    @property
    def confirmation_token_ttl(self) -> timedelta:
        return timedelta(hours=self.CONFIRMATION_TOKEN_EXPIRE_HOURS)

    @property
    def cors_origins_list(self) -> List[str]:
        """
        Parse CORS_ORIGINS into a list.

        Development adds localhost origins; "*" is honored outside
        production only.
        """
        if self.CORS_ORIGINS.strip() == "*":
            return [] if self.is_production else ["*"]

        origins = [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

        if not self.is_production:
            origins.extend([
                "http://localhost:4200",
                "http://localhost:8000",
                "https://localhost:8000",
                "http://127.0.0.1:4200",
            ])

        return sorted(set(origins))

    def validate_production_config(self) -> List[str]:
        """
        Validate configuration for production deployment.
        Returns list of validation errors.
        """
        errors = []

        if not self.JWT_SECRET_KEY:
            errors.append("JWT_SECRET_KEY is required")
        elif self.JWT_SECRET_KEY == DEFAULT_DEV_SECRET:
            errors.append("JWT_SECRET_KEY must be changed from default value")
        elif len(self.JWT_SECRET_KEY) < 32:
            errors.append("JWT_SECRET_KEY should be at least 32 characters")

        if self.JWT_ACCESS_TOKEN_EXPIRE_MINUTES <= 0:
            errors.append("JWT_ACCESS_TOKEN_EXPIRE_MINUTES must be positive")

        if self.is_production:
            if self.CORS_ORIGINS.strip() == "*":
                errors.append("CORS_ORIGINS cannot be '*' in production")

            if self.DATABASE_URL.startswith("sqlite"):
                errors.append("DATABASE_URL cannot be SQLite in production")

            if self.DEBUG:
                errors.append("DEBUG should be False in production")

            # Without these, federated login cannot bind tokens to this application
            if not self.GOOGLE_CLIENT_ID.strip():
                errors.append("GOOGLE_CLIENT_ID is required in production")

            if not self.FACEBOOK_APP_ID.strip():
                errors.append("FACEBOOK_APP_ID is required in production")

        return errors


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Settings are loaded once and cached for the application lifetime.
    """
    settings = Settings()

    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"CORS Origins: {len(settings.cors_origins_list)} configured")

    if settings.is_production:
        errors = settings.validate_production_config()
        if errors:
            for error in errors:
                logger.error(f"Configuration error: {error}")
            raise ValueError(f"Production configuration invalid: {', '.join(errors)}")

    return settings


# ==================== CORS CONFIGURATION ====================

def get_cors_config(settings: Settings) -> dict:
    """
    Get CORS middleware configuration.

    Authorization is exposed so browser callers on another origin can
    read the token returned by the login routes.
    """
    origins = settings.cors_origins_list
    return {
        "allow_origins": origins,
        "allow_credentials": origins != ["*"],
        "allow_methods": ["GET", "POST", "PATCH", "OPTIONS"],
        "allow_headers": [
            "Authorization",
            "Content-Type",
            "Accept",
            "Origin",
            "X-Requested-With",
            "X-Request-ID",
        ],
        "expose_headers": [
            "Authorization",
            "X-Request-ID",
        ],
        "max_age": 600,  # Cache preflight for 10 minutes
    }
