"""Application configuration using Pydantic settings."""

from typing import Optional
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    # Database Configuration
    DATABASE_URL: str = Field(default="sqlite:///./trackwise.db", description="Database connection URL")

    # Security Configuration
    SECRET_KEY: str = Field(
        default="your-very-secure-and-long-secret-key-that-you-should-change-in-production",
        description="Secret key used to verify dashboard JWTs"
    )
    ALGORITHM: str = Field(default="HS256", description="JWT algorithm")

    # Redis Configuration (shared domain cache, optional)
    REDIS_URL: Optional[str] = Field(default=None, description="Redis URL for the shared domain cache")

    # Application Configuration
    APP_NAME: str = Field(default="Trackwise API", description="Application name")
    APP_VERSION: str = Field(default="0.1.0", description="Application version")
    DEBUG: bool = Field(default=False, description="Debug mode")
    LOG_LEVEL: str = Field(default="INFO", description="Root log level")

    # Domain registry cache
    DOMAIN_CACHE_TTL_SECONDS: int = Field(default=300, description="How long a domain lookup is cached")
    DOMAIN_CACHE_MAX_ENTRIES: int = Field(default=10000, description="Upper bound on in-process cached domains")

    # Ingestion
    BEACON_WORKERS: int = Field(default=8, description="Threads processing beacon events")
    BEACON_MAX_PENDING: int = Field(default=10000, description="Beacons queued before new ones are dropped")
    SESSION_UPDATE_RETRIES: int = Field(default=5, description="Retries on a concurrent session update conflict")

    # Analytics
    ANALYTICS_WORKERS: int = Field(default=4, description="Threads running aggregation queries")

    # CORS Configuration
    RESTRICTED_ORIGINS: list[str] = Field(
        default=["http://localhost:3000"],
        description="Origins allowed on dashboard endpoints"
    )
    TRACKING_PATHS: list[str] = Field(
        default=["/beacon", "/events", "/tracking/", "/system/diagnose"],
        description="Paths open to any origin"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("DATABASE_URL")
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        """Ensure database URL is properly formatted."""
        if v.startswith("postgres://"):
            return v.replace("postgres://", "postgresql+psycopg2://", 1)
        return v

    @field_validator("SECRET_KEY")
    @classmethod
    def validate_secret_key(cls, v: str) -> str:
        """Ensure secret key is secure."""
        # Allow the default key in development
        if v == "your-very-secure-and-long-secret-key-that-you-should-change-in-production":
            return v
        if len(v) < 32:
            raise ValueError("Secret key must be at least 32 characters long")
        return v


# Global settings instance
settings = Settings()
