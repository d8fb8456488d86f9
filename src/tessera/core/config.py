"""
Core configuration module using Pydantic Settings.

This module defines all framework settings loaded from environment variables.
Components receive resolved settings; nothing reads the environment directly.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings are loaded from .env file or environment variables.
    Settings are validated using Pydantic with type hints.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # -------------------------------------------------------------------------
    # Application Settings
    # -------------------------------------------------------------------------
    app_name: str = Field(default="Tessera API")
    version: str = Field(default="0.1.0")
    environment: Literal["development", "staging", "production", "testing"] = Field(
        default="development"
    )
    debug: bool = Field(default=False)
    api_prefix: str = Field(default="/api")

    # -------------------------------------------------------------------------
    # Server Configuration
    # -------------------------------------------------------------------------
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000, ge=1, le=65535)

    # -------------------------------------------------------------------------
    # Security Settings
    # -------------------------------------------------------------------------
    jwt_secret: str = Field(
        default="",
        description="Secret key for token signing. Must be at least 32 characters.",
    )
    jwt_algorithm: str = Field(default="HS256")
    jwt_expiration: int = Field(default=3600, ge=60)  # 1 hour
    jwt_refresh_expiration: int = Field(default=604800, ge=3600)  # 7 days

    # Argon2id Password Hashing Configuration
    argon2_time_cost: int = Field(default=2, ge=1, le=10)
    argon2_memory_cost: int = Field(default=65536, ge=8192)  # 64 MB
    argon2_parallelism: int = Field(default=4, ge=1, le=16)

    # -------------------------------------------------------------------------
    # Password Reset
    # -------------------------------------------------------------------------
    password_reset_ttl: int = Field(default=3600, ge=60)
    frontend_url: str = Field(default="http://localhost:3000")

    # -------------------------------------------------------------------------
    # Database Configuration
    # -------------------------------------------------------------------------
    database_url: str = Field(
        default="sqlite+aiosqlite:///./tessera.db",
        description="SQLAlchemy async connection string",
    )
    db_pool_size: int = Field(default=5, ge=1, le=50)
    db_max_overflow: int = Field(default=10, ge=0, le=100)
    db_pool_recycle: int = Field(default=3600, ge=300)  # Seconds
    db_pool_pre_ping: bool = Field(default=True)
    db_pool_timeout: int = Field(default=30, ge=1)

    # Record mapper defaults
    timestamp_format: Literal["datetime", "unix"] = Field(default="datetime")
    count_cache_ttl: int = Field(default=300, ge=0)  # 5 minutes

    # -------------------------------------------------------------------------
    # Cache Configuration
    # -------------------------------------------------------------------------
    cache_url: str = Field(
        default="memory://",
        description="memory:// for in-process caching or a redis:// URL",
    )

    # -------------------------------------------------------------------------
    # CORS Settings
    # -------------------------------------------------------------------------
    cors_origins: str = Field(
        default="http://localhost:3000,http://localhost:8000",
        description="Comma-separated list of allowed CORS origins",
    )
    cors_allow_credentials: bool = Field(default=True)

    # -------------------------------------------------------------------------
    # Rate Limiting
    # -------------------------------------------------------------------------
    rate_limit_enabled: bool = Field(default=True)
    rate_limit_storage_uri: str = Field(default="memory://")
    rate_limit_auth: str = Field(default="10/minute")

    # -------------------------------------------------------------------------
    # Job Queue
    # -------------------------------------------------------------------------
    queue_max_attempts: int = Field(default=3, ge=1)
    queue_backoff_seconds: int = Field(default=10, ge=0)
    queue_poll_interval: float = Field(default=1.0, gt=0)
    queue_visibility_timeout: int = Field(default=300, ge=1)

    # -------------------------------------------------------------------------
    # Mail
    # -------------------------------------------------------------------------
    mail_from_address: str = Field(default="noreply@example.com")
    mail_from_name: str = Field(default="Tessera API")

    # -------------------------------------------------------------------------
    # Logging Configuration
    # -------------------------------------------------------------------------
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO"
    )
    log_format: Literal["json", "console"] = Field(default="console")
    log_file_enabled: bool = Field(default=False)
    log_file_path: str = Field(default="logs/app.log")
    log_file_max_bytes: int = Field(default=10485760)  # 10 MB
    log_file_backup_count: int = Field(default=5)

    @field_validator("api_prefix")
    @classmethod
    def normalize_api_prefix(cls, v: str) -> str:
        """Ensure the prefix starts with a slash and has no trailing slash."""
        v = v.strip().strip("/")
        return f"/{v}" if v else ""

    # -------------------------------------------------------------------------
    # Computed Properties
    # -------------------------------------------------------------------------
    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"

    @property
    def cors_origins_list(self) -> list[str]:
        """Get parsed CORS origins as list."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide settings instance."""
    return Settings()
