"""
Configuration settings for the File Intake Service.
Uses pydantic-settings for environment variable management.
"""

from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="INTAKE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "File Intake Service"
    app_version: str = "1.0.0"
    debug: bool = False
    environment: str = Field(default="production", description="development/staging/production")

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    # Storage
    storage_path: Path = Field(
        default=Path("data/files"),
        description="Root directory for uploaded files"
    )
    audit_index_path: Path = Field(
        default=Path("data/audit"),
        description="Root directory for per-user audit CSV logs"
    )

    # Upload validation
    max_file_size: int = 104857600
    allowed_content_types: List[str] = Field(
        default_factory=lambda: [
            "application/pdf",
            "application/zip",
            "application/vnd.openxmlformats-officedocument",
            "application/vnd.ms-excel",
            "application/msword",
            "text/",
            "image/",
        ],
        description="MIME type prefixes accepted for upload (empty list allows all)"
    )

    # Search / listing
    search_timezone: Optional[str] = Field(
        default=None,
        description="IANA zone used for date filters (host zone when unset)"
    )
    listing_page_size: int = Field(default=10, ge=1, le=500)

    # Development credentials
    dev_username: str = "user"
    dev_password: str = "change-me-user"
    admin_username: str = "admin"
    admin_password: str = "change-me-admin"

    # JWT
    jwt_secret_key: str = Field(
        default="change-me-in-production",
        description="Secret used to sign access tokens"
    )
    jwt_algorithm: str = "HS256"
    jwt_expire_minutes: int = 60

    # Monitoring
    enable_metrics: bool = True

    # Logging
    log_level: str = "INFO"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()
