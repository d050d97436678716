"""
Configuration module for the Clinic Front Desk service.
Loads settings from environment variables.
"""

from pydantic_settings import BaseSettings
from pydantic import Field


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application Configuration
    app_host: str = Field(
        default="0.0.0.0",
        alias="APP_HOST",
        description="Host to bind the application"
    )
    app_port: int = Field(
        default=8000,
        alias="APP_PORT",
        description="Port to bind the application"
    )

    # Data Store Configuration
    data_backend: str = Field(
        default="cosmos",
        alias="DATA_BACKEND",
        description="Persistence backend: 'cosmos' (Azure Cosmos DB) or 'memory' (local development)"
    )
    seed_sample_data: bool = Field(
        default=False,
        alias="SEED_SAMPLE_DATA",
        description="Load sample doctors, patients and schedules into the in-memory backend"
    )
    cosmos_max_write_attempts: int = Field(
        default=5,
        alias="COSMOS_MAX_WRITE_ATTEMPTS",
        description="How often a conditional write is retried after losing a concurrency race"
    )

    # Clinic Rules
    clinic_timezone: str = Field(
        default="UTC",
        alias="CLINIC_TIMEZONE",
        description="IANA time zone in which appointment dates and times are interpreted"
    )
    cancellation_notice_hours: float = Field(
        default=2,
        alias="CANCELLATION_NOTICE_HOURS",
        description="Minimum hours before an appointment at which it can still be cancelled"
    )

    # Authentication
    bootstrap_admin_token: str = Field(
        default="",
        alias="BOOTSTRAP_ADMIN_TOKEN",
        description="Pre-registered ADMIN session token (empty to disable)"
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level"
    )

    # Branding Configuration
    brand_name: str = Field(
        default="Clinic Front Desk",
        alias="BRAND_NAME",
        description="Application name shown in header"
    )
    brand_tagline: str = Field(
        default="Schedules, bookings and feedback in one place",
        alias="BRAND_TAGLINE",
        description="Tagline shown under the application name"
    )
    brand_logo_url: str = Field(
        default="/static/logo.svg",
        alias="BRAND_LOGO_URL",
        description="URL of the logo image"
    )
    brand_primary_color: str = Field(
        default="#0f766e",
        alias="BRAND_PRIMARY_COLOR",
        description="Primary theme colour"
    )
    brand_favicon_url: str = Field(
        default="/static/favicon.ico",
        alias="BRAND_FAVICON_URL",
        description="URL of the favicon"
    )

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


# Global settings instance
settings = Settings()
