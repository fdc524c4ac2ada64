"""
Shared Configuration Module

Centralized configuration for the PPA lifecycle core using Pydantic Settings.
Supports environment variables, .env files, and runtime overrides.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application-wide configuration settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    environment: Literal["development", "staging", "production", "test"] = "development"
    debug: bool = Field(default=False, description="Enable debug mode")
    service_name: str = "ppa_service"

    # Database - PostgreSQL
    postgres_user: str = "postgres"
    postgres_password: str = "postgres"
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_db: str = "ppa"
    database_echo: bool = False
    database_url_override: str | None = Field(
        default=None,
        description="Full async SQLAlchemy URL, takes precedence over the postgres_* parts",
    )

    @property
    def async_database_url(self) -> str:
        """Construct async database URL."""
        if self.database_url_override:
            return self.database_url_override
        return f"postgresql+psycopg://{self.postgres_user}:{self.postgres_password}@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"

    # PPA policies
    ppa_require_document_for_completion: bool = Field(
        default=True,
        description="Completing a PPA requires at least one live PpaDocument attachment",
    )
    ppa_attachment_folder: str = Field(
        default="ppa", description="Storage folder prefix for PPA attachments"
    )
    ppa_default_page_size: int = Field(default=20, ge=1)
    ppa_max_page_size: int = Field(default=100, ge=1)

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    log_format: Literal["json", "text"] = "json"

    @model_validator(mode="after")
    def check_page_sizes(self) -> "Settings":
        if self.ppa_default_page_size > self.ppa_max_page_size:
            raise ValueError("ppa_default_page_size cannot exceed ppa_max_page_size")
        return self


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings: Application settings singleton
    """
    return Settings()


# Convenience exports
settings = get_settings()
