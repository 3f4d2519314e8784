"""
Configuration management for Workboard.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    # Application
    app_name: str = Field(default="Workboard")
    debug: bool = Field(default=False)
    environment: str = Field(default="development")

    # API
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=8000)
    api_workers: int = Field(default=1)

    # Database
    database_url: str = Field(default="sqlite:///./workboard.db")

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")

    # Realtime fan-out
    realtime_transport: str = Field(
        default="memory",
        description="One of 'memory', 'pusher' or 'none'.",
    )
    realtime_queue_size: int = Field(default=10000)
    pusher_app_id: Optional[str] = Field(default=None)
    pusher_key: Optional[str] = Field(default=None)
    pusher_secret: Optional[str] = Field(default=None)
    pusher_cluster: str = Field(default="mt1")

    # Query engine
    query_timeout_seconds: Optional[float] = Field(default=None)
    default_page_limit: int = Field(default=20)
    max_page_limit: int = Field(default=100)


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get application settings."""
    return settings
