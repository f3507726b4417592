"""
Configuration management for SprintSync API.
"""

from functools import lru_cache
from typing import Optional, Set

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(env_file=".env", env_prefix="SPRINTSYNC_", extra="ignore")

    # Runtime environment: development | production | test
    environment: str = "production"
    log_level: str = "info"

    # API Settings
    api_host: str = "0.0.0.0"
    api_port: int = 18800

    # Database (PostgreSQL in production, SQLite for local development)
    database_url: str = "sqlite:///./sprintsync.db"
    database_echo: bool = False

    # Bearer JWT signing secret and token lifetime
    auth_secret: str = "change-me-to-a-long-random-secret-value"
    auth_token_lifetime_seconds: int = 3600

    # Read-through cache
    cache_ttl_seconds: int = 300
    cache_single_flight: bool = False

    # Subscription features granted to every project (comma-separated)
    enabled_features: str = "custom-statuses"

    # Optional outbound webhook for user notifications
    notification_webhook_url: Optional[str] = None
    notification_timeout: float = 5.0

    # CORS
    cors_origins: str = "http://localhost:5173,http://localhost:3000"

    @property
    def is_development(self) -> bool:
        return self.environment.lower() == "development"

    @property
    def feature_set(self) -> Set[str]:
        return {f.strip() for f in self.enabled_features.split(",") if f.strip()}

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
