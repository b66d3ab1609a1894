"""Configuration management for diettrack."""

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=("../.env", ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    environment: str = "development"
    log_level: str = "info"

    # Supabase
    supabase_url: str
    supabase_service_role_key: str

    # OpenAI (vision detection)
    openai_api_key: str | None = None
    vision_model: str = "gpt-4o-mini"

    # Detection
    # openai_only | generic_only | both
    detection_strategy: Literal["openai_only", "generic_only", "both"] = "openai_only"
    provider_timeout_seconds: float = 15.0
    route_timeout_seconds: float = 30.0
    max_image_bytes: int = 5_000_000

    # Composition lookup cache
    composition_cache_ttl_seconds: float = 300.0
    composition_cache_max_entries: int = 2048

    # Feedback
    feedback_table: str = "analysis_feedback"

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def openai_enabled(self) -> bool:
        """Check if the OpenAI vision provider is configured."""
        return bool(self.openai_api_key)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
