"""
Application settings using Pydantic Settings.

Loads configuration from environment variables and .env file.
"""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with validation and defaults."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Server
    host: str = Field(default="127.0.0.1", description="Server bind address")
    port: int = Field(default=8000, ge=1, le=65535, description="Server port")
    debug: bool = Field(default=False, description="Debug mode")
    log_level: str = Field(default="INFO", description="Logging level")
    log_file: str = Field(default="", description="Optional log file path")
    log_json: bool = Field(default=True, description="Emit JSON log lines")

    # Database (provider configuration store)
    database_url: str = Field(
        default="sqlite:///./data/gateway.db", description="Database connection URL"
    )
    config_cache_ttl_seconds: int = Field(
        default=30, ge=0, description="TTL of the resolved provider config cache (0 disables)"
    )

    # Providers - General
    provider_timeout_seconds: int = Field(
        default=30, ge=1, le=300, description="Total timeout for non-streaming provider calls"
    )
    provider_connect_timeout_seconds: int = Field(
        default=10, ge=1, le=120, description="Connect timeout for provider calls"
    )
    stream_idle_timeout_seconds: int = Field(
        default=60, ge=1, le=600, description="Max idle time between streamed chunks"
    )

    # Providers - OpenAI compatible
    openai_default_endpoint: str = Field(
        default="https://api.openai.com/v1",
        description="Endpoint used when an OpenAI-compatible config has none",
    )

    # Providers - Azure deployment
    azure_default_api_version: str = Field(
        default="2024-02-01", description="api-version used when a config has none"
    )

    # Prompting
    default_system_prompt: str = Field(
        default="You are a helpful AI assistant.",
        description="System prompt used when a config has none",
    )

    # Image attachments (external blob store)
    blob_base_url: str = Field(
        default="http://localhost/minio", description="Public base URL of the blob store"
    )
    blob_bucket: str = Field(default="chat-uploads", description="Blob store bucket name")
    blob_timeout_seconds: int = Field(
        default=10, ge=1, le=120, description="Timeout for blob fetches"
    )

    # Demo fallback
    demo_word_delay_seconds: float = Field(
        default=0.05, ge=0, le=5, description="Delay between streamed demo words"
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensure log level is valid."""
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper = v.upper()
        if upper not in valid:
            raise ValueError(f"log_level must be one of {valid}")
        return upper

    @field_validator("openai_default_endpoint", "blob_base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @property
    def is_sqlite(self) -> bool:
        """Check if using SQLite database."""
        return self.database_url.startswith("sqlite")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
