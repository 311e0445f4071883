"""Configuration management for the book digest engine."""

from functools import lru_cache
from typing import Literal

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load environment variables from .env file (only if accessible)
try:
    load_dotenv()
except (PermissionError, OSError):
    # In sandboxed environments, .env might not be accessible
    # Environment variables should be set directly
    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    # Environment
    DIGEST_ENV: str = Field(default="dev", description="Environment: dev, test, prod")

    # Generation provider
    LLM_PROVIDER: Literal["gemini", "openai", "ollama", "302.ai"] = Field(
        default="gemini", description="OpenAI-compatible provider family"
    )
    LLM_API_KEY: str = Field(default="", description="API key for the provider")
    LLM_API_URL: str | None = Field(
        default=None, description="Override for the provider base URL"
    )
    LLM_MODEL: str | None = Field(default=None, description="Override for the provider model")
    LLM_TEMPERATURE: float = Field(default=0.7, description="Sampling temperature")
    LLM_MAX_RETRIES: int = Field(
        default=2, description="Transport-level retries performed by the client"
    )
    LLM_TIMEOUT_SECONDS: float = Field(default=600.0, description="Per-request timeout")

    # Run defaults
    OUTPUT_LANGUAGE: str = Field(default="en", description="Language for generated artifacts")
    BOOK_CATEGORY: Literal["fiction", "non-fiction"] = Field(
        default="non-fiction", description="Default book category for runs"
    )

    # Streaming
    STREAM_FLUSH_INTERVAL_SECONDS: float = Field(
        default=1.0, description="Minimum seconds between partial updates to observers"
    )

    # Artifact cache
    CACHE_BACKEND: Literal["memory", "file"] = Field(
        default="memory", description="Artifact store backend"
    )
    CACHE_PATH: str = Field(
        default=".bookdigest_cache.json", description="File used by the file backend"
    )


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings instance

    Raises:
        ValidationError: If an environment variable holds an invalid value
    """
    return Settings()
