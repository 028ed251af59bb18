"""Application configuration using Pydantic Settings.

All configuration is loaded from environment variables (or a .env file).
Provider API keys are optional so the orchestration core can run with
injected providers; the concrete adapters refuse to initialize without them.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # ==========================================================================
    # API Keys
    # ==========================================================================
    groq_api_key: SecretStr | None = Field(default=None, description="Groq API key for LLM")
    deepgram_api_key: SecretStr | None = Field(
        default=None, description="Deepgram API key for STT"
    )

    # ==========================================================================
    # Providers
    # ==========================================================================
    groq_model: str = Field(
        default="llama-3.3-70b-versatile",
        description="Groq chat model used for completions",
    )
    deepgram_model: str = Field(default="nova-2", description="Deepgram transcription model")
    llm_temperature: float = Field(default=0.7, description="Default sampling temperature")
    llm_max_tokens: int = Field(default=1024, description="Default max completion tokens")
    llm_timeout: float = Field(default=30.0, description="LLM request timeout in seconds")

    # ==========================================================================
    # Session Defaults
    # ==========================================================================
    default_language: str = Field(default="en", description="Default transcription language")
    default_sample_rate: int = Field(default=16000, description="Default audio sample rate in Hz")
    default_encoding: str = Field(default="linear16", description="Default audio encoding")
    system_prompt: str = Field(
        default="You are a helpful voice assistant. Keep answers short and conversational.",
        description="System prompt used when a session does not provide its own",
    )
    session_retention_seconds: float = Field(
        default=3600.0,
        description="How long ended sessions are kept before a sweep removes them",
    )

    # ==========================================================================
    # Application
    # ==========================================================================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", description="Logging level"
    )
    environment: Literal["development", "staging", "production"] = Field(
        default="development", description="Deployment environment"
    )

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
