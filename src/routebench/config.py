"""Configuration management for routebench."""

from functools import lru_cache

from pydantic import AliasChoices, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Cohere
    cohere_api_key: SecretStr | None = Field(default=None, description="Cohere API key")
    cohere_model: str = Field(default="command-r", description="Cohere chat model")
    cohere_base_url: str = Field(
        default="https://api.cohere.ai/v1", description="Cohere API base URL"
    )

    # Anthropic (Claude)
    anthropic_api_key: SecretStr | None = Field(
        default=None,
        validation_alias=AliasChoices("anthropic_api_key", "claude_api_key"),
        description="Anthropic API key for Claude",
    )
    claude_model: str = Field(
        default="claude-3-5-haiku-20241022", description="Claude model name"
    )

    # DeepSeek (OpenAI-compatible API)
    deepseek_api_key: SecretStr | None = Field(default=None, description="DeepSeek API key")
    deepseek_model: str = Field(default="deepseek-chat", description="DeepSeek model name")
    deepseek_base_url: str = Field(
        default="https://api.deepseek.com/v1", description="DeepSeek API base URL"
    )

    # Generation
    temperature: float = Field(default=0.1, ge=0.0, le=2.0)
    max_tokens: int = Field(default=1024, gt=0)

    # Sweep
    request_timeout: float = Field(default=60.0, gt=0, description="Per-call timeout (seconds)")
    max_concurrency: int = Field(default=4, gt=0, description="In-flight provider calls")
    max_retries: int = Field(default=3, ge=0, description="Rate-limit retries per call")
    retry_base_delay: float = Field(default=2.0, ge=0, description="Backoff base (seconds)")
    request_delay: float = Field(default=0.0, ge=0, description="Pause after each call (seconds)")

    # Application
    environment: str = Field(default="production", description="Environment name")
    log_level: str = Field(default="INFO", description="Logging level")

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment.lower() == "development"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
