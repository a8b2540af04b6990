"""Configuration for the consensus merge request reviewer."""

from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # App
    environment: str = Field(default="development")
    debug: bool = Field(default=True)
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=3000)

    # GitLab
    gitlab_host: str = Field(default="https://gitlab.com")
    gitlab_access_token: Optional[str] = Field(default=None)
    gitlab_webhook_secret: Optional[str] = Field(default=None)

    # LLM backend, chosen once at startup
    reviewer_backend: Literal["openrouter", "openai"] = Field(default="openrouter")
    openrouter_api_key: Optional[str] = Field(default=None)
    openai_api_key: Optional[str] = Field(default=None)
    llm_max_retries: int = Field(default=5)

    # Review Configuration
    review_model: str = Field(default="gpt-4o")
    review_language: str = Field(default="English")
    review_samples: int = Field(default=5, ge=1)
    max_oracle_calls: int = Field(default=10, ge=0)
    file_review_timeout_seconds: float = Field(default=600.0)


settings = Settings()
