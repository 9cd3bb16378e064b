"""Centralized configuration management for the ScreenTech service."""
from functools import lru_cache
from pathlib import Path
from typing import List, Literal

from pydantic import AnyHttpUrl, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables or .env file."""

    model_config = SettingsConfigDict(
        env_file=Path(__file__).resolve().parent.parent.parent / ".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_name: str = Field(default="ScreenTech AI")
    environment: str = Field(default="development")
    api_base_url: str = Field(default="/api")

    # Model + provider credentials
    llm_provider: Literal["gemini", "groq", "echo"] = Field(default="gemini")
    gemini_api_key: str = Field(default="", repr=False)
    groq_api_key: str = Field(default="", repr=False)
    gemini_model: str = Field(default="gemini-2.5-flash")
    groq_model: str = Field(default="llama-3.1-70b-versatile")
    # Kept low so the model sticks to one procedural step per turn
    temperature: float = Field(default=0.2)

    # Durable key/value storage
    storage_backend: Literal["file", "supabase", "memory"] = Field(default="file")
    storage_dir: Path = Field(default=Path(".screentech"))
    storage_key_prefix: str = Field(default="screen_")
    supabase_url: str = Field(default="", repr=False)
    supabase_key: str = Field(default="", repr=False)
    supabase_table: str = Field(default="kv_store")
    corrupt_record_policy: Literal["reset", "raise"] = Field(default="reset")

    # Session behaviour
    learning_unit_serial: str = Field(default="TP-HD-PLUS-LEARN-01")
    verify_min_length: int = Field(default=50)
    auto_resume: bool = Field(default=True)

    # Monitoring
    langsmith_api_key: str = Field(default="", repr=False)
    langsmith_project: str = Field(default="screentech-agent")
    sentry_dsn: str = Field(default="", repr=False)

    allowed_origins: List[AnyHttpUrl] = Field(default_factory=list)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance to avoid reparsing the .env file."""
    return Settings()


settings = get_settings()
