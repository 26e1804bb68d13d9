from functools import lru_cache
from typing import ClassVar

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables / .env file."""

    # Hosted incident store (optional, both must be set to use it)
    supabase_url: str = ""
    supabase_anon_key: str = ""

    # Local SQLite incident store (optional, used when the hosted store is not configured)
    store_db_path: str = ""

    # AI provider used by the query doctor (optional, empty key = canned diagnosis)
    llm_provider: str = "openai"  # "openai" or "anthropic"
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    openai_base_url: str = ""  # Optional OpenAI-compatible endpoint (e.g. Perplexity)
    anthropic_api_key: str = ""
    anthropic_model: str = "claude-sonnet-4-5"

    # Dashboard timing
    recovery_dwell_seconds: float = 8.0
    incident_poll_seconds: float = 5.0
    service_poll_seconds: float = 5.0
    log_poll_seconds: float = 5.0
    action_delay_seconds: float = 1.0

    # Actor recorded on timeline entries
    dashboard_user: str = "commander"

    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Lazily load and cache settings."""
    return Settings()


def is_hosted_store_configured(settings: Settings) -> bool:
    """Check whether both hosted store URL and anon key are present."""
    return bool(settings.supabase_url and settings.supabase_anon_key)


def is_ai_configured(settings: Settings) -> bool:
    """Check whether the selected AI provider has an API key."""
    if settings.llm_provider == "anthropic":
        return bool(settings.anthropic_api_key)
    return bool(settings.openai_api_key)
