"""Application settings loaded from environment variables."""

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _env_file() -> str | None:
    if os.getenv("PYTEST_CURRENT_TEST"):
        return None
    return ".env"


class Settings(BaseSettings):
    """Chime configuration. All values come from environment variables."""

    # Database
    database_path: Path = Field(default=Path("data/chime.db"))

    # Turso (hosted libSQL): when set, overrides local database_path
    turso_database_url: str = Field(default="")
    turso_auth_token: str = Field(default="")

    # HTTP
    http_host: str = Field(default="0.0.0.0")
    http_port: int = Field(default=8787)

    # Scheduler
    scheduler_domain: str = Field(default="shared")
    event_history_limit: int = Field(default=120)
    alarm_jitter_ms: int = Field(default=50)
    due_tolerance_ms: int = Field(default=250)
    min_future_buffer_ms: int = Field(default=500)
    durable_wake_enabled: bool = Field(default=True)

    # Anthropic
    anthropic_api_key: str = Field(default="")
    chat_model: str = Field(default="claude-sonnet-4-5-20250929")
    parse_model: str = Field(default="claude-haiku-4-5-20251001")
    chat_max_tokens: int = Field(default=1024)
    chat_system_prompt: str = Field(
        default="You are a helpful, friendly assistant. Provide concise and accurate responses."
    )

    # Logging
    log_level: str = Field(default="INFO")

    model_config = SettingsConfigDict(env_file=_env_file(), env_file_encoding="utf-8")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        if os.getenv("PYTEST_CURRENT_TEST"):
            return (init_settings,)
        return (init_settings, env_settings, dotenv_settings, file_secret_settings)


settings = Settings()
