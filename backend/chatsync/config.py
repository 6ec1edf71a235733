"""Application configuration."""

from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_BACKEND_DIR = Path(__file__).resolve().parents[1]


class Settings(BaseSettings):
    """Runtime settings loaded from environment variables."""

    app_name: str = "Chatsync API"
    database_url: str = f"sqlite+pysqlite:///{_BACKEND_DIR / 'chatsync.db'}"
    auto_create_schema: bool = True
    ack_delay_seconds: float = 0.3
    think_time_min_seconds: float = 1.5
    think_time_max_seconds: float = 2.5
    resubscribe_delay_seconds: float = 2.0

    model_config = SettingsConfigDict(
        env_file=str(_BACKEND_DIR / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @model_validator(mode="after")
    def _check_think_time_bounds(self) -> "Settings":
        if self.think_time_min_seconds < 0 or self.think_time_min_seconds > self.think_time_max_seconds:
            raise ValueError("think_time_min_seconds must be >= 0 and <= think_time_max_seconds")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()
