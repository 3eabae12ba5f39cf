from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    app_name: str = "Clinic Desk"
    api_base_url: str = "http://localhost:7000"
    api_timeout_seconds: float = 15.0
    token_header: str = "token"
    token_prefix: str = ""
    token_store: str = "memory"
    redis_url: str = "redis://localhost:6379/0"
    token_ttl_seconds: int = 60 * 60 * 24
    timezone: str = "Asia/Kolkata"
    search_debounce_seconds: float = 0.5
    default_items_per_page: int = 10
    page_size_options: list[int] = [5, 10, 20, 50]
    calendar_fetch_limit: int = 500
    cors_origins: list[str] = ["http://localhost:5173"]

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    @field_validator("search_debounce_seconds")
    @classmethod
    def _debounce_quiet_period(cls, value: float) -> float:
        # zero disables the quiet period entirely (used by tests)
        if 0 < value < 0.3:
            raise ValueError("search_debounce_seconds must be 0 or at least 0.3")
        return value

    @field_validator("token_store")
    @classmethod
    def _known_token_store(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in {"memory", "redis"}:
            raise ValueError("token_store must be 'memory' or 'redis'")
        return normalized


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()


settings = get_settings()
