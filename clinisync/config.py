"""Application Configuration — environment-driven settings via pydantic-settings.

Invariants:
    - All secrets come from environment variables (never hardcoded)
    - get_settings() is cached (lru_cache) — single instance per process
    - The backend counts as configured only when both remote_url and remote_api_key are set

Design Decisions:
    - pydantic-settings over raw os.environ: validation, type coercion, .env file support (ADR: developer UX)
    - Defaults provided for all non-secret settings: a device runs offline out-of-the-box
"""

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)

    # Local database (on-device store)
    local_database_url: str = "sqlite+aiosqlite:///clinisync.db"

    @field_validator("local_database_url", mode="before")
    @classmethod
    def convert_postgres_url(cls, v: str) -> str:
        """Hosts provide postgresql:// but asyncpg needs postgresql+asyncpg://."""
        if isinstance(v, str) and v.startswith("postgresql://"):
            return v.replace("postgresql://", "postgresql+asyncpg://", 1)
        return v

    local_database_pool_size: int = 5
    local_database_max_overflow: int = 5

    # Remote backend (PostgREST / Supabase)
    remote_url: str = ""
    remote_api_key: str = ""
    remote_schema: str = "public"
    remote_timeout_seconds: float = 30.0
    remote_max_retries: int = 3
    remote_base_delay_ms: int = 500
    remote_max_delay_ms: int = 10_000

    # Sync
    sync_batch_size: int = 100
    sync_interval_seconds: float = 300.0
    critical_sync_interval_seconds: float = 120.0
    subscription_stagger_ms: int = 200
    max_realtime_subscriptions: int = 17
    echo_ttl_seconds: float = 10.0
    start_online: bool = True

    # API
    cors_origins: list[str] = ["http://localhost:5173"]

    # Observability
    log_level: str = "INFO"
    log_format: str = "json"

    @property
    def is_backend_configured(self) -> bool:
        return bool(self.remote_url and self.remote_api_key)


@lru_cache
def get_settings() -> Settings:
    return Settings()
