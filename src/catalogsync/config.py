from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    catalog_url: str = "http://localhost:4533"
    catalog_username: str = ""
    catalog_password: str = ""
    catalog_timeout_seconds: float = 5.0
    catalog_max_attempts: int = 3
    database_url: str = "sqlite:///./catalog.db"
    tenant_id: str = "default"  # one sync process per tenant

    # Per-run defaults; a tenant's SyncState row may override most of these.
    batch_size: int = 50
    max_concurrent_requests: int = 3
    batch_delay_ms: int = 100
    max_errors: int = 50
    max_artists: int = 500
    max_songs_per_artist: int = 10
    checkpoint_interval: int = 2

    # Background schedule defaults
    sync_enabled: bool = True
    sync_interval_minutes: int = 30
    retry_delay_minutes: float = 5.0
    max_retry_delay_minutes: float = 60.0
    max_retries: int = 3
    sync_when_idle: bool = True
    idle_timeout_seconds: float = 60.0

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
