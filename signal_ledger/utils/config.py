from __future__ import annotations

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    ledger_db_path: str = Field(default="data/ledger.db", description="SQLite key-value store path")
    storage_key: str = Field(default="plantsq2-store", description="Primary persisted state key")
    legacy_storage_keys: list[str] = Field(
        default=["plantsq-store", "plantsq_store", "plantsq"],
        description="Historical keys tried once when the primary key holds no days",
    )
    persist_debounce_seconds: float = Field(default=0.0, description="Minimum seconds between writes (0 = write every mutation)")

    default_start_date: str = Field(default="2025-07-30", description="Start date for an uninitialized ledger")
    default_initial_portfolio: float = Field(default=2361.0, description="Initial portfolio for an uninitialized ledger")
    default_forecast_window: int = Field(default=7, description="Forecast window in days")

    backup_base_url: str = Field(default="http://localhost:8888/.netlify/functions", description="Remote backup base URL")
    backup_token: str = Field(default="", description="Shared secret forwarded as X-Backup-Token")
    backup_timeout: float = Field(default=30.0, description="Backup request timeout in seconds")
    rate_limit_backup: float = Field(default=2.0, description="Backup requests per second")
    max_retries: int = Field(default=3, description="Maximum retry attempts")
    retry_delay: float = Field(default=1.0, description="Base retry delay in seconds")

    log_level: str = Field(default="INFO", description="Logging level")
    log_file: str = Field(default="logs/ledger.log", description="Log file path")

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore", "env_prefix": "LEDGER_"}


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings() -> Settings:
    global _settings
    _settings = Settings()
    return _settings
