"""Application configuration via Pydantic Settings."""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """All application settings, loaded from .env or environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Polymarket API ──────────────────────────────────────────
    gamma_api_url: str = Field(
        default="https://gamma-api.polymarket.com", description="Gamma markets API base URL"
    )
    clob_api_url: str = Field(
        default="https://clob.polymarket.com", description="CLOB order-book API base URL"
    )
    http_timeout_seconds: float = Field(
        default=10.0, description="Timeout for a single market-data request"
    )

    # ── Portfolio ───────────────────────────────────────────────
    initial_balance: float = Field(
        default=500.0, description="Cash balance of a newly created portfolio"
    )
    default_user_id: str = Field(default="default", description="Portfolio owner used by the CLI")
    price_refresh_interval_seconds: int = Field(
        default=30, description="Seconds between background price refreshes"
    )

    # ── Database ────────────────────────────────────────────────
    db_path: Path = Field(default=Path("paper_journal.db"), description="SQLite database path")

    # ── Logging ─────────────────────────────────────────────────
    log_level: str = Field(default="INFO", description="Console logging level")
    log_dir: Path = Field(default=Path("logs"), description="Directory for JSON log files")
    log_file_level: str = Field(default="DEBUG", description="Logging level for the log file")
    log_max_bytes: int = Field(default=5 * 1024 * 1024, description="Rotate log files at this size")
    log_backup_count: int = Field(default=5, description="Rotated log files to keep")


# Singleton instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Return the cached settings singleton."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
