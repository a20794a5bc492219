"""Configuration management using pydantic-settings."""

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="LIVEPREVIEW_",
        case_sensitive=False,
    )

    # Server
    host: str = "0.0.0.0"
    port: int = 5002
    debug: bool = False
    cors_origins: list[str] = ["*"]

    # Security
    api_key: str | None = None

    # Storage
    database_url: str = "sqlite+aiosqlite:///./data/livepreview.db"
    data_dir: Path = Path("data")
    max_upload_bytes: int = 100 * 1024 * 1024

    # Port allocation
    port_range_start: int = 5100
    port_range_end: int = 5199
    bind_host: str = "127.0.0.1"

    # Session lifecycle
    session_ttl_seconds: float = 600.0
    reaper_interval_seconds: float = 60.0
    kill_grace_seconds: float = 5.0

    # Health probing
    health_budget_seconds: float = 20.0
    health_poll_interval_seconds: float = 0.6
    health_request_timeout_seconds: float = 2.0
    health_check_budget_seconds: float = 2.0

    # Launch
    max_launch_attempts: int = 4
    start_timeout_seconds: float = 300.0
    npm_command: str = "npm"
    install_dependencies: bool = True
    install_timeout_seconds: float = 240.0

    # Proxy
    preview_prefix: str = "/preview"
    referer_fallback_enabled: bool = True
    use_public_base_path: bool = True

    @property
    def database_path(self) -> Path:
        """Extract the database file path from the URL."""
        url = self.database_url
        if url.startswith("sqlite"):
            path_part = url.split("///")[-1]
            return Path(path_part)
        return self.data_dir / "livepreview.db"

    @property
    def previews_dir(self) -> Path:
        """Parent directory of every session's extracted project copy."""
        return self.data_dir / "previews"

    @property
    def uploads_dir(self) -> Path:
        return self.data_dir / "uploads"

    @property
    def launch_logs_dir(self) -> Path:
        """Per-attempt dev server output."""
        return self.data_dir / "logs"

    @property
    def session_records_dir(self) -> Path:
        """Crash-recovery records of live sessions."""
        return self.data_dir / "sessions"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache. Use only in tests.

    This allows tests to reload settings with different
    environment variables.
    """
    get_settings.cache_clear()
