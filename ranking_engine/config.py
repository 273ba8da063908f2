"""Application configuration using pydantic-settings."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Database (empty = not configured, API answers 503)
    database_url: str = ""
    # 0 = size the pool from fanout_concurrency
    db_pool_max_size: int = 0
    db_command_timeout: float = 30.0

    # CORS - comma-separated list of allowed origins
    cors_origins: str = "http://localhost:5173,http://localhost:3000"

    # Logging
    log_level: str = "INFO"

    # Result cache (seconds)
    cache_ttl_basic: int = 300  # 5 minutes for season/global figures
    cache_ttl_league: int = 60  # 1 minute for mini-league tables
    cache_max_entries: int = 1024
    # Bump when the shape of cached results changes
    cache_schema_version: int = 1

    # Game rules
    deadline_buffer_minutes: int = 75
    unicorn_min_members: int = 3

    # League start overrides: JSON object of league name -> start gameweek,
    # e.g. LEAGUE_START_OVERRIDES='{"Prem Predictions": 0, "API Test": 999}'
    league_start_overrides: dict[str, int] = {}
    independent_track_sentinel: int = 999

    # Data loading
    fanout_concurrency: int = 8
    pick_page_size: int = 1000
    store_retry_attempts: int = 3

    @property
    def pool_max_size(self) -> int:
        """Pool size: explicit, or two connections per concurrent league load.

        Picks and submissions load side by side, and the pool never drops
        below 10 connections.
        """
        if self.db_pool_max_size > 0:
            return self.db_pool_max_size
        return max(10, self.fanout_concurrency * 2)

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.cors_origins.split(",")]


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
