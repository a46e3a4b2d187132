"""Live sync configuration using pydantic-settings."""

from functools import lru_cache
from urllib.parse import quote

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Live sync settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # FPL API
    fpl_api_base_url: str = "https://fantasy.premierleague.com/api"
    request_timeout: float = 30.0

    # Database - DATABASE_URL wins over the individual SQL_* parts
    database_url: str | None = None
    sql_server: str | None = None
    sql_port: int = 5432
    sql_database: str | None = None
    sql_user: str | None = None
    sql_password: str | None = None
    sql_encrypt: bool = False
    db_connect_timeout: float = 30.0
    db_command_timeout: float = 60.0

    # Logging
    log_level: str = "INFO"

    # Plausibility thresholds for fetched snapshots
    min_player_count: int = 400
    expected_team_count: int = 20
    expected_gameweek_count: int = 38

    # Ignore "live" fixtures that kicked off longer ago than this (None = trust the API)
    stale_fixture_hours: float | None = None

    # Whole-run retries on source outages (1 = run once)
    run_attempts: int = 1
    run_retry_backoff: float = 5.0

    @property
    def db_connection_string(self) -> str | None:
        """Build a PostgreSQL DSN from DATABASE_URL or the SQL_* parts."""
        if self.database_url:
            return self.database_url
        if not self.sql_server or not self.sql_database:
            return None

        auth = ""
        if self.sql_user:
            auth = quote(self.sql_user, safe="")
            if self.sql_password:
                auth += ":" + quote(self.sql_password, safe="")
            auth += "@"
        return f"postgresql://{auth}{self.sql_server}:{self.sql_port}/{self.sql_database}"

    @property
    def db_display_name(self) -> str:
        """Database target without credentials, for log lines."""
        if self.sql_server and self.sql_database and not self.database_url:
            return f"{self.sql_server}:{self.sql_port}/{self.sql_database}"
        if self.database_url:
            return self.database_url.rsplit("@", 1)[-1]
        return "<not configured>"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
