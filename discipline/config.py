"""Configuration settings for the task discipline engine."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_prefix="DISCIPLINE_", env_file=".env", extra="ignore")

    # Database
    db_host: str = "localhost"
    db_port: int = 15432
    db_name: str = "discipline"
    db_user: str = "discipline"
    db_password: str = "discipline"
    # Full async URL override (e.g. sqlite+aiosqlite:///tasks.db)
    database_url_override: str | None = None

    # Shared secret for the scheduled rollover trigger
    cron_secret: str | None = None

    # Calendar used to decide what "today" is for the sweep
    timezone: str = "UTC"

    # API server
    api_host: str = "127.0.0.1"
    api_port: int = 8000

    log_level: str = "INFO"

    @property
    def database_url(self) -> str:
        """SQLAlchemy database URL."""
        return f"postgresql://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    @property
    def async_database_url(self) -> str:
        """Async SQLAlchemy database URL."""
        if self.database_url_override:
            return self.database_url_override
        return f"postgresql+asyncpg://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"


# Global settings instance
settings = Settings()
