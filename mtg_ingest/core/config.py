"""
Application configuration settings.

All configuration is loaded from environment variables with sensible defaults.
"""
from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    app_name: str = "MTG Price Ingest"
    debug: bool = False

    # Database
    postgres_host: str = "db"
    postgres_port: int = 5432
    postgres_user: str = "mtg_user"
    postgres_password: str = "mtg_password"
    postgres_db: str = "mtg_prices"
    database_url: str | None = None
    use_postgres: bool = False
    sqlite_path: str = "./mtg_ingest.db"

    # Batching
    default_batch_size: int = 1000
    max_rows_per_statement: int = 1000  # Keeps bound parameters under driver limits

    # Retry policy for batch writes
    max_retries: int = 3
    retry_delay: float = 1.0  # seconds
    backoff_multiplier: float = 2.0
    max_delay: float = 30.0  # seconds

    # Checkpointing
    checkpoint_interval: int = 10  # batches between automatic checkpoints

    # Source limits
    csv_max_file_size: int = 100 * 1024 * 1024  # 100MB
    json_max_file_size: int = 5 * 1024 * 1024 * 1024  # 5GB

    # Error reporting
    error_sample_size: int = 10  # messages kept in ImportLog.error_message
    max_progress_errors: int = 1000

    # Data validation
    validation_sample_size: int = 1000  # rows sampled per table

    # Finished job registry
    job_history_ttl_seconds: int = 3600
    job_history_max_size: int = 100

    @field_validator(
        "default_batch_size", "max_rows_per_statement", "checkpoint_interval", "validation_sample_size"
    )
    @classmethod
    def must_be_positive(cls, v: int) -> int:
        """Batch-like sizes must be at least one."""
        if v < 1:
            raise ValueError("must be >= 1")
        return v

    @property
    def database_url_computed(self) -> str:
        """Compute database URL from components if not explicitly set."""
        if self.database_url:
            return self.database_url
        if self.use_postgres:
            return (
                f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
                f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
            )
        return f"sqlite+aiosqlite:///{self.sqlite_path}"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        env_prefix = "MTG_INGEST_"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
