"""Tests for settings."""
import pytest
from pydantic import ValidationError

from mtg_ingest.core.config import Settings


class TestSettings:
    """Tests for Settings defaults and computed values."""

    def test_batch_defaults(self):
        """Batching and retry defaults match the documented values."""
        s = Settings(_env_file=None)

        assert s.default_batch_size == 1000
        assert s.max_retries == 3
        assert s.checkpoint_interval == 10
        assert s.error_sample_size == 10
        assert s.validation_sample_size == 1000

    def test_explicit_database_url_wins(self):
        """database_url overrides the computed URL."""
        s = Settings(_env_file=None, database_url="sqlite+aiosqlite:///:memory:")

        assert s.database_url_computed == "sqlite+aiosqlite:///:memory:"

    def test_postgres_url_from_components(self):
        """use_postgres builds an asyncpg URL from the component fields."""
        s = Settings(
            _env_file=None,
            database_url=None,
            use_postgres=True,
            postgres_user="u",
            postgres_password="p",
            postgres_host="h",
            postgres_port=5433,
            postgres_db="d",
        )

        assert s.database_url_computed == "postgresql+asyncpg://u:p@h:5433/d"

    def test_default_is_sqlite(self):
        """Without postgres settings the store is a local SQLite file."""
        s = Settings(_env_file=None, database_url=None, use_postgres=False, sqlite_path="./x.db")

        assert s.database_url_computed == "sqlite+aiosqlite:///./x.db"

    def test_batch_size_must_be_positive(self):
        """Zero batch sizes are rejected."""
        with pytest.raises(ValidationError):
            Settings(_env_file=None, default_batch_size=0)
