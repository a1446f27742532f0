"""Configuration using pydantic-settings.

Values come from environment variables (or a ``.env`` file), all prefixed
with ``EXTRAGRID_``. Credentials are optional so purely local use (the
``preview`` and ``diff`` commands, tests) needs no setup.
"""

from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from extragrid.importer import MAX_FILE_SIZE_BYTES, MAX_IMPORT_ROWS
from extragrid.models import DEFAULT_MIN_COLUMNS, DEFAULT_MIN_ROWS
from extragrid.progress import DEFAULT_CLEAR_DELAY

_LOG_LEVELS = {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}


class Settings(BaseSettings):
    """extragrid settings.

    Environment variables:
    - EXTRAGRID_SUPABASE_URL / EXTRAGRID_SUPABASE_KEY: table store
    - EXTRAGRID_GEMINI_API_KEY: enrichment and generation
    """

    model_config = SettingsConfigDict(
        env_prefix="EXTRAGRID_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    environment: str = "development"
    log_level: str = "INFO"

    # Table store
    supabase_url: str = ""
    supabase_key: str = ""
    request_timeout: int = 60

    # Enrichment
    gemini_api_key: str = ""
    gemini_model: str = "gemini-2.5-flash"
    progress_clear_delay: float = DEFAULT_CLEAR_DELAY

    # Import caps
    import_max_rows: int = MAX_IMPORT_ROWS
    import_max_file_bytes: int = MAX_FILE_SIZE_BYTES

    # Grid padding
    min_rows: int = DEFAULT_MIN_ROWS
    min_columns: int = DEFAULT_MIN_COLUMNS

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        level = value.strip().upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"Unknown log level: {value}")
        return level

    @field_validator("min_rows", "min_columns", "import_max_rows", "import_max_file_bytes")
    @classmethod
    def _non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("must not be negative")
        return value

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"

    @property
    def has_store(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)

    @property
    def has_enrichment(self) -> bool:
        return bool(self.gemini_api_key)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
