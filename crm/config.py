"""
Configuration management for the CRM records store and duplicate engine.

Uses pydantic-settings for type-safe configuration with environment variable support.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """Database connection settings."""

    model_config = SettingsConfigDict(
        env_prefix="POSTGRES_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    user: str = "crm"
    password: str = ""  # Required: Set POSTGRES_PASSWORD in .env
    host: str = "localhost"
    port: int = 5432
    db: str = "crm"

    # Full URL override (DATABASE_URL), used for SQLite in tests
    database_url: Optional[str] = Field(default=None, validation_alias="DATABASE_URL")

    @property
    def url(self) -> str:
        """Construct database URL."""
        if self.database_url:
            return self.database_url
        return f"postgresql://{self.user}:{self.password}@{self.host}:{self.port}/{self.db}"

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")


class RedisSettings(BaseSettings):
    """Redis connection settings."""

    model_config = SettingsConfigDict(
        env_prefix="REDIS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    enabled: bool = True

    @property
    def url(self) -> str:
        """Construct Redis URL."""
        return f"redis://{self.host}:{self.port}/{self.db}"


class LoggingSettings(BaseSettings):
    """Logging settings for the core engine."""

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    level: str = "INFO"
    file: Optional[Path] = None
    rotation: str = "10 MB"
    retention: str = "1 week"
    serialize: bool = False  # JSON lines in the file sink


class DedupeSettings(BaseSettings):
    """Duplicate detection and merge settings."""

    model_config = SettingsConfigDict(
        env_prefix="DEDUPE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Tenant defaults when no matching config row exists
    default_threshold: int = 70
    default_auto_detection: bool = True

    # Tier 1 prefilter: trigram similarity must exceed threshold/100 * ratio
    prefilter_ratio: float = 0.5
    candidate_limit: int = 50  # candidates kept per query record (real-time)
    scan_candidate_limit: int = 200  # candidates kept per record in a batch scan
    max_posting_size: int = 2000  # trigrams shared by more records are skipped for lookup

    # Real-time checks return at most this many matches
    max_matches: int = 10

    # Batch scan
    default_page_size: int = 20
    max_page_size: int = 100

    # Matching config read-through cache (seconds)
    config_cache_ttl: int = 30

    # Real-time prefilter in PostgreSQL via pg_trgm; None means "whenever the
    # database is PostgreSQL", False forces the in-memory index
    use_pg_trgm: Optional[bool] = None

    @field_validator("default_threshold")
    @classmethod
    def check_threshold(cls, v):
        """Threshold is a 0-100 score."""
        if not 0 <= v <= 100:
            raise ValueError("default_threshold must be between 0 and 100")
        return v

    @field_validator("prefilter_ratio")
    @classmethod
    def check_ratio(cls, v):
        if not 0 < v <= 1:
            raise ValueError("prefilter_ratio must be in (0, 1]")
        return v


class APISettings(BaseSettings):
    """API server settings."""

    model_config = SettingsConfigDict(
        env_prefix="API_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = False
    reload: bool = False
    cors_origins: str = "http://localhost:3000,http://localhost:4200"

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins into a list."""
        return [origin.strip() for origin in self.cors_origins.split(",")]


class Settings(BaseSettings):
    """Main settings class that combines all settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Sub-settings
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    dedupe: DedupeSettings = Field(default_factory=DedupeSettings)
    api: APISettings = Field(default_factory=APISettings)


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()


# Convenience function for quick access
settings = get_settings()
