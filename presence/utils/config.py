# ==============================================================================
# Application Configuration
# ==============================================================================
"""
Configuration management using pydantic-settings.

All configuration is loaded from environment variables, with support for
.env files via python-dotenv.
"""

from functools import lru_cache
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env file before any settings are instantiated
load_dotenv()


class ValkeySettings(BaseSettings):
    """Valkey (Redis-compatible) connection settings for activity records."""

    model_config = SettingsConfigDict(env_prefix="VALKEY_")

    host: str = Field(default="localhost", description="Valkey host")
    port: int = Field(default=6379, description="Valkey port")
    password: Optional[str] = Field(default=None, description="Valkey password")
    db: int = Field(default=0, description="Valkey database number")
    ssl: bool = Field(default=False, description="Use SSL/TLS connection")
    key_prefix: str = Field(default="presence", description="Namespace for all keys")

    @property
    def url(self) -> str:
        """Build Valkey connection URL."""
        scheme = "rediss" if self.ssl else "redis"
        if self.password:
            return f"{scheme}://:{self.password}@{self.host}:{self.port}/{self.db}"
        return f"{scheme}://{self.host}:{self.port}/{self.db}"


class TrackerSettings(BaseSettings):
    """Session tracker settings."""

    model_config = SettingsConfigDict(env_prefix="TRACKER_")

    excluded_channels: list[str] = Field(
        default_factory=list, description="Channel IDs whose presence is never counted"
    )
    ignored_tags: list[str] = Field(
        default_factory=lambda: ["[observer]", "[waiting]"],
        description="Display-name markers that suspend tracking",
    )
    flush_interval_seconds: float = Field(
        default=60.0, description="Debounce window for persisting activity records"
    )
    heartbeat_interval_seconds: float = Field(
        default=30.0, description="How often open sessions record a heartbeat"
    )
    queue_max_size: int = Field(
        default=0, description="Per-group event queue bound (0 = unbounded)"
    )


class FetcherSettings(BaseSettings):
    """Membership fetcher settings."""

    model_config = SettingsConfigDict(env_prefix="FETCHER_")

    max_retries: int = Field(default=3, ge=0, description="Retries after the first attempt")
    base_delay_seconds: float = Field(default=1.0, ge=0, description="First backoff delay")
    max_delay_seconds: float = Field(default=30.0, ge=0, description="Backoff cap")
    jitter_ratio: float = Field(default=0.25, ge=0, description="Random jitter as share of base")
    attempt_timeout_seconds: float = Field(default=20.0, gt=0, description="Per-attempt timeout")
    operation_timeout_seconds: float = Field(
        default=90.0, gt=0, description="Deadline for the whole fetch including retries"
    )
    partial_page_size: int = Field(default=1000, ge=1, description="Page size of partial fetch")
    partial_timeout_seconds: float = Field(default=10.0, gt=0)
    cache_ttl_seconds: float = Field(default=300.0, ge=0, description="Fresh cache lifetime")
    grace_ttl_seconds: float = Field(
        default=1800.0, ge=0, description="How long a cached list may be served as stale"
    )
    cache_max_size: int = Field(default=100, ge=1, description="Cached groups (LRU)")
    max_concurrent: int = Field(default=3, ge=1, description="Concurrent upstream requests")
    requests_per_minute: float = Field(default=50.0, gt=0)
    burst: int = Field(default=5, ge=1, description="Token bucket burst")


class ReportSettings(BaseSettings):
    """Streaming report engine defaults."""

    model_config = SettingsConfigDict(env_prefix="REPORT_")

    batch_size: int = Field(default=50, ge=1)
    max_memory_mb: int = Field(default=256, ge=1)
    enable_partial_streaming: bool = Field(default=True)
    enable_error_recovery: bool = Field(default=True)
    max_retries: int = Field(default=3, ge=0)
    retry_base_delay_seconds: float = Field(default=1.0, ge=0)
    backpressure_pause_seconds: float = Field(default=0.5, ge=0)
    timeout_seconds: float = Field(default=300.0, gt=0, description="Whole-report deadline")
    max_concurrent_jobs: int = Field(default=3, ge=1)
    job_retention_seconds: float = Field(
        default=3600.0, ge=0, description="How long finished job status stays queryable"
    )
    excused_roles: list[str] = Field(
        default_factory=lambda: ["afk"], description="Member roles that mark a member excused"
    )


class ChunkerSettings(BaseSettings):
    """Delivery size limits."""

    model_config = SettingsConfigDict(env_prefix="CHUNKER_")

    max_items: int = Field(default=25, ge=1)
    max_bytes: int = Field(default=6000, ge=64)
    hard_ceiling_bytes: int = Field(default=60_000, ge=1)
    attachment_max_bytes: int = Field(default=8 * 1024 * 1024, ge=1)
    attachment_format: Literal["txt", "json", "csv"] = Field(default="txt")
    send_delay_seconds: float = Field(default=0.0, ge=0, description="Pause between chunks")


class CacheSettings(BaseSettings):
    """Report result cache settings."""

    model_config = SettingsConfigDict(env_prefix="CACHE_")

    backend: Literal["memory", "valkey"] = Field(default="memory")
    result_ttl_seconds: int = Field(default=600, ge=1)
    max_size: int = Field(default=256, ge=1)


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        extra="ignore",
    )

    # Nested settings
    valkey: ValkeySettings = Field(default_factory=ValkeySettings)
    tracker: TrackerSettings = Field(default_factory=TrackerSettings)
    fetcher: FetcherSettings = Field(default_factory=FetcherSettings)
    report: ReportSettings = Field(default_factory=ReportSettings)
    chunker: ChunkerSettings = Field(default_factory=ChunkerSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)

    # General settings
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Logging level")


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings.

    Settings are loaded once and cached for subsequent calls.
    """
    return Settings()
