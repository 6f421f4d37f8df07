"""Runtime configuration.

All values can be overridden from the environment with the ``RIDESTREAM_``
prefix, e.g. ``RIDESTREAM_DISPATCH_CONCURRENCY=10``, or from a ``.env`` file.
"""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_RETRYABLE_ERROR_CODES = [str(code) for code in range(30001, 30021)]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="RIDESTREAM_",
        env_file=".env",
        extra="ignore",
    )

    # Storage
    database_url: str = "sqlite+aiosqlite:///./ridestream.db"
    echo_sql: bool = False

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    # Dispatch worker pool
    dispatch_tick_seconds: float = Field(default=1.0, gt=0)
    dispatch_concurrency: int = Field(default=5, ge=1)
    stale_claim_seconds: float = Field(default=30.0, gt=0)

    # Retry policy
    retry_backoff_seconds: list[float] = Field(default_factory=lambda: [1, 5, 15, 60])
    retry_cap_seconds: float = 300.0
    max_retries: int = Field(default=3, ge=0)
    retryable_error_codes: list[str] = Field(default_factory=lambda: list(DEFAULT_RETRYABLE_ERROR_CODES))

    # Ride scans
    delay_scan_seconds: float = 300.0
    delay_threshold_minutes: int = 15
    reminder_scan_seconds: float = 900.0
    reminder_lead_minutes: int = 15

    # Change feed reconnects
    feed_reconnect_initial_seconds: float = 1.0
    feed_reconnect_max_seconds: float = 60.0
    feed_reconnect_attempts: int = 10

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide settings (loaded once)."""
    return Settings()


def reset_settings() -> None:
    """Forget cached settings so the next call re-reads the environment."""
    get_settings.cache_clear()
