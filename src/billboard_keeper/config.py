"""Application configuration via pydantic-settings.

Reads from .env file or environment variables. All settings are validated
at startup. If a setting has the wrong shape, the worker and API fail fast
with a clear error message.

Usage:
    from billboard_keeper.config import get_settings
    settings = get_settings()
    print(settings.verify_poll_interval_seconds)
"""

from __future__ import annotations

import math
from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

SECONDS_PER_DAY = 24 * 60 * 60


class Settings(BaseSettings):
    """Central configuration for the Billboard Keeper verification engine."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Application ---
    app_env: Literal["development", "staging", "production"] = "development"
    app_debug: bool = True
    app_log_level: str = "DEBUG"
    app_host: str = "0.0.0.0"
    app_port: int = 8000

    # --- Database (PostgreSQL) ---
    database_url: str = (
        "postgresql+asyncpg://billboard:billboard_dev"
        "@localhost:5432/billboard_keeper"
    )
    db_pool_size: int = 10
    db_max_overflow: int = 20
    db_pool_timeout: int = 30
    db_echo_sql: bool = False

    # --- Redis ---
    redis_url: str = "redis://localhost:6379/0"
    redis_key_prefix: str = "billboard:"

    # --- Job queue / worker ---
    job_queue_backend: Literal["sql", "redis", "memory"] = "sql"
    worker_enabled: bool = True
    worker_poll_interval_seconds: float = 1.0
    worker_concurrency_verify_initial: int = 5
    worker_concurrency_keep_alive: int = 10
    worker_concurrency_expiry: int = 5
    job_timeout_seconds: float = 120.0
    job_visibility_timeout_seconds: int = 600
    expiry_retry_seconds: int = 60

    # --- Initial verification ---
    verify_poll_interval_seconds: int = 60
    verify_max_duration_seconds: int = 30 * 60
    verify_required_consecutive_matches: int = 2

    # --- Keep-alive ---
    keepalive_checks_per_day: int = 7
    keepalive_jitter_seconds: int = 10 * 60

    # --- Fingerprinting ---
    hash_max_distance: int = 10
    image_normalize: bool = True
    image_normalize_width: int = 1500
    image_normalize_height: int = 500
    image_max_bytes: int = 10 * 1024 * 1024

    # --- Timeouts on the two suspension points ---
    snapshot_timeout_seconds: float = 10.0
    image_download_timeout_seconds: float = 15.0
    fingerprint_timeout_seconds: float = 10.0

    # --- Profile snapshot provider ---
    snapshot_provider: Literal["simulated", "rapidapi"] = "simulated"
    rapidapi_key: str = ""
    rapidapi_host: str = "twitter241.p.rapidapi.com"

    # --- Escrow control ---
    escrow_backend: Literal["simulated", "http"] = "simulated"
    escrow_api_url: str = "http://localhost:8545/relayer"
    escrow_api_token: str = ""
    escrow_timeout_seconds: float = 20.0

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"

    @property
    def keepalive_interval_seconds(self) -> float:
        """Spacing between keep-alive checks (~3.43h at 7 checks per day)."""
        return SECONDS_PER_DAY / self.keepalive_checks_per_day

    @property
    def image_normalize_size(self) -> tuple[int, int] | None:
        if not self.image_normalize:
            return None
        return (self.image_normalize_width, self.image_normalize_height)

    def keepalive_total_checks(self, duration_seconds: int) -> int:
        """Number of keep-alive checks planned for an agreement of this duration."""
        days = max(1, math.ceil(duration_seconds / SECONDS_PER_DAY))
        return self.keepalive_checks_per_day * days


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached singleton of the application settings."""
    return Settings()
