"""
Centralized settings for digest-spine.

Manifesto:
    One validated, cached settings object holds every knob the scheduler
    reads at startup: the process-wide enable toggle, the tick cadence,
    lease and retry bounds, breaker and queue limits, and logging. Values
    come from ``DIGEST_*`` environment variables or a ``.env`` file.

Examples:
    >>> settings = DigestSettings(tick_interval_seconds=600, tolerance_minutes=5)
    >>> settings.lease_ttl_seconds
    300

Tags:
    digest-spine, configuration, settings, pydantic, caching, validation
"""

from __future__ import annotations

import socket
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_instance_id() -> str:
    return f"{socket.gethostname()}-scheduler"


class DigestSettings(BaseSettings):
    """Digest scheduler configuration.

    All fields can be set via ``DIGEST_*`` environment variables (e.g.
    ``DIGEST_SCHEDULER_ENABLED=false``) or through a ``.env`` file.
    """

    model_config = SettingsConfigDict(
        env_prefix="DIGEST_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Process toggle ───────────────────────────────────────────
    scheduler_enabled: bool = Field(
        default=True,
        description="Process-wide switch; read once at startup",
    )

    # ── Tick ─────────────────────────────────────────────────────
    tick_interval_seconds: int = Field(default=600, gt=0)
    min_tick_delay_seconds: float = Field(default=1.0, ge=1.0)
    tolerance_minutes: int = Field(default=5, ge=0)

    # ── Lease ────────────────────────────────────────────────────
    lease_id: str = Field(default="scheduler-main")
    lease_ttl_seconds: int = Field(default=300, gt=0)
    instance_id: str = Field(default_factory=_default_instance_id)

    # ── Persistence ──────────────────────────────────────────────
    save_max_attempts: int = Field(
        default=3,
        ge=1,
        description="Saves per reconciling write, first attempt included",
    )
    cleanup_batch_size: int = Field(default=10, gt=0)

    # ── Queue ────────────────────────────────────────────────────
    queue_concurrency: int = Field(default=1, gt=0)
    queue_max_retries: int = Field(default=2, ge=0)

    # ── Circuit breaker ──────────────────────────────────────────
    breaker_failure_threshold: int = Field(default=5, gt=0)
    breaker_success_threshold: int = Field(default=2, gt=0)
    breaker_call_timeout_seconds: float = Field(default=60.0, gt=0)
    breaker_reset_timeout_seconds: float = Field(default=1800.0, gt=0)

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")
    service_name: str = Field(default="digest-scheduler")

    @model_validator(mode="after")
    def _validate_tolerance(self) -> DigestSettings:
        """A window narrower than half the poll interval can miss a schedule."""
        if self.tolerance_minutes * 60 * 2 < self.tick_interval_seconds:
            raise ValueError(
                f"tolerance_minutes={self.tolerance_minutes} is less than half of "
                f"tick_interval_seconds={self.tick_interval_seconds}"
            )
        return self

    @property
    def json_logs(self) -> bool:
        return self.log_format.lower() == "json"


# ── Settings factory with caching ────────────────────────────────────────

_settings_cache: dict[str, DigestSettings] = {}


def get_settings(*, env_file: Path | None = None, _force_reload: bool = False) -> DigestSettings:
    """Load, validate, and cache a :class:`DigestSettings` instance."""
    cache_key = str(env_file or "")
    if not _force_reload and cache_key in _settings_cache:
        return _settings_cache[cache_key]

    if env_file is not None:
        settings = DigestSettings(_env_file=env_file)  # type: ignore[call-arg]
    else:
        settings = DigestSettings()

    _settings_cache[cache_key] = settings
    return settings


def clear_settings_cache() -> None:
    """Clear the settings cache (primarily for testing)."""
    _settings_cache.clear()
