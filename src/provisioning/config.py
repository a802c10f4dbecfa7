"""Engine settings read from the environment.

Protean's ``domain.toml`` covers persistence and processing modes; the
knobs below tune the fulfillment engine itself (circuit breaker, sweeper,
caches, secrets). Tests override them with ``configure_settings``.
"""

import os

from pydantic import BaseModel, Field

_ENV_VARS = {
    "circuit_breaker_threshold": "CIRCUIT_BREAKER_THRESHOLD",
    "circuit_breaker_cooldown_seconds": "CIRCUIT_BREAKER_COOLDOWN_SECONDS",
    "probe_lease_seconds": "CIRCUIT_BREAKER_PROBE_LEASE_SECONDS",
    "success_rate_smoothing": "SUCCESS_RATE_SMOOTHING",
    "retry_backoff_seconds": "RETRY_BACKOFF_SECONDS",
    "stuck_order_minutes": "STUCK_ORDER_MINUTES",
    "sweep_batch_limit": "SWEEP_BATCH_LIMIT",
    "cron_lock_ttl_seconds": "CRON_LOCK_TTL_SECONDS",
    "cron_secret": "CRON_SECRET",
    "airalo_webhook_secret": "AIRALO_WEBHOOK_SECRET",
    "provider_webhook_secret": "PROVIDER_WEBHOOK_SECRET",
    "webhook_tolerance_seconds": "WEBHOOK_TOLERANCE_SECONDS",
    "provider_cache_ttl_seconds": "PROVIDER_CACHE_TTL_SECONDS",
    "usage_cache_ttl_seconds": "USAGE_CACHE_TTL_SECONDS",
    "usage_daily_limit": "USAGE_DAILY_LIMIT",
    "discord_webhook_url": "DISCORD_WEBHOOK_URL",
    "instance_id": "INSTANCE_ID",
}


class Settings(BaseModel):
    circuit_breaker_threshold: int = Field(default=5, ge=1)
    circuit_breaker_cooldown_seconds: float = Field(default=60.0, ge=0)
    probe_lease_seconds: float = Field(default=30.0, gt=0)
    success_rate_smoothing: float = Field(default=0.2, gt=0, le=1)
    retry_backoff_seconds: float = Field(default=1.0, ge=0)
    stuck_order_minutes: int = Field(default=5, ge=1)
    sweep_batch_limit: int = Field(default=50, ge=1)
    cron_lock_ttl_seconds: int = Field(default=300, ge=1)
    cron_secret: str | None = None
    airalo_webhook_secret: str | None = None
    provider_webhook_secret: str | None = None
    webhook_tolerance_seconds: int = 300
    provider_cache_ttl_seconds: float = 300.0
    usage_cache_ttl_seconds: float = 900.0
    usage_daily_limit: int = 90
    discord_webhook_url: str | None = None
    instance_id: str | None = None

    @classmethod
    def from_env(cls) -> "Settings":
        values = {field: os.environ[var] for field, var in _ENV_VARS.items() if os.environ.get(var)}
        return cls(**values)


_settings: Settings | None = None


def get_settings() -> Settings:
    """Return the process settings (singleton, read from the environment once)."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def configure_settings(**overrides) -> Settings:
    """Replace selected settings at runtime (tests, manual tuning)."""
    global _settings
    _settings = get_settings().model_copy(update=overrides)
    return _settings


def reset_settings() -> None:
    """Reset the settings singleton (useful for testing)."""
    global _settings
    _settings = None
