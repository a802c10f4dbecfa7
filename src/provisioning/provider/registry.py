"""Provider registry: which supplier gets the next provisioning attempt.

The ranking of active providers (priority order) is cached for a few
minutes; circuit-breaker state is always read fresh from the store because
concurrent attempts mutate it. The registry also owns the usage-result
cache so supplier usage endpoints are not hammered.
"""

import threading
from datetime import UTC, datetime, timedelta

import structlog
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.utils.globals import current_domain

from provisioning.config import Settings, get_settings
from provisioning.provider.cache import TTLCache
from provisioning.provider.provider import CircuitState, Provider

logger = structlog.get_logger(__name__)

_RANKING_KEY = "ranking"


class ProviderRegistry:
    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()
        self.provider_cache = TTLCache(self.settings.provider_cache_ttl_seconds)
        self.usage_cache = TTLCache(self.settings.usage_cache_ttl_seconds)
        self._probe_lock = threading.Lock()

    @property
    def cooldown(self) -> timedelta:
        return timedelta(seconds=self.settings.circuit_breaker_cooldown_seconds)

    @property
    def probe_lease(self) -> timedelta:
        return timedelta(seconds=self.settings.probe_lease_seconds)

    def _repo(self):
        return current_domain.repository_for(Provider)

    # -------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------
    def ranked_provider_ids(self) -> list[str]:
        """Active provider ids, lowest priority number first (cached)."""

        def load():
            active = self._repo()._dao.query.filter(is_active=True).all().items
            return [str(p.id) for p in sorted(active, key=lambda p: (p.priority, str(p.id)))]

        return self.provider_cache.get_or_load(_RANKING_KEY, load)

    def providers(self, now: datetime | None = None) -> list[Provider]:
        """Fresh records for the ranked providers, with OPEN circuits past cooldown reported HALF_OPEN."""
        now = now or datetime.now(UTC)
        repo = self._repo()
        providers = []
        for provider_id in self.ranked_provider_ids():
            try:
                provider = repo.get(provider_id)
            except ObjectNotFoundError:
                self.invalidate()
                continue
            if not provider.is_active:
                continue
            if provider.refresh_state(self.cooldown, now):
                repo.add(provider)
                logger.info("circuit_half_opened", provider_id=provider_id)
            providers.append(provider)
        return providers

    def eligible_providers(self, now: datetime | None = None) -> list[Provider]:
        """Providers that may take an attempt right now, in priority order."""
        now = now or datetime.now(UTC)
        eligible = []
        for provider in self.providers(now):
            if provider.state == CircuitState.CLOSED:
                eligible.append(provider)
            elif provider.state == CircuitState.HALF_OPEN and not provider.probe_in_flight(self.probe_lease, now):
                eligible.append(provider)
        return eligible

    # -------------------------------------------------------------------
    # Attempt bookkeeping
    # -------------------------------------------------------------------
    def claim(self, provider: Provider, now: datetime | None = None) -> bool:
        """Confirm the provider may be called; HALF_OPEN providers hand out a single probe lease."""
        if provider.state == CircuitState.CLOSED:
            return True
        now = now or datetime.now(UTC)
        with self._probe_lock:
            repo = self._repo()
            current = repo.get(str(provider.id))
            if current.state == CircuitState.CLOSED:
                return True
            try:
                current.begin_probe(self.probe_lease, now)
            except ValidationError:
                logger.info("probe_already_in_flight", provider_id=str(provider.id))
                return False
            repo.add(current)
            logger.info("circuit_probe_started", provider_id=str(provider.id))
            return True

    def record_success(self, provider_id: str) -> None:
        repo = self._repo()
        provider = repo.get(provider_id)
        provider.record_success(self.settings.success_rate_smoothing)
        repo.add(provider)

    def record_failure(self, provider_id: str) -> None:
        repo = self._repo()
        provider = repo.get(provider_id)
        provider.record_failure(
            self.settings.circuit_breaker_threshold,
            self.settings.success_rate_smoothing,
        )
        repo.add(provider)
        if provider.state == CircuitState.OPEN:
            logger.warning(
                "circuit_open",
                provider_id=provider_id,
                consecutive_failures=provider.consecutive_failures,
            )

    def release_probe(self, provider_id: str) -> None:
        """Give back a probe lease without judging the provider (e.g. a permanent order error)."""
        repo = self._repo()
        provider = repo.get(provider_id)
        if provider.probe_started_at is not None:
            provider.release_probe()
            repo.add(provider)

    def invalidate(self) -> None:
        self.provider_cache.invalidate()


_registry: ProviderRegistry | None = None


def get_registry() -> ProviderRegistry:
    """Return the process-wide registry (singleton)."""
    global _registry
    if _registry is None:
        _registry = ProviderRegistry()
    return _registry


def reset_registry() -> None:
    """Reset the registry and its caches (useful for testing)."""
    global _registry
    _registry = None
