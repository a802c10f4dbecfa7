"""Provider aggregate: a wholesale eSIM supplier and its circuit breaker.

Circuit Breaker:
    CLOSED → OPEN        consecutive_failures reaches the threshold
    OPEN → HALF_OPEN     cooldown elapsed since last_failure_at (on read)
    HALF_OPEN → CLOSED   successful probe
    HALF_OPEN → OPEN     failed probe

A HALF_OPEN provider admits one probe at a time: the prober takes a lease
(``probe_started_at``) that other callers respect until it resolves or
expires.
"""

from datetime import UTC, datetime, timedelta
from enum import Enum

from protean.exceptions import ValidationError
from protean.fields import Boolean, DateTime, Float, Integer, String

from provisioning.domain import provisioning
from provisioning.provider.events import (
    CircuitClosed,
    CircuitHalfOpened,
    CircuitOpened,
    ProviderRegistered,
)


class CircuitState(Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


def _aware(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


@provisioning.aggregate
class Provider:
    name = String(required=True, max_length=100)
    adapter = String(required=True, max_length=50)
    priority = Integer(default=100)
    is_active = Boolean(default=True)
    timeout_ms = Integer(default=10000, min_value=1)
    max_retries = Integer(default=3, min_value=1)

    circuit_breaker_state = String(
        max_length=20,
        choices=CircuitState,
        default=CircuitState.CLOSED.value,
    )
    success_rate = Float(default=1.0, min_value=0.0, max_value=1.0)
    consecutive_failures = Integer(default=0)
    last_failure_at = DateTime()
    last_success_at = DateTime()
    probe_started_at = DateTime()

    created_at = DateTime()
    updated_at = DateTime()

    @classmethod
    def register(
        cls,
        provider_id: str,
        name: str,
        adapter: str,
        priority: int = 100,
        is_active: bool = True,
        timeout_ms: int = 10000,
        max_retries: int = 3,
    ):
        now = datetime.now(UTC)
        provider = cls(
            id=provider_id,
            name=name,
            adapter=adapter,
            priority=priority,
            is_active=is_active,
            timeout_ms=timeout_ms,
            max_retries=max_retries,
            created_at=now,
            updated_at=now,
        )
        provider.raise_(
            ProviderRegistered(
                provider_id=provider_id,
                adapter=adapter,
                priority=priority,
                registered_at=now,
            )
        )
        return provider

    @property
    def state(self) -> CircuitState:
        return CircuitState(self.circuit_breaker_state)

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000

    def update_settings(
        self,
        priority: int | None = None,
        is_active: bool | None = None,
        timeout_ms: int | None = None,
        max_retries: int | None = None,
    ) -> None:
        if priority is not None:
            self.priority = priority
        if is_active is not None:
            self.is_active = is_active
        if timeout_ms is not None:
            self.timeout_ms = timeout_ms
        if max_retries is not None:
            self.max_retries = max_retries
        self.updated_at = datetime.now(UTC)

    # -------------------------------------------------------------------
    # Circuit breaker
    # -------------------------------------------------------------------
    def refresh_state(self, cooldown: timedelta, now: datetime | None = None) -> bool:
        """Move OPEN to HALF_OPEN once the cooldown has elapsed. Returns True if changed."""
        now = now or datetime.now(UTC)
        if self.state != CircuitState.OPEN:
            return False
        last_failure = _aware(self.last_failure_at)
        if last_failure is not None and now - last_failure < cooldown:
            return False
        self.circuit_breaker_state = CircuitState.HALF_OPEN.value
        self.probe_started_at = None
        self.updated_at = now
        self.raise_(CircuitHalfOpened(provider_id=str(self.id), half_opened_at=now))
        return True

    def probe_in_flight(self, lease: timedelta, now: datetime | None = None) -> bool:
        started = _aware(self.probe_started_at)
        if started is None:
            return False
        return (now or datetime.now(UTC)) - started < lease

    def begin_probe(self, lease: timedelta, now: datetime | None = None) -> None:
        """Take the single probe lease on a HALF_OPEN provider."""
        now = now or datetime.now(UTC)
        if self.state != CircuitState.HALF_OPEN:
            raise ValidationError({"circuit_breaker_state": ["Only a half-open provider can be probed"]})
        if self.probe_in_flight(lease, now):
            raise ValidationError({"probe_started_at": ["A probe is already in flight"]})
        self.probe_started_at = now
        self.updated_at = now

    def release_probe(self) -> None:
        self.probe_started_at = None

    def record_success(self, smoothing: float, now: datetime | None = None) -> None:
        now = now or datetime.now(UTC)
        was_closed = self.state == CircuitState.CLOSED
        self.consecutive_failures = 0
        self.success_rate = round(self.success_rate + smoothing * (1.0 - self.success_rate), 6)
        self.circuit_breaker_state = CircuitState.CLOSED.value
        self.probe_started_at = None
        self.last_success_at = now
        self.updated_at = now
        if not was_closed:
            self.raise_(CircuitClosed(provider_id=str(self.id), closed_at=now))

    def record_failure(self, threshold: int, smoothing: float, now: datetime | None = None) -> None:
        now = now or datetime.now(UTC)
        previous = self.state
        self.consecutive_failures = (self.consecutive_failures or 0) + 1
        self.success_rate = round(self.success_rate * (1.0 - smoothing), 6)
        self.last_failure_at = now
        self.probe_started_at = None
        self.updated_at = now
        if previous == CircuitState.HALF_OPEN or (
            previous == CircuitState.CLOSED and self.consecutive_failures >= threshold
        ):
            self.circuit_breaker_state = CircuitState.OPEN.value
            self.raise_(
                CircuitOpened(
                    provider_id=str(self.id),
                    consecutive_failures=self.consecutive_failures,
                    opened_at=now,
                )
            )

    def reset_circuit(self) -> None:
        """Admin reset: back to CLOSED with a clean failure history."""
        now = datetime.now(UTC)
        self.circuit_breaker_state = CircuitState.CLOSED.value
        self.consecutive_failures = 0
        self.last_failure_at = None
        self.probe_started_at = None
        self.updated_at = now
        self.raise_(CircuitClosed(provider_id=str(self.id), closed_at=now))
