"""Scheduled supplier health check.

Pings every active supplier's API under the ``provider-health-check`` cron
lock and pages operators when one is slow or unreachable. The results are
reported and logged only; circuit state is driven by real purchase
attempts, never by these pings.
"""

import time
from dataclasses import dataclass, field
from enum import Enum

import structlog
from protean.utils.globals import current_domain

from provisioning.notify import get_notifier
from provisioning.provider.provider import Provider
from provisioning.supplier import get_supplier
from provisioning.sweeper.cron_lock import cleanup_expired_locks, cron_lock, current_holder

logger = structlog.get_logger(__name__)

JOB_NAME = "provider-health-check"
LOCK_TTL_SECONDS = 120
DEGRADED_RESPONSE_MS = 5000
LOCK_HELD_REASON = "Lock held by another instance"


class HealthStatus(Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass
class ProviderHealth:
    provider_id: str
    name: str
    status: HealthStatus
    response_time_ms: int
    error_message: str | None = None


@dataclass
class HealthCheckReport:
    skipped: bool = False
    reason: str | None = None
    held_by: str | None = None
    results: list[ProviderHealth] = field(default_factory=list)
    expired_locks: int = 0

    def count(self, status: HealthStatus) -> int:
        return sum(1 for r in self.results if r.status == status)

    @property
    def attention_needed(self) -> list[ProviderHealth]:
        return [r for r in self.results if r.status != HealthStatus.HEALTHY]


def check_provider(provider, clock=time.monotonic) -> ProviderHealth:
    """Ping one supplier and grade the answer."""
    started = clock()
    try:
        healthy = get_supplier(provider).health_check()
        error_message = None
    except Exception as exc:
        # Adapter errors grade the supplier; they never abort the run
        healthy = False
        error_message = str(exc)
    elapsed_ms = int((clock() - started) * 1000)

    if not healthy:
        status = HealthStatus.UNHEALTHY
    elif elapsed_ms > DEGRADED_RESPONSE_MS:
        status = HealthStatus.DEGRADED
    else:
        status = HealthStatus.HEALTHY
    return ProviderHealth(
        provider_id=str(provider.id),
        name=provider.name,
        status=status,
        response_time_ms=elapsed_ms,
        error_message=error_message,
    )


def _alert(report: HealthCheckReport) -> None:
    summary = " | ".join(f"{s.value.capitalize()}: {report.count(s)}" for s in HealthStatus)
    fields = {r.name: r.error_message or f"{r.status.value}, {r.response_time_ms}ms" for r in report.attention_needed}
    try:
        get_notifier().send_alert("Provider health alert", summary, fields)
    except Exception as exc:
        logger.warning("provider_health_alert_failed", error=str(exc))


def run_provider_health_check(clock=time.monotonic) -> HealthCheckReport:
    """Check every active supplier, unless another instance is already doing it."""
    with cron_lock(JOB_NAME, ttl_seconds=LOCK_TTL_SECONDS) as lock:
        if lock is None:
            holder = current_holder(JOB_NAME)
            logger.info("provider_health_check_skipped", held_by=holder.instance_id if holder else None)
            return HealthCheckReport(
                skipped=True,
                reason=LOCK_HELD_REASON,
                held_by=holder.instance_id if holder else None,
            )

        repo = current_domain.repository_for(Provider)
        providers = sorted(
            repo._dao.query.filter(is_active=True).all().items,
            key=lambda p: (p.priority, str(p.id)),
        )
        report = HealthCheckReport()
        for provider in providers:
            report.results.append(check_provider(provider, clock=clock))
            # Each ping may take up to the supplier timeout
            lock.extend(ttl_seconds=LOCK_TTL_SECONDS)

        if report.attention_needed:
            _alert(report)
        report.expired_locks = cleanup_expired_locks()

        logger.info(
            "provider_health_check_completed",
            checked=len(report.results),
            healthy=report.count(HealthStatus.HEALTHY),
            degraded=report.count(HealthStatus.DEGRADED),
            unhealthy=report.count(HealthStatus.UNHEALTHY),
            expired_locks=report.expired_locks,
        )
        return report
