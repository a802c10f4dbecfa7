"""Stuck-order sweeper: re-queues orders left mid-flight.

An order sitting in ``fulfillment_started`` or ``payment_received`` longer
than the staleness window lost its worker (crash, timeout, lost callback).
The sweep resets it to ``pending``; the ordinary orchestrator path picks it
up again. Runs under the ``retry-stuck-orders`` cron lock so overlapping
schedules never process the same orders twice.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

import structlog
from protean.utils.globals import current_domain

from provisioning.config import Settings, get_settings
from provisioning.order.order import STUCK_STATUSES, Order
from provisioning.order.requeue import ResetStuckOrder, is_stale
from provisioning.sweeper.cron_lock import cron_lock, current_holder

logger = structlog.get_logger(__name__)

JOB_NAME = "retry-stuck-orders"
LOCK_HELD_REASON = "Lock held by another instance"


@dataclass
class SweepReport:
    skipped: bool = False
    reason: str | None = None
    held_by: str | None = None
    expires_at: datetime | None = None
    processed: int = 0
    retried: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)


def find_stuck_orders(stale_before: datetime, limit: int) -> list:
    """Orders in flight last updated before ``stale_before``, oldest first."""
    repo = current_domain.repository_for(Order)
    stuck = [o for o in repo.find_by_status(*STUCK_STATUSES) if is_stale(o, stale_before)]
    stuck.sort(key=lambda o: o.updated_at if o.updated_at.tzinfo else o.updated_at.replace(tzinfo=UTC))
    return stuck[:limit]


def sweep_stuck_orders(as_of: datetime | None = None, settings: Settings | None = None) -> SweepReport:
    """Reset stale in-flight orders to pending, unless another instance is already sweeping."""
    settings = settings or get_settings()
    as_of = as_of or datetime.now(UTC)

    with cron_lock(JOB_NAME, ttl_seconds=settings.cron_lock_ttl_seconds) as lock:
        if lock is None:
            holder = current_holder(JOB_NAME)
            logger.info("sweep_skipped", held_by=holder.instance_id if holder else None)
            return SweepReport(
                skipped=True,
                reason=LOCK_HELD_REASON,
                held_by=holder.instance_id if holder else None,
                expires_at=holder.expires_at if holder else None,
            )

        stale_before = as_of - timedelta(minutes=settings.stuck_order_minutes)
        stuck = find_stuck_orders(stale_before, settings.sweep_batch_limit)
        report = SweepReport(processed=len(stuck))

        for order in stuck:
            try:
                previous_status = current_domain.process(
                    ResetStuckOrder(order_id=str(order.id), stale_before=stale_before),
                    asynchronous=False,
                )
            except Exception as exc:
                # One bad record must not stop the rest of the batch
                report.failed += 1
                report.errors.append(f"Order {order.id}: {exc}")
                logger.error("stuck_order_reset_failed", order_id=str(order.id), error=str(exc))
                continue
            if previous_status:
                report.retried += 1
                logger.info("stuck_order_reset", order_id=str(order.id), previous_status=previous_status)

        logger.info(
            "sweep_completed",
            processed=report.processed,
            retried=report.retried,
            failed=report.failed,
        )
        return report
