"""Stuck-order reset: the sweeper's per-order command."""

from datetime import UTC, datetime

from protean import handle
from protean.fields import DateTime, Identifier
from protean.utils.globals import current_domain

from provisioning.audit.automation_log import StepName, StepStatus, record_step
from provisioning.domain import provisioning
from provisioning.order.order import STUCK_STATUSES, Order, OrderStatus


def _as_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def is_stale(order, stale_before: datetime) -> bool:
    """True when ``order`` sits in an in-flight state last touched before ``stale_before``."""
    if OrderStatus(order.status) not in STUCK_STATUSES or order.updated_at is None:
        return False
    return _as_aware(order.updated_at) < _as_aware(stale_before)


@provisioning.command(part_of="Order")
class ResetStuckOrder:
    """Put an order wedged mid-flight back to pending."""

    order_id = Identifier(required=True)
    stale_before = DateTime(required=True)


@provisioning.command_handler(part_of=Order)
class ResetStuckOrderHandler:
    @handle(ResetStuckOrder)
    def reset_stuck_order(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)

        # The order may have progressed since the sweep queried it
        if not is_stale(order, command.stale_before):
            return None

        previous_status = order.reset_stuck()
        repo.add(order)
        record_step(
            order,
            StepName.AUTO_RETRY,
            StepStatus.SUCCESS,
            previous_status=previous_status,
            initiated_by="sweeper",
        )
        return previous_status
