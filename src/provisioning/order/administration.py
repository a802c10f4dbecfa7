"""Admin actions on orders: retry, bulk retry and refund."""

from dataclasses import dataclass, field
from enum import Enum

import structlog
from protean import handle
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.fields import Float, Identifier, String
from protean.utils.globals import current_domain

from provisioning.audit.automation_log import StepName, StepStatus, record_step
from provisioning.domain import provisioning
from provisioning.gateway import get_gateway
from provisioning.order.order import ADMIN_RETRY_STATUSES, Order, OrderStatus, RefundReason

logger = structlog.get_logger(__name__)


@provisioning.command(part_of="Order")
class RetryOrder:
    """Send an order back to pending for another fulfillment attempt."""

    order_id = Identifier(required=True)
    initiated_by = String(max_length=100, default="admin")


@provisioning.command(part_of="Order")
class RefundOrder:
    """Refund an order; a completed order has its eSIM revoked."""

    order_id = Identifier(required=True)
    amount = Float()
    reason = String(
        max_length=50,
        choices=RefundReason,
        default=RefundReason.REQUESTED_BY_CUSTOMER.value,
    )


@provisioning.command_handler(part_of=Order)
class OrderAdministrationHandler:
    @handle(RetryOrder)
    def retry_order(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        previous_status = order.retry(command.initiated_by)
        repo.add(order)
        record_step(
            order,
            StepName.MANUAL_RETRY_INITIATED,
            StepStatus.SUCCESS,
            previous_status=previous_status,
            initiated_by=command.initiated_by,
        )
        logger.info("order_retry_initiated", order_id=command.order_id, previous_status=previous_status)
        return previous_status

    @handle(RefundOrder)
    def refund_order(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        amount = order.assert_refundable(command.amount)

        result = get_gateway().create_refund(
            payment_reference=order.payment_reference,
            amount=amount,
            reason=command.reason,
            idempotency_key=f"refund-{order.id}",
        )
        if not result.success:
            logger.warning("refund_declined", order_id=command.order_id, reason=result.failure_reason)
            raise ValidationError({"refund": [f"Refund failed: {result.failure_reason}"]})

        revoked_iccid = order.esim_iccid
        order.refund(amount, command.reason, result.gateway_refund_id)
        repo.add(order)
        record_step(
            order,
            StepName.REFUND_PROCESSED,
            StepStatus.SUCCESS,
            amount=amount,
            reason=command.reason,
            refund_id=result.gateway_refund_id,
            payment_status=order.payment_status,
            revoked_iccid=revoked_iccid,
        )
        logger.info("order_refunded", order_id=command.order_id, amount=amount, revoked_iccid=revoked_iccid)
        return result.gateway_refund_id


# ---------------------------------------------------------------------------
# Bulk retry
# ---------------------------------------------------------------------------
MAX_BULK_RETRY = 100


class BulkRetryOutcome(Enum):
    RETRIED = "retried"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class BulkRetryItem:
    order_id: str
    outcome: BulkRetryOutcome
    reason: str | None = None


@dataclass
class BulkRetryReport:
    items: list[BulkRetryItem] = field(default_factory=list)

    def count(self, outcome: BulkRetryOutcome) -> int:
        return sum(1 for item in self.items if item.outcome == outcome)


def bulk_retry_orders(order_ids: list[str], initiated_by: str = "admin") -> BulkRetryReport:
    """Retry each order independently; one bad id never stops the rest."""
    if not order_ids:
        raise ValidationError({"order_ids": ["At least one order id is required"]})
    if len(order_ids) > MAX_BULK_RETRY:
        raise ValidationError({"order_ids": [f"Maximum {MAX_BULK_RETRY} orders can be retried at once"]})

    repo = current_domain.repository_for(Order)
    report = BulkRetryReport()
    for order_id in order_ids:
        try:
            order = repo.get(order_id)
        except ObjectNotFoundError:
            report.items.append(BulkRetryItem(order_id, BulkRetryOutcome.FAILED, "Order not found"))
            continue
        if OrderStatus(order.status) not in ADMIN_RETRY_STATUSES:
            reason = f"Current status '{order.status}' cannot be retried"
            report.items.append(BulkRetryItem(order_id, BulkRetryOutcome.SKIPPED, reason))
            continue
        try:
            current_domain.process(RetryOrder(order_id=order_id, initiated_by=initiated_by), asynchronous=False)
        except Exception as exc:
            report.items.append(BulkRetryItem(order_id, BulkRetryOutcome.FAILED, str(exc)))
            logger.error("bulk_retry_order_failed", order_id=order_id, error=str(exc))
            continue
        report.items.append(BulkRetryItem(order_id, BulkRetryOutcome.RETRIED))

    logger.info(
        "bulk_retry_completed",
        total=len(order_ids),
        retried=report.count(BulkRetryOutcome.RETRIED),
        skipped=report.count(BulkRetryOutcome.SKIPPED),
        failed=report.count(BulkRetryOutcome.FAILED),
    )
    return report
