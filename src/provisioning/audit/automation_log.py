"""AutomationLog aggregate: append-only audit trail of fulfillment steps.

Entries are written once and never updated or deleted. The engine never
reads them back; they exist for operators and post-mortems.
"""

import json
from datetime import UTC, datetime
from enum import Enum

from protean.fields import DateTime, Identifier, String, Text
from protean.utils.globals import current_domain

from provisioning.domain import logger, provisioning


class StepName(Enum):
    WEBHOOK_RECEIVED = "webhook_received"
    PROVIDER_CALL_STARTED = "provider_call_started"
    PROVIDER_CALL_SUCCESS = "provider_call_success"
    PROVIDER_CALL_FAILED = "provider_call_failed"
    ASYNC_ORDER_ACCEPTED = "async_order_accepted"
    FAILOVER_TRIGGERED = "failover_triggered"
    EMAIL_SENT = "email_sent"
    EMAIL_FAILED = "email_failed"
    ORDER_COMPLETED = "order_completed"
    ORDER_FAILED = "order_failed"
    MANUAL_FULFILLMENT_REQUESTED = "manual_fulfillment_requested"
    MANUAL_RETRY_INITIATED = "manual_retry_initiated"
    AUTO_RETRY = "auto_retry"
    REFUND_PROCESSED = "refund_processed"
    FULFILLMENT_INTERRUPTED = "fulfillment_interrupted"


class StepStatus(Enum):
    STARTED = "started"
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


@provisioning.aggregate
class AutomationLog:
    order_id = Identifier(required=True)
    correlation_id = String(max_length=255)
    step_name = String(required=True, max_length=50, choices=StepName)
    status = String(required=True, max_length=20, choices=StepStatus)
    provider_name = String(max_length=100)
    error_message = Text()
    error_type = String(max_length=50)
    details = Text()  # JSON object
    created_at = DateTime()

    @property
    def details_dict(self) -> dict:
        return json.loads(self.details) if self.details else {}


def record_step(
    order,
    step: StepName,
    status: StepStatus,
    provider_name: str | None = None,
    error_message: str | None = None,
    error_type: str | None = None,
    **details,
) -> None:
    """Append an audit entry for ``order``.

    Audit writes are best-effort: a failing write is logged and dropped so
    it never changes the outcome of the step being audited.
    """
    try:
        entry = AutomationLog(
            order_id=str(order.id),
            correlation_id=order.correlation_id,
            step_name=step.value,
            status=status.value,
            provider_name=provider_name,
            error_message=error_message,
            error_type=error_type,
            details=json.dumps(details, default=str) if details else None,
            created_at=datetime.now(UTC),
        )
        current_domain.repository_for(AutomationLog).add(entry)
    except Exception as exc:
        logger.warning(
            "automation_log_write_failed",
            order_id=str(order.id),
            step=step.value,
            error=str(exc),
        )


def entries_for(order_id: str) -> list:
    """Audit entries for one order, oldest first (operator tooling and tests)."""
    entries = current_domain.repository_for(AutomationLog)._dao.query.filter(order_id=order_id).all().items
    return sorted(entries, key=lambda e: e.created_at)
