"""Best-effort notification dispatch.

A notification failure is logged and audited but never turns into a
fulfillment failure.
"""

import structlog

from provisioning.audit.automation_log import StepName, StepStatus, record_step
from provisioning.notify import get_notifier

logger = structlog.get_logger(__name__)


def deliver_esim(order) -> bool:
    """Send the customer their eSIM. Returns True when the message went out."""
    try:
        get_notifier().send_esim_delivery(order)
    except Exception as exc:
        logger.warning("esim_delivery_failed", order_id=str(order.id), error=str(exc))
        record_step(order, StepName.EMAIL_FAILED, StepStatus.FAILED, error_message=str(exc))
        return False
    record_step(order, StepName.EMAIL_SENT, StepStatus.SUCCESS, email=order.customer_email)
    return True


def alert_operators(order, title: str, message: str) -> None:
    """Page operators about an order that needs a human."""
    try:
        get_notifier().send_alert(
            title,
            message,
            {
                "order_id": str(order.id),
                "status": order.status,
                "provider": order.provider_used or "-",
            },
        )
    except Exception as exc:
        logger.warning("operator_alert_failed", order_id=str(order.id), title=title, error=str(exc))
