"""Webhook reconciler: resolves supplier callbacks to the order they belong to.

Lookup chain for a supplier ``request_id``:

1. the PendingAsyncOrder opened when the supplier accepted the order
2. a substring match on the order's own ``correlation_id`` (looser; covers
   callbacks whose correlation record is missing). Only orders already handed
   to a supplier qualify: in flight or re-queued, with a ``provider_order_id``

Reconciliation is idempotent: a callback for an order that is already
resolved changes nothing and still reports success.
"""

from dataclasses import dataclass

import structlog
from protean import handle
from protean.exceptions import ExpectedVersionError, ObjectNotFoundError
from protean.fields import Boolean, String, Text
from protean.utils.globals import current_domain

from provisioning.audit.automation_log import StepName, StepStatus, record_step
from provisioning.domain import provisioning
from provisioning.notify.delivery import alert_operators, deliver_esim
from provisioning.order.order import Order, OrderStatus
from provisioning.reconciliation.callbacks import CallbackNotice
from provisioning.reconciliation.pending_order import PendingAsyncOrder

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ReconcileResult:
    matched: bool
    order_id: str | None = None
    applied: bool = False
    status: str | None = None


# ---------------------------------------------------------------------------
# Lookup chain
# ---------------------------------------------------------------------------
def _by_pending_record(request_id: str):
    pending = current_domain.repository_for(PendingAsyncOrder).find_latest(request_id)
    if pending is None:
        return None
    try:
        return current_domain.repository_for(Order).get(pending.order_id), pending
    except ObjectNotFoundError:
        logger.warning("pending_order_without_order", request_id=request_id, order_id=pending.order_id)
        return None


_FALLBACK_STATUSES = {OrderStatus.FULFILLMENT_STARTED.value, OrderStatus.PENDING.value}


def _by_correlation_fragment(request_id: str):
    for order in current_domain.repository_for(Order).find_by_correlation_fragment(request_id):
        if order.status in _FALLBACK_STATUSES and order.provider_order_id:
            return order, None
    return None


LOOKUP_CHAIN = (_by_pending_record, _by_correlation_fragment)


def find_callback_target(request_id: str):
    """Return ``(order, pending_record_or_None)`` for a supplier request id, or None."""
    for lookup in LOOKUP_CHAIN:
        match = lookup(request_id)
        if match is not None:
            if lookup is not _by_pending_record:
                logger.info("callback_matched_by_fallback", request_id=request_id, lookup=lookup.__name__)
            return match
    return None


# ---------------------------------------------------------------------------
# Command
# ---------------------------------------------------------------------------
@provisioning.command(part_of="Order")
class ReconcileCallback:
    """Apply a supplier's asynchronous provisioning result."""

    supplier = String(required=True, max_length=50)
    request_id = String(required=True, max_length=255)
    succeeded = Boolean(required=True)
    iccid = String(max_length=32)
    activation_code = Text()
    qr_code = Text()
    provider_order_id = String(max_length=255)
    error_message = Text()


_RESOLVABLE_STATUSES = {
    OrderStatus.FULFILLMENT_STARTED,
    OrderStatus.PAYMENT_RECEIVED,
    OrderStatus.PENDING,
}


@provisioning.command_handler(part_of=Order)
class ReconcileCallbackHandler:
    @handle(ReconcileCallback)
    def reconcile(self, command):
        match = find_callback_target(command.request_id)
        if match is None:
            logger.warning("callback_unmatched", supplier=command.supplier, request_id=command.request_id)
            return ReconcileResult(matched=False)

        order, pending = match
        order_repo = current_domain.repository_for(Order)
        current = OrderStatus(order.status)
        if current not in _RESOLVABLE_STATUSES or (current != OrderStatus.FULFILLMENT_STARTED and not order.awaiting_fulfillment):
            logger.info(
                "callback_already_resolved",
                order_id=str(order.id),
                request_id=command.request_id,
                status=order.status,
            )
            return ReconcileResult(matched=True, order_id=str(order.id), status=order.status)

        if current != OrderStatus.FULFILLMENT_STARTED:
            # The sweeper re-queued the order while the supplier was still working on it
            logger.warning("late_callback_reclaims_order", order_id=str(order.id), status=order.status)
            order.start_fulfillment()

        provider_id = (pending.provider_id if pending else None) or order.provider_used or command.supplier
        if command.succeeded:
            order.complete(
                provider_id=provider_id,
                iccid=command.iccid,
                activation_code=command.activation_code,
                qr_code=command.qr_code,
                provider_order_id=command.provider_order_id,
            )
            step, step_status, error = StepName.ORDER_COMPLETED, StepStatus.SUCCESS, None
        else:
            order.fail(command.error_message, provider_id)
            step, step_status, error = StepName.ORDER_FAILED, StepStatus.FAILED, command.error_message
        order_repo.add(order)

        if pending is not None and pending.is_pending:
            pending.resolve(command.succeeded)
            current_domain.repository_for(PendingAsyncOrder).add(pending)

        record_step(
            order,
            step,
            step_status,
            provider_name=provider_id,
            error_message=error,
            source=StepName.WEBHOOK_RECEIVED.value,
            request_id=command.request_id,
        )
        logger.info(
            "callback_applied",
            order_id=str(order.id),
            request_id=command.request_id,
            status=order.status,
        )
        return ReconcileResult(matched=True, order_id=str(order.id), applied=True, status=order.status)


def reconcile_callback(supplier: str, notice: CallbackNotice) -> ReconcileResult:
    """Reconcile a parsed callback, then notify the customer or operators."""
    artifacts = notice.artifacts
    command = ReconcileCallback(
        supplier=supplier,
        request_id=notice.request_id,
        succeeded=notice.succeeded,
        iccid=artifacts.iccid if artifacts else None,
        activation_code=artifacts.activation_code if artifacts else None,
        qr_code=artifacts.qr_code if artifacts else None,
        provider_order_id=notice.provider_order_id,
        error_message=notice.error_message,
    )
    try:
        result = current_domain.process(command, asynchronous=False)
    except ExpectedVersionError:
        # A concurrent delivery of the same callback committed first; this pass sees it resolved
        logger.info("callback_raced", supplier=supplier, request_id=notice.request_id)
        result = current_domain.process(command, asynchronous=False)

    if result.applied:
        order = current_domain.repository_for(Order).get(result.order_id)
        if notice.succeeded:
            deliver_esim(order)
        else:
            alert_operators(order, "Async eSIM order failed", notice.error_message)
    return result
