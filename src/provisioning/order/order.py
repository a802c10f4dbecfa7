"""Order aggregate (CQRS): the unit of fulfillment work.

An order is bought from one wholesale supplier and ends up either carrying
the provisioned eSIM artifacts or an error explaining why it did not.

State Machine:
    PENDING → PAYMENT_RECEIVED → FULFILLMENT_STARTED → {COMPLETED | PROVIDER_FAILED | FAILED}
    FULFILLMENT_STARTED → PENDING_MANUAL_FULFILLMENT (manual supplier hand-off)
    {FAILED, PROVIDER_FAILED} → PENDING_MANUAL_FULFILLMENT
    {FAILED, PROVIDER_FAILED, PENDING_MANUAL_FULFILLMENT,
     FULFILLMENT_STARTED, PAYMENT_RECEIVED} → PENDING (retry / sweep)
    {COMPLETED, DELIVERED, PENDING_MANUAL_FULFILLMENT, PROVIDER_FAILED, FAILED} → REFUNDED
    PENDING (already paid) → FULFILLMENT_STARTED (re-attempt after a retry)
"""

from datetime import UTC, datetime
from enum import Enum
from uuid import uuid4

from protean import atomic_change, invariant
from protean.exceptions import ValidationError
from protean.fields import DateTime, Float, Identifier, Integer, String, Text

from provisioning.domain import provisioning
from provisioning.order.events import (
    FulfillmentFailed,
    FulfillmentRequeued,
    FulfillmentStarted,
    ManualFulfillmentRequested,
    OrderFulfilled,
    OrderPlaced,
    OrderRefunded,
    PaymentConfirmed,
    ProviderFailed,
    ProvisioningAccepted,
)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class OrderStatus(Enum):
    PENDING = "pending"
    PAYMENT_RECEIVED = "payment_received"
    FULFILLMENT_STARTED = "fulfillment_started"
    COMPLETED = "completed"
    PROVIDER_FAILED = "provider_failed"
    FAILED = "failed"
    PENDING_MANUAL_FULFILLMENT = "pending_manual_fulfillment"
    DELIVERED = "delivered"
    REFUNDED = "refunded"


class PaymentStatus(Enum):
    UNPAID = "unpaid"
    PAID = "paid"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"


class RefundReason(Enum):
    DUPLICATE = "duplicate"
    FRAUDULENT = "fraudulent"
    REQUESTED_BY_CUSTOMER = "requested_by_customer"
    OTHER = "other"


_VALID_TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.PAYMENT_RECEIVED, OrderStatus.FULFILLMENT_STARTED},
    OrderStatus.PAYMENT_RECEIVED: {OrderStatus.FULFILLMENT_STARTED, OrderStatus.PENDING},
    OrderStatus.FULFILLMENT_STARTED: {
        OrderStatus.COMPLETED,
        OrderStatus.PROVIDER_FAILED,
        OrderStatus.FAILED,
        OrderStatus.PENDING_MANUAL_FULFILLMENT,
        OrderStatus.PENDING,
    },
    OrderStatus.PROVIDER_FAILED: {
        OrderStatus.PENDING,
        OrderStatus.PENDING_MANUAL_FULFILLMENT,
        OrderStatus.REFUNDED,
    },
    OrderStatus.FAILED: {
        OrderStatus.PENDING,
        OrderStatus.PENDING_MANUAL_FULFILLMENT,
        OrderStatus.REFUNDED,
    },
    OrderStatus.PENDING_MANUAL_FULFILLMENT: {OrderStatus.PENDING, OrderStatus.REFUNDED},
    OrderStatus.DELIVERED: {OrderStatus.REFUNDED},
    OrderStatus.COMPLETED: {OrderStatus.REFUNDED},
    OrderStatus.REFUNDED: set(),  # terminal
}

FAILURE_STATUSES = frozenset({OrderStatus.FAILED, OrderStatus.PROVIDER_FAILED})

ADMIN_RETRY_STATUSES = (
    OrderStatus.FAILED,
    OrderStatus.PROVIDER_FAILED,
    OrderStatus.PENDING_MANUAL_FULFILLMENT,
    OrderStatus.FULFILLMENT_STARTED,
    OrderStatus.PAYMENT_RECEIVED,
)

STUCK_STATUSES = (OrderStatus.FULFILLMENT_STARTED, OrderStatus.PAYMENT_RECEIVED)

REFUNDABLE_STATUSES = (
    OrderStatus.COMPLETED,
    OrderStatus.DELIVERED,
    OrderStatus.PENDING_MANUAL_FULFILLMENT,
    OrderStatus.PROVIDER_FAILED,
    OrderStatus.FAILED,
)

_MANUAL_HANDOFF_STATUSES = {
    OrderStatus.FULFILLMENT_STARTED,
    OrderStatus.FAILED,
    OrderStatus.PROVIDER_FAILED,
}

# What end customers are shown; internal failure detail never leaves the admin surface.
_CUSTOMER_STATUS = {
    OrderStatus.COMPLETED: "completed",
    OrderStatus.DELIVERED: "completed",
    OrderStatus.FAILED: "failed",
    OrderStatus.REFUNDED: "refunded",
}


# ---------------------------------------------------------------------------
# Aggregate Root (CQRS)
# ---------------------------------------------------------------------------
@provisioning.aggregate
class Order:
    status = String(
        max_length=50,
        choices=OrderStatus,
        default=OrderStatus.PENDING.value,
    )
    payment_status = String(
        max_length=50,
        choices=PaymentStatus,
        default=PaymentStatus.UNPAID.value,
    )
    payment_reference = String(max_length=255)
    amount = Float(required=True, min_value=0.0)
    currency = String(max_length=3, default="USD")
    customer_email = String(required=True, max_length=254)
    customer_name = String(max_length=200)
    provider_sku = String(required=True, max_length=255)
    quantity = Integer(default=1, min_value=1)
    correlation_id = String(required=True, max_length=255)
    claim_token = String(max_length=64)

    # Supplier linkage
    provider_used = String(max_length=100)
    provider_order_id = String(max_length=255)

    # Fulfillment artifacts, written only on completion
    esim_iccid = String(max_length=32)
    esim_activation_code = Text()
    esim_qr_code = Text()

    retry_count = Integer(default=0)
    error_message = Text()

    refund_amount = Float()
    refund_reason = String(max_length=50, choices=RefundReason)
    refunded_at = DateTime()

    created_at = DateTime()
    updated_at = DateTime()
    completed_at = DateTime()

    # -------------------------------------------------------------------
    # Invariants
    # -------------------------------------------------------------------
    @invariant.post
    def artifacts_only_when_completed(self):
        completed = self.status == OrderStatus.COMPLETED.value
        if completed and not self.esim_iccid:
            raise ValidationError({"esim_iccid": ["A completed order must carry its eSIM ICCID"]})
        if completed and not (self.esim_activation_code or self.esim_qr_code):
            raise ValidationError({"esim_activation_code": ["A completed order must carry an activation code or QR code"]})
        if not completed and self.has_artifacts:
            raise ValidationError({"status": ["eSIM artifacts can only be present on a completed order"]})

    @invariant.post
    def failures_carry_an_error_message(self):
        if OrderStatus(self.status) in FAILURE_STATUSES and not self.error_message:
            raise ValidationError({"error_message": ["A failed order must explain why it failed"]})
        if self.status == OrderStatus.COMPLETED.value and self.error_message:
            raise ValidationError({"error_message": ["A completed order cannot carry an error"]})

    # -------------------------------------------------------------------
    # Factory method
    # -------------------------------------------------------------------
    @classmethod
    def place(
        cls,
        provider_sku: str,
        amount: float,
        customer_email: str,
        quantity: int = 1,
        currency: str = "USD",
        customer_name: str | None = None,
        correlation_id: str | None = None,
        order_id: str | None = None,
    ):
        """Create a new unpaid order."""
        now = datetime.now(UTC)
        order_id = order_id or str(uuid4())
        order = cls(
            id=order_id,
            provider_sku=provider_sku,
            quantity=quantity,
            amount=amount,
            currency=currency,
            customer_email=customer_email,
            customer_name=customer_name,
            correlation_id=correlation_id or f"esim-{order_id}",
            status=OrderStatus.PENDING.value,
            payment_status=PaymentStatus.UNPAID.value,
            created_at=now,
            updated_at=now,
        )
        order.raise_(
            OrderPlaced(
                order_id=str(order.id),
                correlation_id=order.correlation_id,
                provider_sku=provider_sku,
                quantity=quantity,
                amount=amount,
                currency=currency,
                placed_at=now,
            )
        )
        return order

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------
    @property
    def has_artifacts(self) -> bool:
        return bool(self.esim_iccid or self.esim_activation_code or self.esim_qr_code)

    @property
    def is_paid(self) -> bool:
        return self.payment_status == PaymentStatus.PAID.value

    @property
    def awaiting_fulfillment(self) -> bool:
        """True when the orchestrator may claim this order."""
        current = OrderStatus(self.status)
        if current == OrderStatus.PAYMENT_RECEIVED:
            return True
        return current == OrderStatus.PENDING and self.is_paid

    @property
    def customer_status(self) -> str:
        return _CUSTOMER_STATUS.get(OrderStatus(self.status), "processing")

    # -------------------------------------------------------------------
    # State transition helper
    # -------------------------------------------------------------------
    def _assert_can_transition(self, target_status: OrderStatus) -> None:
        current = OrderStatus(self.status)
        if target_status not in _VALID_TRANSITIONS.get(current, set()):
            raise ValidationError({"status": [f"Cannot transition from {current.value} to {target_status.value}"]})

    # -------------------------------------------------------------------
    # Payment
    # -------------------------------------------------------------------
    def confirm_payment(self, payment_reference: str | None = None) -> None:
        """Record the gateway's payment confirmation."""
        self._assert_can_transition(OrderStatus.PAYMENT_RECEIVED)
        now = datetime.now(UTC)
        with atomic_change(self):
            self.status = OrderStatus.PAYMENT_RECEIVED.value
            self.payment_status = PaymentStatus.PAID.value
            self.payment_reference = payment_reference
            self.updated_at = now
        self.raise_(
            PaymentConfirmed(
                order_id=str(self.id),
                payment_reference=payment_reference,
                confirmed_at=now,
            )
        )

    # -------------------------------------------------------------------
    # Fulfillment
    # -------------------------------------------------------------------
    def start_fulfillment(self) -> str:
        """Claim the order for one provisioning attempt and return the claim token."""
        if not self.awaiting_fulfillment:
            raise ValidationError({"status": [f"Order in {self.status} is not awaiting fulfillment"]})
        self._assert_can_transition(OrderStatus.FULFILLMENT_STARTED)
        now = datetime.now(UTC)
        token = uuid4().hex
        with atomic_change(self):
            self.status = OrderStatus.FULFILLMENT_STARTED.value
            self.claim_token = token
            self.updated_at = now
        self.raise_(
            FulfillmentStarted(
                order_id=str(self.id),
                claim_token=token,
                started_at=now,
            )
        )
        return token

    def accept_async(self, provider_id: str, request_id: str) -> None:
        """Park the order until the supplier's callback arrives."""
        if OrderStatus(self.status) != OrderStatus.FULFILLMENT_STARTED:
            raise ValidationError({"status": ["Only an order in fulfillment can await a supplier callback"]})
        now = datetime.now(UTC)
        with atomic_change(self):
            self.provider_used = provider_id
            self.provider_order_id = request_id
            self.updated_at = now
        self.raise_(
            ProvisioningAccepted(
                order_id=str(self.id),
                provider_id=provider_id,
                request_id=request_id,
                accepted_at=now,
            )
        )

    def complete(
        self,
        provider_id: str,
        iccid: str,
        activation_code: str | None = None,
        qr_code: str | None = None,
        provider_order_id: str | None = None,
    ) -> None:
        """Copy the provisioned eSIM onto the order."""
        self._assert_can_transition(OrderStatus.COMPLETED)
        now = datetime.now(UTC)
        with atomic_change(self):
            self.status = OrderStatus.COMPLETED.value
            self.provider_used = provider_id
            if provider_order_id:
                self.provider_order_id = provider_order_id
            self.esim_iccid = iccid
            self.esim_activation_code = activation_code
            self.esim_qr_code = qr_code
            self.error_message = None
            self.completed_at = now
            self.updated_at = now
        self.raise_(
            OrderFulfilled(
                order_id=str(self.id),
                provider_id=provider_id,
                provider_order_id=self.provider_order_id,
                iccid=iccid,
                completed_at=now,
            )
        )

    def mark_provider_failed(self, reason: str, provider_id: str | None = None) -> None:
        """Every eligible supplier exhausted its transient retry budget."""
        self._assert_can_transition(OrderStatus.PROVIDER_FAILED)
        now = datetime.now(UTC)
        with atomic_change(self):
            self.status = OrderStatus.PROVIDER_FAILED.value
            if provider_id:
                self.provider_used = provider_id
            self.error_message = reason
            self.updated_at = now
        self.raise_(
            ProviderFailed(
                order_id=str(self.id),
                provider_id=provider_id,
                reason=reason,
                failed_at=now,
            )
        )

    def fail(self, reason: str, provider_id: str | None = None) -> None:
        """Fail the order permanently; only a retry brings it back."""
        self._assert_can_transition(OrderStatus.FAILED)
        now = datetime.now(UTC)
        with atomic_change(self):
            self.status = OrderStatus.FAILED.value
            if provider_id:
                self.provider_used = provider_id
            self.error_message = reason
            self.updated_at = now
        self.raise_(
            FulfillmentFailed(
                order_id=str(self.id),
                provider_id=provider_id,
                reason=reason,
                failed_at=now,
            )
        )

    def request_manual_fulfillment(self, reason: str) -> None:
        """Hand the order over to staff."""
        current = OrderStatus(self.status)
        if current not in _MANUAL_HANDOFF_STATUSES:
            raise ValidationError({"status": [f"Cannot hand over an order in {current.value} for manual fulfillment"]})
        now = datetime.now(UTC)
        with atomic_change(self):
            self.status = OrderStatus.PENDING_MANUAL_FULFILLMENT.value
            self.error_message = reason
            self.updated_at = now
        self.raise_(
            ManualFulfillmentRequested(
                order_id=str(self.id),
                reason=reason,
                requested_at=now,
            )
        )

    # -------------------------------------------------------------------
    # Re-queueing
    # -------------------------------------------------------------------
    def retry(self, initiated_by: str = "admin") -> str:
        """Admin retry: reset the order to pending and return the previous status."""
        current = OrderStatus(self.status)
        if current not in ADMIN_RETRY_STATUSES:
            raise ValidationError({"status": [f"Cannot retry order with status '{current.value}'"]})
        self._requeue(
            current,
            reason=f"Manual retry from {initiated_by} (was: {current.value})",
            retry_count=(self.retry_count or 0) + 1,
        )
        return current.value

    def reset_stuck(self) -> str:
        """Sweeper reset: back to pending, nothing else incremented."""
        current = OrderStatus(self.status)
        if current not in STUCK_STATUSES:
            raise ValidationError({"status": [f"Order in {current.value} is not stuck in flight"]})
        self._requeue(
            current,
            reason=f"Auto-retry: was stuck in {current.value}",
            retry_count=self.retry_count or 0,
        )
        return current.value

    def _requeue(self, current: OrderStatus, reason: str, retry_count: int) -> None:
        self._assert_can_transition(OrderStatus.PENDING)
        now = datetime.now(UTC)
        with atomic_change(self):
            self.status = OrderStatus.PENDING.value
            self.error_message = reason
            self.retry_count = retry_count
            self.claim_token = None
            self.updated_at = now
        self.raise_(
            FulfillmentRequeued(
                order_id=str(self.id),
                previous_status=current.value,
                reason=reason,
                retry_count=retry_count,
                requeued_at=now,
            )
        )

    # -------------------------------------------------------------------
    # Refund
    # -------------------------------------------------------------------
    def assert_refundable(self, amount: float | None = None) -> float:
        """Validate a refund request and return the amount to refund."""
        current = OrderStatus(self.status)
        if self.payment_status in (PaymentStatus.REFUNDED.value, PaymentStatus.PARTIALLY_REFUNDED.value):
            raise ValidationError({"payment_status": ["Order has already been refunded"]})
        if not self.is_paid:
            raise ValidationError({"payment_status": ["Order has not been paid"]})
        if current not in REFUNDABLE_STATUSES:
            raise ValidationError({"status": [f"Cannot refund order with status '{current.value}'"]})
        if not self.payment_reference:
            raise ValidationError({"payment_reference": ["No payment reference found for this order"]})

        refund_amount = self.amount if amount is None else amount
        if refund_amount <= 0:
            raise ValidationError({"amount": ["Refund amount must be greater than zero"]})
        if refund_amount > self.amount:
            raise ValidationError({"amount": ["Refund amount cannot exceed the order amount"]})
        return refund_amount

    def refund(self, amount: float, reason: str, gateway_refund_id: str | None = None) -> None:
        """Record a refund the payment gateway has already accepted.

        Refunding a completed order revokes its eSIM: the artifacts are
        cleared and the ICCID is carried on the event for the audit trail.
        """
        amount = self.assert_refundable(amount)
        self._assert_can_transition(OrderStatus.REFUNDED)
        now = datetime.now(UTC)
        payment_status = PaymentStatus.PARTIALLY_REFUNDED if amount < self.amount else PaymentStatus.REFUNDED
        revoked_iccid = self.esim_iccid
        with atomic_change(self):
            self.esim_iccid = None
            self.esim_activation_code = None
            self.esim_qr_code = None
            self.status = OrderStatus.REFUNDED.value
            self.payment_status = payment_status.value
            self.refund_amount = amount
            self.refund_reason = reason
            self.refunded_at = now
            self.updated_at = now
        self.raise_(
            OrderRefunded(
                order_id=str(self.id),
                amount=amount,
                reason=reason,
                payment_status=payment_status.value,
                gateway_refund_id=gateway_refund_id,
                revoked_iccid=revoked_iccid,
                refunded_at=now,
            )
        )


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------
@provisioning.repository(part_of=Order)
class OrderRepository:
    def find_by_status(self, *statuses: OrderStatus) -> list:
        orders = []
        for status in statuses:
            orders.extend(self._dao.query.filter(status=status.value).all().items)
        return orders

    def find_by_correlation_fragment(self, fragment: str) -> list:
        """Loose match used when no correlation record exists for a callback."""
        if not fragment:
            return []
        return self._dao.query.filter(correlation_id__contains=fragment).all().items

    def find_by_iccid(self, iccid: str):
        return self._dao.query.filter(esim_iccid=iccid).all().first
