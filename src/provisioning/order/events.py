"""Order domain events: immutable facts about an order's fulfillment.

Past tense, versioned, raised by the Order aggregate on every state change.
"""

from protean.fields import DateTime, Float, Identifier, Integer, String, Text

from provisioning.domain import provisioning


@provisioning.event(part_of="Order")
class OrderPlaced:
    """A customer placed an eSIM order."""

    __version__ = 1

    order_id = Identifier(required=True)
    correlation_id = String(required=True)
    provider_sku = String(required=True)
    quantity = Integer(required=True)
    amount = Float(required=True)
    currency = String(required=True)
    placed_at = DateTime(required=True)


@provisioning.event(part_of="Order")
class PaymentConfirmed:
    """The payment gateway confirmed payment for the order."""

    __version__ = 1

    order_id = Identifier(required=True)
    payment_reference = String()
    confirmed_at = DateTime(required=True)


@provisioning.event(part_of="Order")
class FulfillmentStarted:
    """The orchestrator claimed the order for a provisioning attempt."""

    __version__ = 1

    order_id = Identifier(required=True)
    claim_token = String(required=True)
    started_at = DateTime(required=True)


@provisioning.event(part_of="Order")
class ProvisioningAccepted:
    """A supplier accepted the order asynchronously and will call back."""

    __version__ = 1

    order_id = Identifier(required=True)
    provider_id = String(required=True)
    request_id = String(required=True)
    accepted_at = DateTime(required=True)


@provisioning.event(part_of="Order")
class OrderFulfilled:
    """The eSIM was provisioned and its artifacts copied onto the order."""

    __version__ = 1

    order_id = Identifier(required=True)
    provider_id = String(required=True)
    provider_order_id = String()
    iccid = String(required=True)
    completed_at = DateTime(required=True)


@provisioning.event(part_of="Order")
class ProviderFailed:
    """Every eligible supplier exhausted its retry budget."""

    __version__ = 1

    order_id = Identifier(required=True)
    provider_id = String()
    reason = Text(required=True)
    failed_at = DateTime(required=True)


@provisioning.event(part_of="Order")
class FulfillmentFailed:
    """Provisioning failed permanently (non-retryable error or no supplier)."""

    __version__ = 1

    order_id = Identifier(required=True)
    provider_id = String()
    reason = Text(required=True)
    failed_at = DateTime(required=True)


@provisioning.event(part_of="Order")
class ManualFulfillmentRequested:
    """The order was handed over to staff for manual provisioning."""

    __version__ = 1

    order_id = Identifier(required=True)
    reason = Text(required=True)
    requested_at = DateTime(required=True)


@provisioning.event(part_of="Order")
class FulfillmentRequeued:
    """The order was reset to pending for another attempt."""

    __version__ = 1

    order_id = Identifier(required=True)
    previous_status = String(required=True)
    reason = Text(required=True)
    retry_count = Integer(required=True)
    requeued_at = DateTime(required=True)


@provisioning.event(part_of="Order")
class OrderRefunded:
    """The payment was refunded; the order leaves the fulfillment path for good."""

    __version__ = 1

    order_id = Identifier(required=True)
    amount = Float(required=True)
    reason = String(required=True)
    payment_status = String(required=True)
    gateway_refund_id = String()
    revoked_iccid = String()
    refunded_at = DateTime(required=True)
