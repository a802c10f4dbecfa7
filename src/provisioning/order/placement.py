"""Order intake: placing an order and confirming its payment."""

from protean import handle
from protean.fields import Float, Identifier, Integer, String
from protean.utils.globals import current_domain

from provisioning.domain import provisioning
from provisioning.order.order import Order


@provisioning.command(part_of="Order")
class PlaceOrder:
    """Register an eSIM order awaiting payment."""

    order_id = Identifier()
    provider_sku = String(required=True, max_length=255)
    quantity = Integer(default=1)
    amount = Float(required=True)
    currency = String(max_length=3, default="USD")
    customer_email = String(required=True, max_length=254)
    customer_name = String(max_length=200)
    correlation_id = String(max_length=255)


@provisioning.command(part_of="Order")
class ConfirmPayment:
    """The payment gateway captured the customer's payment."""

    order_id = Identifier(required=True)
    payment_reference = String(max_length=255)


@provisioning.command_handler(part_of=Order)
class OrderIntakeHandler:
    @handle(PlaceOrder)
    def place_order(self, command):
        order = Order.place(
            provider_sku=command.provider_sku,
            quantity=command.quantity,
            amount=command.amount,
            currency=command.currency,
            customer_email=command.customer_email,
            customer_name=command.customer_name,
            correlation_id=command.correlation_id,
            order_id=command.order_id,
        )
        current_domain.repository_for(Order).add(order)
        return str(order.id)

    @handle(ConfirmPayment)
    def confirm_payment(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        order.confirm_payment(command.payment_reference)
        repo.add(order)
