"""BDD tests for admin retry and refund."""

from protean import current_domain
from protean.exceptions import ValidationError
from provisioning.order.administration import RefundOrder, RetryOrder
from provisioning.order.order import Order
from pytest_bdd import parsers, scenarios, then, when

scenarios("features/order_administration.feature")


# ---------------------------------------------------------------------------
# When steps
# ---------------------------------------------------------------------------
@when(parsers.cfparse('a refund is requested for "{order_id}"'))
def refund_requested(error, order_id):
    try:
        current_domain.process(RefundOrder(order_id=order_id), asynchronous=False)
    except ValidationError as exc:
        error["exc"] = exc


@when(parsers.cfparse('an admin retries "{order_id}"'))
def admin_retries(error, order_id):
    try:
        current_domain.process(RetryOrder(order_id=order_id), asynchronous=False)
    except ValidationError as exc:
        error["exc"] = exc


# ---------------------------------------------------------------------------
# Then steps
# ---------------------------------------------------------------------------
@then(parsers.cfparse('the order "{order_id}" no longer carries an eSIM'))
def order_has_no_esim(order_id):
    assert not current_domain.repository_for(Order).get(order_id).has_artifacts
