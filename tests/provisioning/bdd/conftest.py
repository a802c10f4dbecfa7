"""Shared BDD fixtures and step definitions for the Provisioning domain."""

import pytest
from protean import current_domain
from provisioning.config import get_settings
from provisioning.order.orchestrator import FulfillmentOrchestrator
from provisioning.order.order import Order
from provisioning.order.placement import PlaceOrder
from provisioning.provider.registry import get_registry
from provisioning.reconciliation.pending_order import PendingAsyncOrder
from provisioning.supplier.port import ErrorType, PurchaseResult
from pytest_bdd import given, parsers, then, when


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------
@pytest.fixture()
def error():
    """Container for captured validation errors."""
    return {"exc": None}


@pytest.fixture()
def suppliers():
    """Fake supplier per provider id."""
    return {}


@pytest.fixture()
def outcomes():
    return {}


def _order(order_id):
    return current_domain.repository_for(Order).get(order_id)


# ---------------------------------------------------------------------------
# Given steps
# ---------------------------------------------------------------------------
@given(parsers.cfparse('a supplier "{provider_id}" with priority {priority:d}'))
def supplier_with_priority(make_provider, suppliers, provider_id, priority):
    suppliers[provider_id] = make_provider(provider_id, priority=priority)


@given(parsers.cfparse('supplier "{provider_id}" keeps failing with "{error_type}"'))
def supplier_keeps_failing(suppliers, provider_id, error_type):
    suppliers[provider_id].configure(mode="fail", error_type=ErrorType(error_type), error_message=error_type)


@given(parsers.cfparse('supplier "{provider_id}" accepts orders asynchronously as "{request_id}"'))
def supplier_accepts_async(suppliers, provider_id, request_id):
    suppliers[provider_id].script(PurchaseResult.accepted(request_id))


@given(parsers.cfparse('the circuit of supplier "{provider_id}" is open'))
def circuit_is_open(provider_id):
    registry = get_registry()
    for _ in range(get_settings().circuit_breaker_threshold):
        registry.record_failure(provider_id)


@given(parsers.cfparse('a paid order "{order_id}"'))
def paid_order(make_paid_order, order_id):
    make_paid_order(order_id=order_id)


@given(parsers.cfparse('an unpaid order "{order_id}"'))
def unpaid_order(order_id):
    current_domain.process(
        PlaceOrder(order_id=order_id, provider_sku="kr-7days-3gb", amount=12.5, customer_email="bdd@example.com"),
        asynchronous=False,
    )


@given(parsers.cfparse('the order "{order_id}" is fulfilled'))
@when(parsers.cfparse('the order "{order_id}" is fulfilled'))
def order_is_fulfilled(outcomes, order_id):
    outcomes[order_id] = FulfillmentOrchestrator().fulfill(order_id)


# ---------------------------------------------------------------------------
# Then steps
# ---------------------------------------------------------------------------
@then(parsers.cfparse('the order "{order_id}" is "{status}"'))
def order_has_status(order_id, status):
    assert _order(order_id).status == status


@then(parsers.cfparse('the order "{order_id}" was provisioned by "{provider_id}"'))
def order_provisioned_by(order_id, provider_id):
    assert _order(order_id).provider_used == provider_id


@then(parsers.cfparse('the order "{order_id}" carries an error message'))
def order_carries_error(order_id):
    assert _order(order_id).error_message


@then(parsers.cfparse('the order "{order_id}" has error message "{message}"'))
def order_has_error_message(order_id, message):
    assert _order(order_id).error_message == message


@then(parsers.cfparse('supplier "{provider_id}" was never called'))
def supplier_never_called(suppliers, provider_id):
    assert suppliers[provider_id].calls == []


@then(parsers.cfparse('the pending request "{request_id}" is "{status}"'))
def pending_request_status(request_id, status):
    assert current_domain.repository_for(PendingAsyncOrder).find_latest(request_id).status == status


@then(parsers.cfparse('the request is rejected with "{message}"'))
def request_rejected(error, message):
    assert error["exc"] is not None
    assert message in str(error["exc"])
