import pytest
from protean.integrations.pytest import DomainFixture
from provisioning.config import configure_settings, reset_settings
from provisioning.gateway import reset_gateway
from provisioning.notify import reset_notifier
from provisioning.provider.registry import reset_registry
from provisioning.supplier import reset_suppliers


@pytest.fixture(scope="session")
def provisioning_bed():
    from provisioning.domain import provisioning

    bed = DomainFixture(provisioning)
    bed.setup()
    yield bed
    bed.teardown()


@pytest.fixture(autouse=True)
def _ctx(provisioning_bed):
    with provisioning_bed.domain_context():
        yield


@pytest.fixture(autouse=True)
def _fresh_adapters():
    """Every test starts with fresh fakes, caches and fast retries."""
    reset_settings()
    configure_settings(retry_backoff_seconds=0)
    reset_registry()
    reset_suppliers()
    reset_gateway()
    reset_notifier()
    yield
    reset_registry()
    reset_suppliers()
    reset_settings()


@pytest.fixture()
def make_provider():
    """Register a provider backed by its own FakeSupplier and return the fake."""
    from protean import current_domain
    from provisioning.provider.administration import RegisterProvider
    from provisioning.supplier import register_supplier
    from provisioning.supplier.fake_adapter import FakeSupplier

    def _make(provider_id="P1", priority=1, **overrides):
        current_domain.process(
            RegisterProvider(
                provider_id=provider_id,
                name=overrides.pop("name", f"Supplier {provider_id}"),
                adapter=overrides.pop("adapter", "fake"),
                priority=priority,
                **overrides,
            ),
            asynchronous=False,
        )
        supplier = FakeSupplier()
        register_supplier(provider_id, supplier)
        return supplier

    return _make


@pytest.fixture()
def make_paid_order():
    """Place an order and confirm its payment; returns the order id."""
    from protean import current_domain
    from provisioning.order.placement import ConfirmPayment, PlaceOrder

    def _make(order_id=None, **overrides):
        defaults = {
            "provider_sku": "kr-7days-3gb",
            "amount": 12.5,
            "currency": "USD",
            "customer_email": "traveller@example.com",
        }
        defaults.update(overrides)
        if order_id:
            defaults["order_id"] = order_id
        order_id = current_domain.process(PlaceOrder(**defaults), asynchronous=False)
        current_domain.process(
            ConfirmPayment(order_id=order_id, payment_reference=f"pi_{order_id}"),
            asynchronous=False,
        )
        return order_id

    return _make
