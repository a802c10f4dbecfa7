"""Integration tests for the eSIM usage endpoint."""

from protean import current_domain
from provisioning.config import configure_settings
from provisioning.order.orchestrator import FulfillmentOrchestrator
from provisioning.order.order import Order
from provisioning.supplier.port import ErrorType


def _provisioned(make_provider, make_paid_order):
    supplier = make_provider("P1")
    order_id = make_paid_order()
    FulfillmentOrchestrator().fulfill(order_id)
    return current_domain.repository_for(Order).get(order_id).esim_iccid, supplier


class TestUsageEndpoint:
    def test_usage(self, client, make_provider, make_paid_order):
        iccid, _ = _provisioned(make_provider, make_paid_order)
        response = client.get(f"/esims/{iccid}/usage")
        assert response.status_code == 200
        data = response.json()
        assert data["remaining_mb"] == 2048.0
        assert data["cached"] is False

    def test_unknown_iccid(self, client):
        assert client.get("/esims/8900000000000000000/usage").status_code == 404

    def test_supplier_error(self, client, make_provider, make_paid_order):
        iccid, supplier = _provisioned(make_provider, make_paid_order)
        supplier.configure(mode="fail", error_type=ErrorType.PROVIDER_ERROR, error_message="HTTP 500")
        assert client.get(f"/esims/{iccid}/usage").status_code == 502

    def test_quota_exhausted(self, client, make_provider, make_paid_order):
        iccid, supplier = _provisioned(make_provider, make_paid_order)
        configure_settings(usage_daily_limit=1)
        supplier.configure(mode="fail")
        client.get(f"/esims/{iccid}/usage")
        assert client.get(f"/esims/{iccid}/usage").status_code == 429
