"""Integration tests for order endpoints."""

from protean import current_domain
from provisioning.order.order import Order
from provisioning.supplier.port import ErrorType


def _place(client, **overrides):
    body = {"provider_sku": "kr-7days-3gb", "amount": 12.5, "customer_email": "api@example.com"}
    body.update(overrides)
    response = client.post("/orders", json=body)
    assert response.status_code == 201
    return response.json()["order_id"]


def _paid(client, **overrides):
    order_id = _place(client, **overrides)
    response = client.post(f"/orders/{order_id}/payment", json={"payment_reference": "pi_api"})
    assert response.status_code == 200
    return order_id


def _failed(client, make_provider):
    supplier = make_provider("P1", max_retries=1)
    supplier.configure(mode="fail", error_type=ErrorType.VALIDATION, error_message="Invalid package")
    order_id = _paid(client)
    client.post(f"/orders/{order_id}/fulfill")
    return order_id


class TestPlaceAndPay:
    def test_place_order(self, client):
        order_id = _place(client, customer_name="Api User")
        order = current_domain.repository_for(Order).get(order_id)
        assert order.status == "pending"
        assert order.customer_name == "Api User"

    def test_invalid_amount(self, client):
        response = client.post("/orders", json={"provider_sku": "x", "amount": -5, "customer_email": "a@example.com"})
        assert response.status_code == 422

    def test_payment_for_unknown_order(self, client):
        response = client.post("/orders/missing/payment", json={"payment_reference": "pi_1"})
        assert response.status_code == 404


class TestFulfill:
    def test_fulfill_completes(self, client, make_provider):
        make_provider("P1")
        order_id = _paid(client)

        response = client.post(f"/orders/{order_id}/fulfill")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "completed"
        assert data["provider_id"] == "P1"

        order = client.get(f"/orders/{order_id}").json()
        assert order["esim_iccid"].startswith("8901")
        assert order["error_message"] is None

    def test_async_fulfill_reports_request_id(self, client, make_provider):
        make_provider("P1").configure(mode="async")
        order_id = _paid(client)
        data = client.post(f"/orders/{order_id}/fulfill").json()
        assert data["status"] == "fulfillment_started"
        assert data["request_id"].startswith("fake_req_")

    def test_unpaid_order_skipped(self, client, make_provider):
        make_provider("P1")
        order_id = _place(client)
        assert client.post(f"/orders/{order_id}/fulfill").json()["skipped"] is True


class TestViews:
    def test_admin_view_shows_error(self, client, make_provider):
        order_id = _failed(client, make_provider)
        data = client.get(f"/orders/{order_id}").json()
        assert data["status"] == "failed"
        assert data["error_message"] == "Invalid package"

    def test_customer_view_hides_provider_failure(self, client, make_provider):
        supplier = make_provider("P1", max_retries=1)
        supplier.configure(mode="fail", error_type=ErrorType.PROVIDER_ERROR, error_message="HTTP 503 upstream")
        order_id = _paid(client)
        client.post(f"/orders/{order_id}/fulfill")

        data = client.get(f"/orders/{order_id}/status").json()

        assert data == {"order_id": order_id, "status": "processing"}

    def test_logs(self, client, make_provider):
        make_provider("P1")
        order_id = _paid(client)
        client.post(f"/orders/{order_id}/fulfill")
        steps = [entry["step_name"] for entry in client.get(f"/orders/{order_id}/logs").json()]
        assert "order_completed" in steps

    def test_unknown_order(self, client):
        assert client.get("/orders/missing").status_code == 404


class TestRetryEndpoint:
    def test_retry_failed_order(self, client, make_provider):
        order_id = _failed(client, make_provider)
        response = client.post(f"/orders/{order_id}/retry")
        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "order_id": order_id,
            "previous_status": "failed",
            "status": "pending",
        }

    def test_retry_not_allowed_lists_statuses(self, client):
        order_id = _place(client)
        response = client.post(f"/orders/{order_id}/retry")
        assert response.status_code == 400
        detail = response.json()["detail"]
        assert detail["error"] == "Cannot retry order with status 'pending'"
        assert detail["allowed_statuses"] == [
            "failed",
            "provider_failed",
            "pending_manual_fulfillment",
            "fulfillment_started",
            "payment_received",
        ]

    def test_retry_unknown_order(self, client):
        assert client.post("/orders/missing/retry").status_code == 404


class TestRefundEndpoint:
    def test_refund_without_body(self, client, make_provider):
        order_id = _failed(client, make_provider)
        response = client.post(f"/orders/{order_id}/refund")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "refunded"
        assert data["payment_status"] == "refunded"
        assert data["refund_amount"] == 12.5

    def test_partial_refund(self, client, make_provider):
        order_id = _failed(client, make_provider)
        response = client.post(f"/orders/{order_id}/refund", json={"amount": 2.5, "reason": "other"})
        assert response.json()["payment_status"] == "partially_refunded"

    def test_refund_completed_order(self, client, make_provider):
        make_provider("P1")
        order_id = _paid(client)
        client.post(f"/orders/{order_id}/fulfill")

        response = client.post(f"/orders/{order_id}/refund", json={"reason": "requested_by_customer"})

        assert response.status_code == 200
        assert response.json()["status"] == "refunded"
        assert client.get(f"/orders/{order_id}").json()["esim_iccid"] is None

    def test_refund_unpaid_order(self, client):
        order_id = _place(client)
        response = client.post(f"/orders/{order_id}/refund")
        assert response.status_code == 400
        assert client.get(f"/orders/{order_id}").json()["status"] == "pending"


class TestBulkRetryEndpoint:
    def test_reports_each_order(self, client, make_provider):
        failed_id = _failed(client, make_provider)
        pending_id = _place(client)

        response = client.post("/orders/bulk-retry", json={"order_ids": [failed_id, pending_id, "missing"]})

        assert response.status_code == 200
        data = response.json()
        assert data["message"] == "Retried 1 of 3 orders"
        assert (data["total"], data["retried"], data["skipped"], data["failed"]) == (3, 1, 1, 1)
        assert data["details"][0] == {"order_id": failed_id, "status": "retried", "reason": None}
        assert data["details"][1]["reason"] == "Current status 'pending' cannot be retried"
        assert client.get(f"/orders/{failed_id}").json()["status"] == "pending"

    def test_empty_list_rejected(self, client):
        assert client.post("/orders/bulk-retry", json={"order_ids": []}).status_code == 400

    def test_missing_body_rejected(self, client):
        assert client.post("/orders/bulk-retry").status_code == 422
