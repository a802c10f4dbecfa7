"""Tests for the Airalo adapter against a mocked HTTP transport."""

import json
from urllib.parse import parse_qs

import httpx
from provisioning.supplier.airalo_adapter import AiraloSupplier
from provisioning.supplier.port import ErrorType, PurchaseOutcome

API = "https://airalo.test/v2"


def _token_response():
    return httpx.Response(200, json={"data": {"access_token": "tok-1", "expires_in": 3600}})


def _supplier(handler, webhook_url=None):
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return AiraloSupplier("client", "secret", api_url=API, webhook_url=webhook_url, client=client)


def _purchase(supplier):
    return supplier.purchase(
        provider_sku="kallur-digital-7days-1gb",
        quantity=1,
        customer_email="a@example.com",
        correlation_id="esim-ord_1",
        timeout=5.0,
    )


class TestSynchronousOrder:
    def test_returns_artifacts(self):
        seen = []

        def handler(request):
            seen.append(request)
            if request.url.path.endswith("/token"):
                return _token_response()
            return httpx.Response(
                200,
                json={
                    "data": {
                        "id": 9001,
                        "sims": [
                            {
                                "iccid": "8944465400000000001",
                                "lpa": "LPA:1$lpa.airalo.com$CODE",
                                "qrcode_url": "https://airalo.test/qr.png",
                            }
                        ],
                    }
                },
            )

        result = _purchase(_supplier(handler))

        assert result.outcome == PurchaseOutcome.COMPLETED
        assert result.artifacts.iccid == "8944465400000000001"
        assert result.artifacts.activation_code == "LPA:1$lpa.airalo.com$CODE"
        assert result.provider_order_id == "9001"
        order_request = seen[-1]
        assert order_request.url.path == "/v2/orders"
        assert order_request.headers["Authorization"] == "Bearer tok-1"
        form = parse_qs(order_request.content.decode())
        assert form["package_id"] == ["kallur-digital-7days-1gb"]
        assert "esim-ord_1" in form["description"][0]

    def test_token_reused(self):
        token_calls = []

        def handler(request):
            if request.url.path.endswith("/token"):
                token_calls.append(1)
                return _token_response()
            return httpx.Response(200, json={"data": {"sims": [{"iccid": "89", "qrcode": "LPA:1$a$b"}]}})

        supplier = _supplier(handler)
        _purchase(supplier)
        _purchase(supplier)
        assert len(token_calls) == 1

    def test_empty_sims_is_invalid_response(self):
        def handler(request):
            if request.url.path.endswith("/token"):
                return _token_response()
            return httpx.Response(200, json={"data": {"sims": []}})

        result = _purchase(_supplier(handler))
        assert result.error_type == ErrorType.INVALID_RESPONSE
        assert not result.retryable

    def test_sim_without_iccid_fails_permanently(self):
        def handler(request):
            if request.url.path.endswith("/token"):
                return _token_response()
            return httpx.Response(200, json={"data": {"id": 9002, "sims": [{"lpa": "LPA:1$a$b"}]}})

        result = _purchase(_supplier(handler))
        assert result.outcome == PurchaseOutcome.FAILED
        assert result.error_type == ErrorType.INVALID_RESPONSE
        assert not result.retryable

    def test_non_json_order_body(self):
        def handler(request):
            if request.url.path.endswith("/token"):
                return _token_response()
            return httpx.Response(200, content=b"<html>maintenance</html>")

        result = _purchase(_supplier(handler))
        assert result.error_type == ErrorType.INVALID_RESPONSE

    def test_non_json_token_body(self):
        def handler(request):
            return httpx.Response(200, content=b"not json")

        result = _purchase(_supplier(handler))
        assert result.outcome == PurchaseOutcome.FAILED
        assert result.error_type == ErrorType.INVALID_RESPONSE


class TestAsynchronousOrder:
    def test_returns_request_id(self):
        seen = []

        def handler(request):
            seen.append(request)
            if request.url.path.endswith("/token"):
                return _token_response()
            return httpx.Response(200, json={"data": {"request_id": "r-42"}})

        result = _purchase(_supplier(handler, webhook_url="https://shop.test/webhooks/airalo"))

        assert result.outcome == PurchaseOutcome.ACCEPTED
        assert result.request_id == "r-42"
        assert seen[-1].url.path == "/v2/orders-async"
        assert parse_qs(seen[-1].content.decode())["webhook_url"] == ["https://shop.test/webhooks/airalo"]


class TestErrors:
    def _with_status(self, status, body=None):
        def handler(request):
            if request.url.path.endswith("/token"):
                return _token_response()
            return httpx.Response(status, content=json.dumps(body or {}).encode())

        return _purchase(_supplier(handler))

    def test_server_error_is_retryable(self):
        result = self._with_status(503)
        assert result.error_type == ErrorType.PROVIDER_ERROR
        assert result.retryable

    def test_rate_limit(self):
        assert self._with_status(429).error_type == ErrorType.RATE_LIMIT

    def test_validation_error_message(self):
        result = self._with_status(422, {"meta": {"message": "Package not found"}})
        assert result.error_type == ErrorType.VALIDATION
        assert result.error_message == "Package not found"
        assert not result.retryable

    def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        result = _purchase(_supplier(handler))
        assert result.error_type == ErrorType.TIMEOUT

    def test_network_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        assert _purchase(_supplier(handler)).error_type == ErrorType.NETWORK_ERROR

    def test_bad_credentials(self):
        def handler(request):
            return httpx.Response(401, json={"meta": {"message": "Unauthenticated"}})

        result = _purchase(_supplier(handler))
        assert result.error_type == ErrorType.AUTHENTICATION


class TestUsageAndHealth:
    def test_usage(self):
        def handler(request):
            if request.url.path.endswith("/token"):
                return _token_response()
            assert request.url.path == "/v2/sims/8944/usage"
            return httpx.Response(200, json={"data": {"remaining": 512, "total": 1024, "status": "ACTIVE"}})

        usage = _supplier(handler).get_sim_usage("8944", timeout=5.0)
        assert usage.success
        assert usage.remaining_mb == 512
        assert usage.status == "ACTIVE"

    def test_usage_rate_limited(self):
        def handler(request):
            if request.url.path.endswith("/token"):
                return _token_response()
            return httpx.Response(429)

        usage = _supplier(handler).get_sim_usage("8944", timeout=5.0)
        assert not usage.success
        assert usage.error_type == ErrorType.RATE_LIMIT

    def test_health_check(self):
        assert _supplier(lambda request: _token_response()).health_check() is True
        assert _supplier(lambda request: httpx.Response(500)).health_check() is False

    def test_usage_non_json_body(self):
        def handler(request):
            if request.url.path.endswith("/token"):
                return _token_response()
            return httpx.Response(200, content=b"oops")

        usage = _supplier(handler).get_sim_usage("8944", timeout=5.0)
        assert not usage.success
        assert usage.error_type == ErrorType.INVALID_RESPONSE

    def test_health_check_with_unusable_token_body(self):
        assert _supplier(lambda request: httpx.Response(200, content=b"oops")).health_check() is False
