"""Application tests for supplier callback reconciliation."""

from datetime import UTC, datetime, timedelta

from protean import current_domain
from provisioning.audit.automation_log import entries_for
from provisioning.notify import get_notifier
from provisioning.order.orchestrator import FulfillmentOrchestrator
from provisioning.order.order import Order, OrderStatus
from provisioning.reconciliation.callbacks import parse_callback
from provisioning.reconciliation.pending_order import PendingAsyncOrder, PendingStatus
from provisioning.reconciliation import reconciler as reconciler_module
from provisioning.reconciliation.reconciler import find_callback_target, reconcile_callback
from provisioning.supplier.port import PurchaseResult
from provisioning.sweeper.stuck_orders import sweep_stuck_orders


def _order(order_id):
    return current_domain.repository_for(Order).get(order_id)


def _pending(request_id):
    return current_domain.repository_for(PendingAsyncOrder).find_latest(request_id)


def _completed_payload(request_id):
    return {
        "request_id": request_id,
        "status": "completed",
        "data": {
            "id": 5512,
            "sims": [
                {
                    "iccid": "8944500000000000042",
                    "lpa": "LPA:1$smdp.example$R42",
                    "qrcode_url": "https://qr.example/r42.png",
                }
            ],
        },
    }


def _failed_payload(request_id, message="stock_exhausted"):
    return {"request_id": request_id, "status": "failed", "error": {"message": message}}


def _parked_order(make_provider, make_paid_order, request_id="r-42"):
    supplier = make_provider("P1")
    supplier.script(PurchaseResult.accepted(request_id))
    order_id = make_paid_order()
    FulfillmentOrchestrator().fulfill(order_id)
    return order_id


class TestLookup:
    def test_found_through_pending_record(self, make_provider, make_paid_order):
        order_id = _parked_order(make_provider, make_paid_order)
        order, pending = find_callback_target("r-42")
        assert str(order.id) == order_id
        assert pending.request_id == "r-42"

    def test_found_through_correlation_fragment(self, make_paid_order):
        order_id = make_paid_order(correlation_id="shop-1001-req-77")
        repo = current_domain.repository_for(Order)
        order = repo.get(order_id)
        order.start_fulfillment()
        order.accept_async("P1", "req-77")
        repo.add(order)

        order, pending = find_callback_target("req-77")

        assert str(order.id) == order_id
        assert pending is None

    def test_fragment_never_matches_order_not_sent_to_a_supplier(self, make_paid_order):
        order_id = make_paid_order(correlation_id="shop-1001-req-77")

        assert find_callback_target("req-77") is None
        result = reconcile_callback("airalo", parse_callback(_completed_payload("req-77")))
        assert not result.matched
        assert _order(order_id).status == OrderStatus.PAYMENT_RECEIVED.value

    def test_unknown_request(self):
        assert find_callback_target("r-unknown") is None


class TestSuccessCallback:
    def test_completes_parked_order(self, make_provider, make_paid_order):
        order_id = _parked_order(make_provider, make_paid_order)

        result = reconcile_callback("airalo", parse_callback(_completed_payload("r-42")))

        order = _order(order_id)
        assert result.matched and result.applied
        assert order.status == OrderStatus.COMPLETED.value
        assert order.esim_iccid == "8944500000000000042"
        assert order.provider_used == "P1"
        assert order.provider_order_id == "5512"
        assert _pending("r-42").status == PendingStatus.COMPLETED.value

    def test_delivers_esim(self, make_provider, make_paid_order):
        order_id = _parked_order(make_provider, make_paid_order)
        reconcile_callback("airalo", parse_callback(_completed_payload("r-42")))
        assert get_notifier().deliveries[-1]["order_id"] == order_id

    def test_audit_marks_webhook_source(self, make_provider, make_paid_order):
        order_id = _parked_order(make_provider, make_paid_order)
        reconcile_callback("airalo", parse_callback(_completed_payload("r-42")))
        entry = next(e for e in entries_for(order_id) if e.step_name == "order_completed")
        assert entry.details_dict["source"] == "webhook_received"
        assert entry.details_dict["request_id"] == "r-42"


class TestFailureCallback:
    def test_fails_order_with_supplier_message(self, make_provider, make_paid_order):
        order_id = _parked_order(make_provider, make_paid_order)

        reconcile_callback("airalo", parse_callback(_failed_payload("r-42")))

        order = _order(order_id)
        assert order.status == OrderStatus.FAILED.value
        assert order.error_message == "stock_exhausted"
        assert _pending("r-42").status == PendingStatus.FAILED.value
        assert get_notifier().alerts[-1]["title"] == "Async eSIM order failed"


class TestIdempotency:
    def test_replayed_success_changes_nothing(self, make_provider, make_paid_order):
        order_id = _parked_order(make_provider, make_paid_order)
        reconcile_callback("airalo", parse_callback(_completed_payload("r-42")))
        entries_before = len(entries_for(order_id))
        completed_at = _order(order_id).completed_at

        result = reconcile_callback("airalo", parse_callback(_completed_payload("r-42")))

        assert result.matched
        assert not result.applied
        assert result.order_id == order_id
        assert _order(order_id).completed_at == completed_at
        assert len(entries_for(order_id)) == entries_before
        assert len(get_notifier().deliveries) == 1

    def test_failure_after_success_ignored(self, make_provider, make_paid_order):
        order_id = _parked_order(make_provider, make_paid_order)
        reconcile_callback("airalo", parse_callback(_completed_payload("r-42")))
        reconcile_callback("airalo", parse_callback(_failed_payload("r-42")))
        assert _order(order_id).status == OrderStatus.COMPLETED.value

    def test_concurrent_duplicate_delivery_reports_success(self, make_provider, make_paid_order, monkeypatch):
        order_id = _parked_order(make_provider, make_paid_order)
        # This delivery looked the order up before the duplicate committed
        stale_lookups = [find_callback_target("r-42")]
        reconcile_callback("airalo", parse_callback(_completed_payload("r-42")))
        entries_before = len(entries_for(order_id))
        lookup = reconciler_module.find_callback_target
        monkeypatch.setattr(
            reconciler_module,
            "find_callback_target",
            lambda request_id: stale_lookups.pop() if stale_lookups else lookup(request_id),
        )

        result = reconcile_callback("airalo", parse_callback(_completed_payload("r-42")))

        assert result.matched
        assert not result.applied
        assert result.order_id == order_id
        assert _order(order_id).status == OrderStatus.COMPLETED.value
        assert len(entries_for(order_id)) == entries_before
        assert len(get_notifier().deliveries) == 1

    def test_unmatched_callback(self):
        result = reconcile_callback("airalo", parse_callback(_failed_payload("r-404")))
        assert not result.matched


class TestLateCallback:
    def test_callback_after_sweep_reclaims_order(self, make_provider, make_paid_order):
        order_id = _parked_order(make_provider, make_paid_order)
        sweep_stuck_orders(as_of=datetime.now(UTC) + timedelta(minutes=10))
        assert _order(order_id).status == OrderStatus.PENDING.value

        result = reconcile_callback("airalo", parse_callback(_completed_payload("r-42")))

        assert result.applied
        order = _order(order_id)
        assert order.status == OrderStatus.COMPLETED.value
        assert order.error_message is None
