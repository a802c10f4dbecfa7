"""FastAPI routes for the Provisioning domain.

Orders, providers, supplier webhooks, scheduled jobs and eSIM usage.
"""

import hmac
import json

from fastapi import APIRouter, Header, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from protean.exceptions import ValidationError
from protean.utils.globals import current_domain

from provisioning.api.schemas import (
    AutomationLogResponse,
    BulkRetryItemResponse,
    BulkRetryRequest,
    BulkRetryResponse,
    ConfirmPaymentRequest,
    CustomerOrderStatusResponse,
    FulfillmentResponse,
    HealthCheckResponse,
    OrderIdResponse,
    OrderResponse,
    PlaceOrderRequest,
    ProcessPendingResponse,
    ProviderHealthResponse,
    ProviderIdResponse,
    ProviderResponse,
    RefundOrderRequest,
    RefundResponse,
    RegisterProviderRequest,
    RetryResponse,
    StatusResponse,
    SweepResponse,
    UpdateProviderRequest,
    UsageResponse,
    WebhookResponse,
)
from provisioning.audit.automation_log import entries_for
from provisioning.config import get_settings
from provisioning.order.administration import BulkRetryOutcome, RefundOrder, RetryOrder, bulk_retry_orders
from provisioning.order.orchestrator import FulfillmentOrchestrator, process_pending_orders
from provisioning.order.order import ADMIN_RETRY_STATUSES, Order
from provisioning.order.placement import ConfirmPayment, PlaceOrder
from provisioning.provider.administration import RegisterProvider, ResetCircuitBreaker, UpdateProvider
from provisioning.provider.health import HealthStatus, run_provider_health_check
from provisioning.provider.registry import get_registry
from provisioning.reconciliation.callbacks import MalformedCallback, parse_callback
from provisioning.reconciliation.reconciler import reconcile_callback
from provisioning.reconciliation.webhooks import WEBHOOK_SCHEMES, verify_webhook
from provisioning.sweeper.stuck_orders import sweep_stuck_orders
from provisioning.usage.usage import UsageQuotaExceeded, get_esim_usage


def _order_response(order) -> OrderResponse:
    return OrderResponse(
        order_id=str(order.id),
        status=order.status,
        payment_status=order.payment_status,
        amount=order.amount,
        currency=order.currency,
        customer_email=order.customer_email,
        provider_sku=order.provider_sku,
        quantity=order.quantity,
        correlation_id=order.correlation_id,
        provider_used=order.provider_used,
        provider_order_id=order.provider_order_id,
        esim_iccid=order.esim_iccid,
        esim_activation_code=order.esim_activation_code,
        esim_qr_code=order.esim_qr_code,
        retry_count=order.retry_count or 0,
        error_message=order.error_message,
        refund_amount=order.refund_amount,
        created_at=order.created_at,
        updated_at=order.updated_at,
        completed_at=order.completed_at,
    )


def _fulfillment_response(outcome) -> FulfillmentResponse:
    return FulfillmentResponse(
        order_id=outcome.order_id,
        status=outcome.status,
        provider_id=outcome.provider_id,
        request_id=outcome.request_id,
        skipped=outcome.skipped,
    )


# ---------------------------------------------------------------------------
# Order Router
# ---------------------------------------------------------------------------
order_router = APIRouter(prefix="/orders", tags=["orders"])


@order_router.post("", status_code=201, response_model=OrderIdResponse)
async def place_order(body: PlaceOrderRequest) -> OrderIdResponse:
    """Register an eSIM order awaiting payment."""
    command = PlaceOrder(**body.model_dump(exclude_none=True))
    order_id = current_domain.process(command, asynchronous=False)
    return OrderIdResponse(order_id=order_id)


@order_router.post("/{order_id}/payment", response_model=StatusResponse)
async def confirm_payment(order_id: str, body: ConfirmPaymentRequest) -> StatusResponse:
    """Record the payment gateway's confirmation."""
    command = ConfirmPayment(order_id=order_id, payment_reference=body.payment_reference)
    current_domain.process(command, asynchronous=False)
    return StatusResponse(status="payment_received")


@order_router.post("/{order_id}/fulfill", response_model=FulfillmentResponse)
def fulfill_order(order_id: str) -> FulfillmentResponse:
    """Run one provisioning attempt for a paid order."""
    outcome = FulfillmentOrchestrator().fulfill(order_id)
    return _fulfillment_response(outcome)


@order_router.get("/{order_id}", response_model=OrderResponse)
async def get_order(order_id: str) -> OrderResponse:
    """Admin view of an order, including error details."""
    order = current_domain.repository_for(Order).get(order_id)
    return _order_response(order)


@order_router.get("/{order_id}/status", response_model=CustomerOrderStatusResponse)
async def get_customer_status(order_id: str) -> CustomerOrderStatusResponse:
    """Customer view: an opaque status, never internal error detail."""
    order = current_domain.repository_for(Order).get(order_id)
    return CustomerOrderStatusResponse(order_id=str(order.id), status=order.customer_status)


@order_router.get("/{order_id}/logs", response_model=list[AutomationLogResponse])
async def get_order_logs(order_id: str) -> list[AutomationLogResponse]:
    """Audit trail of every automated step taken for the order."""
    current_domain.repository_for(Order).get(order_id)
    return [
        AutomationLogResponse(
            step_name=entry.step_name,
            status=entry.status,
            provider_name=entry.provider_name,
            error_message=entry.error_message,
            error_type=entry.error_type,
            details=entry.details_dict,
            created_at=entry.created_at,
        )
        for entry in entries_for(order_id)
    ]


@order_router.post("/{order_id}/retry", response_model=RetryResponse)
async def retry_order(order_id: str) -> RetryResponse:
    """Reset a failed or stuck order to pending."""
    command = RetryOrder(order_id=order_id, initiated_by="admin")
    try:
        previous_status = current_domain.process(command, asynchronous=False)
    except ValidationError as exc:
        raise HTTPException(
            status_code=400,
            detail={
                "error": exc.messages.get("status", [str(exc)])[0],
                "allowed_statuses": [s.value for s in ADMIN_RETRY_STATUSES],
            },
        ) from exc
    order = current_domain.repository_for(Order).get(order_id)
    return RetryResponse(success=True, order_id=order_id, previous_status=previous_status, status=order.status)


@order_router.post("/bulk-retry", response_model=BulkRetryResponse)
def bulk_retry(body: BulkRetryRequest) -> BulkRetryResponse:
    """Reset many failed or stuck orders to pending; each order succeeds or fails on its own."""
    report = bulk_retry_orders(body.order_ids, initiated_by=body.initiated_by)
    retried = report.count(BulkRetryOutcome.RETRIED)
    return BulkRetryResponse(
        message=f"Retried {retried} of {len(report.items)} orders",
        total=len(report.items),
        retried=retried,
        skipped=report.count(BulkRetryOutcome.SKIPPED),
        failed=report.count(BulkRetryOutcome.FAILED),
        details=[
            BulkRetryItemResponse(order_id=item.order_id, status=item.outcome.value, reason=item.reason)
            for item in report.items
        ],
    )


@order_router.post("/{order_id}/refund", response_model=RefundResponse)
async def refund_order(order_id: str, body: RefundOrderRequest | None = None) -> RefundResponse:
    """Refund an order through the payment gateway."""
    body = body or RefundOrderRequest()
    command = RefundOrder(order_id=order_id, amount=body.amount, reason=body.reason)
    refund_id = current_domain.process(command, asynchronous=False)
    order = current_domain.repository_for(Order).get(order_id)
    return RefundResponse(
        success=True,
        order_id=order_id,
        refund_id=refund_id,
        status=order.status,
        payment_status=order.payment_status,
        refund_amount=order.refund_amount,
    )


# ---------------------------------------------------------------------------
# Provider Router
# ---------------------------------------------------------------------------
provider_router = APIRouter(prefix="/providers", tags=["providers"])


@provider_router.post("", status_code=201, response_model=ProviderIdResponse)
async def register_provider(body: RegisterProviderRequest) -> ProviderIdResponse:
    """Configure a new wholesale supplier."""
    provider_id = current_domain.process(RegisterProvider(**body.model_dump()), asynchronous=False)
    return ProviderIdResponse(provider_id=provider_id)


@provider_router.get("", response_model=list[ProviderResponse])
async def list_providers() -> list[ProviderResponse]:
    """Active providers in priority order, with their effective circuit state."""
    return [
        ProviderResponse(
            provider_id=str(p.id),
            name=p.name,
            adapter=p.adapter,
            priority=p.priority,
            is_active=p.is_active,
            circuit_breaker_state=p.circuit_breaker_state,
            success_rate=p.success_rate,
            consecutive_failures=p.consecutive_failures,
            last_failure_at=p.last_failure_at,
            timeout_ms=p.timeout_ms,
            max_retries=p.max_retries,
        )
        for p in get_registry().providers()
    ]


@provider_router.put("/{provider_id}", response_model=StatusResponse)
async def update_provider(provider_id: str, body: UpdateProviderRequest) -> StatusResponse:
    """Change a supplier's rank, availability or call budget."""
    command = UpdateProvider(provider_id=provider_id, **body.model_dump(exclude_none=True))
    current_domain.process(command, asynchronous=False)
    return StatusResponse(status="updated")


@provider_router.post("/{provider_id}/reset", response_model=StatusResponse)
async def reset_circuit_breaker(provider_id: str) -> StatusResponse:
    """Close the supplier's circuit and clear its failure history."""
    current_domain.process(ResetCircuitBreaker(provider_id=provider_id), asynchronous=False)
    return StatusResponse(status="reset")


# ---------------------------------------------------------------------------
# Webhook Router
# ---------------------------------------------------------------------------
webhook_router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@webhook_router.post("/{supplier}", response_model=WebhookResponse)
async def receive_callback(supplier: str, request: Request) -> WebhookResponse:
    """Apply an asynchronous supplier's provisioning callback."""
    if supplier not in WEBHOOK_SCHEMES:
        raise HTTPException(status_code=404, detail=f"Unknown supplier: {supplier}")

    body = await request.body()
    if not verify_webhook(supplier, body, request.headers):
        raise HTTPException(status_code=401, detail="Invalid webhook signature")

    try:
        notice = parse_callback(json.loads(body))
    except (MalformedCallback, ValueError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    # Customer delivery and operator alerts make blocking HTTP calls
    result = await run_in_threadpool(reconcile_callback, supplier, notice)
    if not result.matched:
        raise HTTPException(status_code=404, detail="Order not found")
    return WebhookResponse(success=True, order_id=result.order_id)


# ---------------------------------------------------------------------------
# Cron Router
# ---------------------------------------------------------------------------
cron_router = APIRouter(prefix="/cron", tags=["cron"])


def _authorize_cron(authorization: str) -> None:
    secret = get_settings().cron_secret
    if not secret or not hmac.compare_digest(authorization, f"Bearer {secret}"):
        raise HTTPException(status_code=401, detail="Unauthorized")


@cron_router.post("/retry-stuck-orders", response_model=SweepResponse)
def retry_stuck_orders(authorization: str = Header(default="")) -> SweepResponse:
    """Scheduled sweep of orders stuck mid-flight."""
    _authorize_cron(authorization)
    report = sweep_stuck_orders()
    return SweepResponse(
        skipped=report.skipped,
        reason=report.reason,
        held_by=report.held_by,
        expires_at=report.expires_at,
        processed=report.processed,
        retried=report.retried,
        failed=report.failed,
        errors=report.errors,
    )


@cron_router.post("/process-pending-orders", response_model=ProcessPendingResponse)
def process_pending(authorization: str = Header(default="")) -> ProcessPendingResponse:
    """Scheduled fulfillment pass over paid orders waiting for a supplier."""
    _authorize_cron(authorization)
    outcomes = process_pending_orders()
    return ProcessPendingResponse(
        processed=len(outcomes),
        outcomes=[_fulfillment_response(o) for o in outcomes],
    )


@cron_router.post("/provider-health-check", response_model=HealthCheckResponse)
def provider_health_check(authorization: str = Header(default="")) -> HealthCheckResponse:
    """Scheduled ping of every active supplier."""
    _authorize_cron(authorization)
    report = run_provider_health_check()
    return HealthCheckResponse(
        skipped=report.skipped,
        reason=report.reason,
        held_by=report.held_by,
        results=[
            ProviderHealthResponse(
                provider_id=r.provider_id,
                name=r.name,
                status=r.status.value,
                response_time_ms=r.response_time_ms,
                error_message=r.error_message,
            )
            for r in report.results
        ],
        summary={s.value: report.count(s) for s in HealthStatus},
        expired_locks=report.expired_locks,
    )


# ---------------------------------------------------------------------------
# eSIM Router
# ---------------------------------------------------------------------------
esim_router = APIRouter(prefix="/esims", tags=["esims"])


@esim_router.get("/{iccid}/usage", response_model=UsageResponse)
def get_usage(iccid: str) -> UsageResponse:
    """Remaining data on a provisioned eSIM."""
    try:
        lookup = get_esim_usage(iccid)
    except UsageQuotaExceeded as exc:
        raise HTTPException(status_code=429, detail=str(exc)) from exc
    usage = lookup.usage
    if not usage.success:
        raise HTTPException(status_code=502, detail=usage.error_message)
    return UsageResponse(
        iccid=iccid,
        remaining_mb=usage.remaining_mb,
        total_mb=usage.total_mb,
        status=usage.status,
        expires_at=usage.expires_at,
        cached=lookup.cached,
        calls_today=lookup.calls_today,
    )
