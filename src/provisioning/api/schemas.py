"""Pydantic API schemas for the Provisioning domain.

These are the external API contracts, separate from domain commands.
The API layer translates between these schemas and domain commands.
"""

from datetime import datetime

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------
class PlaceOrderRequest(BaseModel):
    order_id: str | None = None
    provider_sku: str
    quantity: int = Field(default=1, ge=1)
    amount: float = Field(ge=0)
    currency: str = "USD"
    customer_email: str
    customer_name: str | None = None
    correlation_id: str | None = None


class ConfirmPaymentRequest(BaseModel):
    payment_reference: str | None = None


class RefundOrderRequest(BaseModel):
    reason: str = "requested_by_customer"
    amount: float | None = None


class RegisterProviderRequest(BaseModel):
    provider_id: str
    name: str
    adapter: str
    priority: int = 100
    is_active: bool = True
    timeout_ms: int = 10000
    max_retries: int = 3


class UpdateProviderRequest(BaseModel):
    priority: int | None = None
    is_active: bool | None = None
    timeout_ms: int | None = None
    max_retries: int | None = None


class BulkRetryRequest(BaseModel):
    order_ids: list[str]
    initiated_by: str = "admin"


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------
class OrderIdResponse(BaseModel):
    order_id: str


class StatusResponse(BaseModel):
    status: str


class OrderResponse(BaseModel):
    order_id: str
    status: str
    payment_status: str
    amount: float
    currency: str
    customer_email: str
    provider_sku: str
    quantity: int
    correlation_id: str
    provider_used: str | None = None
    provider_order_id: str | None = None
    esim_iccid: str | None = None
    esim_activation_code: str | None = None
    esim_qr_code: str | None = None
    retry_count: int = 0
    error_message: str | None = None
    refund_amount: float | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    completed_at: datetime | None = None


class CustomerOrderStatusResponse(BaseModel):
    order_id: str
    status: str


class FulfillmentResponse(BaseModel):
    order_id: str
    status: str
    provider_id: str | None = None
    request_id: str | None = None
    skipped: bool = False


class RetryResponse(BaseModel):
    success: bool
    order_id: str
    previous_status: str
    status: str


class RefundResponse(BaseModel):
    success: bool
    order_id: str
    refund_id: str | None = None
    status: str
    payment_status: str
    refund_amount: float


class AutomationLogResponse(BaseModel):
    step_name: str
    status: str
    provider_name: str | None = None
    error_message: str | None = None
    error_type: str | None = None
    details: dict = {}
    created_at: datetime | None = None


class ProviderIdResponse(BaseModel):
    provider_id: str


class ProviderResponse(BaseModel):
    provider_id: str
    name: str
    adapter: str
    priority: int
    is_active: bool
    circuit_breaker_state: str
    success_rate: float
    consecutive_failures: int
    last_failure_at: datetime | None = None
    timeout_ms: int
    max_retries: int


class WebhookResponse(BaseModel):
    success: bool
    order_id: str | None = None


class SweepResponse(BaseModel):
    success: bool = True
    skipped: bool = False
    reason: str | None = None
    held_by: str | None = None
    expires_at: datetime | None = None
    processed: int = 0
    retried: int = 0
    failed: int = 0
    errors: list[str] = []


class ProcessPendingResponse(BaseModel):
    processed: int
    outcomes: list[FulfillmentResponse]


class BulkRetryItemResponse(BaseModel):
    order_id: str
    status: str
    reason: str | None = None


class BulkRetryResponse(BaseModel):
    success: bool = True
    message: str
    total: int
    retried: int
    skipped: int
    failed: int
    details: list[BulkRetryItemResponse]


class ProviderHealthResponse(BaseModel):
    provider_id: str
    name: str
    status: str
    response_time_ms: int
    error_message: str | None = None


class HealthCheckResponse(BaseModel):
    success: bool = True
    skipped: bool = False
    reason: str | None = None
    held_by: str | None = None
    results: list[ProviderHealthResponse] = []
    summary: dict[str, int] = {}
    expired_locks: int = 0


class UsageResponse(BaseModel):
    iccid: str
    remaining_mb: float | None = None
    total_mb: float | None = None
    status: str | None = None
    expires_at: str | None = None
    cached: bool
    calls_today: int
