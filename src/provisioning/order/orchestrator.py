"""Fulfillment orchestrator: drives one provisioning attempt for a paid order.

Runs outside a unit of work: the claim (``fulfillment_started``)
must be durable before the supplier is called, so a crash mid-call leaves
the order where the stuck-order sweeper can find it.

Outcome per supplier result:
    completed         → order completed, artifacts copied, customer notified
    accepted (async)  → order parked, PendingAsyncOrder opened
    manual            → order handed over to staff
    timeout           → unknown outcome, order left in fulfillment_started
    transient failure → retried up to the provider's budget, then next provider
    permanent failure → order failed
"""

import time
from dataclasses import dataclass

import structlog
from protean.exceptions import ExpectedVersionError
from protean.utils.globals import current_domain

from provisioning.audit.automation_log import StepName, StepStatus, record_step
from provisioning.config import Settings, get_settings
from provisioning.notify.delivery import alert_operators, deliver_esim
from provisioning.order.order import Order, OrderStatus
from provisioning.provider.registry import ProviderRegistry, get_registry
from provisioning.reconciliation.pending_order import PendingAsyncOrder
from provisioning.supplier import get_supplier
from provisioning.supplier.port import ErrorType, PurchaseOutcome, PurchaseResult

logger = structlog.get_logger(__name__)

NO_ELIGIBLE_PROVIDER = "No eligible eSIM provider available"


@dataclass(frozen=True)
class FulfillmentOutcome:
    """What one orchestrator run did to an order."""

    order_id: str
    status: str
    provider_id: str | None = None
    request_id: str | None = None
    error: str | None = None
    skipped: bool = False


class FulfillmentOrchestrator:
    def __init__(
        self,
        registry: ProviderRegistry | None = None,
        settings: Settings | None = None,
        sleep=time.sleep,
    ) -> None:
        self.registry = registry or get_registry()
        self.settings = settings or get_settings()
        self._sleep = sleep

    def fulfill(self, order_id: str) -> FulfillmentOutcome:
        """Attempt to provision ``order_id``. Supplier errors never escape this method."""
        repo = current_domain.repository_for(Order)
        order = repo.get(order_id)
        if not order.awaiting_fulfillment:
            logger.info("fulfillment_skipped", order_id=order_id, status=order.status)
            return FulfillmentOutcome(order_id=order_id, status=order.status, skipped=True)

        token = order.start_fulfillment()
        try:
            repo.add(order)
        except ExpectedVersionError:
            # Another worker wrote the order between our read and our claim
            order = repo.get(order_id)
            logger.warning("fulfillment_claim_lost", order_id=order_id, status=order.status)
            return FulfillmentOutcome(order_id=order_id, status=order.status, skipped=True)

        order = repo.get(order_id)
        if order.claim_token != token:
            logger.warning("fulfillment_claim_lost", order_id=order_id)
            return FulfillmentOutcome(order_id=order_id, status=order.status, skipped=True)

        try:
            return self._provision(order)
        except Exception as exc:
            logger.exception("fulfillment_interrupted", order_id=order_id)
            record_step(
                order,
                StepName.FULFILLMENT_INTERRUPTED,
                StepStatus.FAILED,
                error_message=str(exc),
                error_type="unexpected",
            )
            return FulfillmentOutcome(
                order_id=order_id,
                status=OrderStatus.FULFILLMENT_STARTED.value,
                error=str(exc),
            )

    # -------------------------------------------------------------------
    # Provider loop
    # -------------------------------------------------------------------
    def _provision(self, order) -> FulfillmentOutcome:
        providers = self.registry.eligible_providers()
        last_provider_id = None
        last_error = None

        for index, provider in enumerate(providers):
            provider_id = str(provider.id)
            if not self.registry.claim(provider):
                continue
            last_provider_id = provider_id

            record_step(order, StepName.PROVIDER_CALL_STARTED, StepStatus.STARTED, provider_name=provider_id)
            result = self._call_with_retries(provider, order)

            if result.outcome == PurchaseOutcome.COMPLETED:
                self.registry.record_success(provider_id)
                return self._complete(order, provider_id, result)

            if result.outcome == PurchaseOutcome.ACCEPTED:
                self.registry.record_success(provider_id)
                return self._park(order, provider_id, result.request_id)

            if result.outcome == PurchaseOutcome.MANUAL:
                self.registry.record_success(provider_id)
                return self._hand_off(order, provider_id, result.error_message)

            record_step(
                order,
                StepName.PROVIDER_CALL_FAILED,
                StepStatus.FAILED,
                provider_name=provider_id,
                error_message=result.error_message,
                error_type=result.error_type.value,
            )

            if result.error_type == ErrorType.TIMEOUT:
                self.registry.record_failure(provider_id)
                logger.warning("provider_call_timed_out", order_id=str(order.id), provider_id=provider_id)
                return FulfillmentOutcome(
                    order_id=str(order.id),
                    status=order.status,
                    provider_id=provider_id,
                    error=result.error_message,
                )

            if not result.retryable:
                self.registry.release_probe(provider_id)
                return self._fail(order, result.error_message, provider_id, result.error_type.value)

            self.registry.record_failure(provider_id)
            last_error = result.error_message
            if index < len(providers) - 1:
                record_step(
                    order,
                    StepName.FAILOVER_TRIGGERED,
                    StepStatus.SKIPPED,
                    provider_name=provider_id,
                    error_message=last_error,
                )
                logger.info("provider_failover", order_id=str(order.id), from_provider=provider_id)

        if last_provider_id is None:
            return self._fail(order, NO_ELIGIBLE_PROVIDER, None, "no_provider")
        return self._provider_failed(order, last_error or "All providers failed", last_provider_id)

    def _call_with_retries(self, provider, order) -> PurchaseResult:
        supplier = get_supplier(provider)
        attempts = max(provider.max_retries or 1, 1)
        result = None
        for attempt in range(1, attempts + 1):
            result = supplier.purchase(
                provider_sku=order.provider_sku,
                quantity=order.quantity,
                customer_email=order.customer_email,
                correlation_id=order.correlation_id,
                timeout=provider.timeout_seconds,
            )
            if not result.retryable or result.error_type == ErrorType.TIMEOUT:
                return result
            logger.info(
                "provider_call_retryable_error",
                order_id=str(order.id),
                provider_id=str(provider.id),
                attempt=attempt,
                error_type=result.error_type.value,
            )
            if attempt < attempts:
                self._sleep(self.settings.retry_backoff_seconds * attempt)
        return result

    # -------------------------------------------------------------------
    # Outcomes
    # -------------------------------------------------------------------
    def _complete(self, order, provider_id: str, result: PurchaseResult) -> FulfillmentOutcome:
        artifacts = result.artifacts
        order.complete(
            provider_id=provider_id,
            iccid=artifacts.iccid,
            activation_code=artifacts.activation_code,
            qr_code=artifacts.qr_code,
            provider_order_id=result.provider_order_id,
        )
        current_domain.repository_for(Order).add(order)
        record_step(
            order,
            StepName.PROVIDER_CALL_SUCCESS,
            StepStatus.SUCCESS,
            provider_name=provider_id,
            provider_order_id=result.provider_order_id,
        )
        record_step(order, StepName.ORDER_COMPLETED, StepStatus.SUCCESS, provider_name=provider_id)
        logger.info("order_completed", order_id=str(order.id), provider_id=provider_id)
        deliver_esim(order)
        return FulfillmentOutcome(order_id=str(order.id), status=order.status, provider_id=provider_id)

    def _park(self, order, provider_id: str, request_id: str) -> FulfillmentOutcome:
        pending = PendingAsyncOrder.open(request_id=request_id, order_id=str(order.id), provider_id=provider_id)
        current_domain.repository_for(PendingAsyncOrder).add(pending)
        order.accept_async(provider_id, request_id)
        current_domain.repository_for(Order).add(order)
        record_step(
            order,
            StepName.ASYNC_ORDER_ACCEPTED,
            StepStatus.SUCCESS,
            provider_name=provider_id,
            request_id=request_id,
        )
        logger.info("async_order_accepted", order_id=str(order.id), provider_id=provider_id, request_id=request_id)
        return FulfillmentOutcome(
            order_id=str(order.id),
            status=order.status,
            provider_id=provider_id,
            request_id=request_id,
        )

    def _hand_off(self, order, provider_id: str, reason: str) -> FulfillmentOutcome:
        order.request_manual_fulfillment(reason)
        current_domain.repository_for(Order).add(order)
        record_step(order, StepName.MANUAL_FULFILLMENT_REQUESTED, StepStatus.SUCCESS, provider_name=provider_id)
        alert_operators(order, "Manual fulfillment required", reason)
        return FulfillmentOutcome(order_id=str(order.id), status=order.status, provider_id=provider_id)

    def _fail(self, order, reason: str, provider_id: str | None, error_type: str) -> FulfillmentOutcome:
        order.fail(reason, provider_id)
        current_domain.repository_for(Order).add(order)
        record_step(
            order,
            StepName.ORDER_FAILED,
            StepStatus.FAILED,
            provider_name=provider_id,
            error_message=reason,
            error_type=error_type,
        )
        logger.warning("order_failed", order_id=str(order.id), provider_id=provider_id, reason=reason)
        alert_operators(order, "eSIM order failed", reason)
        return FulfillmentOutcome(order_id=str(order.id), status=order.status, provider_id=provider_id, error=reason)

    def _provider_failed(self, order, reason: str, provider_id: str) -> FulfillmentOutcome:
        order.mark_provider_failed(reason, provider_id)
        current_domain.repository_for(Order).add(order)
        record_step(
            order,
            StepName.ORDER_FAILED,
            StepStatus.FAILED,
            provider_name=provider_id,
            error_message=reason,
            error_type="provider_failed",
        )
        logger.warning("order_provider_failed", order_id=str(order.id), provider_id=provider_id, reason=reason)
        alert_operators(order, "All eSIM providers failed", reason)
        return FulfillmentOutcome(order_id=str(order.id), status=order.status, provider_id=provider_id, error=reason)


def process_pending_orders(orchestrator: FulfillmentOrchestrator | None = None, limit: int = 50) -> list:
    """Run the orchestrator over every order waiting for fulfillment, oldest first."""
    orchestrator = orchestrator or FulfillmentOrchestrator()
    repo = current_domain.repository_for(Order)
    candidates = [o for o in repo.find_by_status(OrderStatus.PAYMENT_RECEIVED, OrderStatus.PENDING) if o.awaiting_fulfillment]
    candidates.sort(key=lambda o: o.updated_at)

    outcomes = []
    for order in candidates[:limit]:
        outcomes.append(orchestrator.fulfill(str(order.id)))
    return outcomes
