"""Configurable fake supplier for development and testing.

Simulates a wholesale supplier without network calls. Behavior is set at
runtime with ``configure`` (one mode for every call) or ``script`` (a queue
of results consumed in order, then falling back to the configured mode).
"""

from collections import deque
from uuid import uuid4

from provisioning.supplier.port import (
    EsimArtifacts,
    ErrorType,
    ProvisioningPort,
    PurchaseResult,
    UsageResult,
)

MODES = ("sync", "async", "fail", "timeout", "manual")


class FakeSupplier(ProvisioningPort):
    """Configurable fake supplier."""

    def __init__(self) -> None:
        self.mode: str = "sync"
        self.error_type: ErrorType = ErrorType.PROVIDER_ERROR
        self.error_message: str = "Supplier unavailable"
        self.healthy: bool = True
        self.calls: list[dict] = []
        self._script: deque[PurchaseResult] = deque()

    def configure(
        self,
        mode: str = "sync",
        error_type: ErrorType = ErrorType.PROVIDER_ERROR,
        error_message: str = "Supplier unavailable",
    ) -> None:
        """Configure supplier behavior at runtime."""
        if mode not in MODES:
            raise ValueError(f"Unknown fake supplier mode: {mode}")
        self.mode = mode
        self.error_type = error_type
        self.error_message = error_message

    def script(self, *results: PurchaseResult) -> None:
        """Queue explicit results for the next purchase calls."""
        self._script.extend(results)

    def purchase(
        self,
        provider_sku: str,
        quantity: int,
        customer_email: str,
        correlation_id: str,
        timeout: float,
    ) -> PurchaseResult:
        self.calls.append(
            {
                "method": "purchase",
                "provider_sku": provider_sku,
                "quantity": quantity,
                "customer_email": customer_email,
                "correlation_id": correlation_id,
                "timeout": timeout,
            }
        )
        if self._script:
            return self._script.popleft()

        if self.mode == "sync":
            suffix = uuid4().hex[:12]
            return PurchaseResult.completed(
                EsimArtifacts(
                    iccid=f"8901{uuid4().int % 10**15:015d}",
                    activation_code=f"LPA:1$smdp.fake.example${suffix.upper()}",
                    qr_code=f"https://qr.fake.example/{suffix}.png",
                ),
                provider_order_id=f"fake_ord_{suffix}",
            )
        if self.mode == "async":
            return PurchaseResult.accepted(request_id=f"fake_req_{uuid4().hex[:12]}")
        if self.mode == "manual":
            return PurchaseResult.manual("Supplier requires manual fulfillment")
        if self.mode == "timeout":
            return PurchaseResult.failed(ErrorType.TIMEOUT, f"Request timed out after {timeout}s")
        return PurchaseResult.failed(self.error_type, self.error_message)

    def get_sim_usage(self, iccid: str, timeout: float) -> UsageResult:
        self.calls.append({"method": "get_sim_usage", "iccid": iccid})
        if self.mode == "fail":
            return UsageResult(iccid=iccid, error_type=self.error_type, error_message=self.error_message)
        return UsageResult(iccid=iccid, remaining_mb=2048.0, total_mb=3072.0, status="ACTIVE")

    def health_check(self) -> bool:
        self.calls.append({"method": "health_check"})
        return self.healthy
