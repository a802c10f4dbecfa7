"""Configurable fake refund gateway for development and testing."""

from uuid import uuid4

from provisioning.gateway.port import RefundGateway, RefundResult


class FakeGateway(RefundGateway):
    """Configurable fake refund gateway."""

    def __init__(self) -> None:
        self.should_succeed: bool = True
        self.failure_reason: str = "Refund declined"
        self.calls: list[dict] = []

    def configure(self, should_succeed: bool, failure_reason: str = "Refund declined") -> None:
        """Configure gateway behavior at runtime."""
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason

    def create_refund(
        self,
        payment_reference: str,
        amount: float,
        reason: str,
        idempotency_key: str,
    ) -> RefundResult:
        self.calls.append(
            {
                "method": "create_refund",
                "payment_reference": payment_reference,
                "amount": amount,
                "reason": reason,
                "idempotency_key": idempotency_key,
            }
        )
        if self.should_succeed:
            return RefundResult(
                success=True,
                gateway_refund_id=f"fake_re_{uuid4().hex[:12]}",
                gateway_status="succeeded",
            )
        return RefundResult(success=False, gateway_status="failed", failure_reason=self.failure_reason)
