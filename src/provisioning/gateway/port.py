"""Refund gateway port (abstract interface).

The engine never charges cards; it only asks the payment gateway to give
money back for orders that could not be fulfilled.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class RefundResult:
    """Result of a refund attempt."""

    success: bool
    gateway_refund_id: str | None = None
    gateway_status: str | None = None
    failure_reason: str | None = None


class RefundGateway(ABC):
    """Abstract payment gateway interface (refunds only)."""

    @abstractmethod
    def create_refund(
        self,
        payment_reference: str,
        amount: float,
        reason: str,
        idempotency_key: str,
    ) -> RefundResult:
        """Refund part or all of a captured payment."""
        ...
