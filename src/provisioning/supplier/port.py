"""Supplier port: abstract interface for wholesale eSIM suppliers.

Adapters never raise for supplier-side problems. Every outcome, including
transport failures and timeouts, comes back as a ``PurchaseResult`` so the
orchestrator can turn it into a state transition.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum


class ErrorType(Enum):
    TIMEOUT = "timeout"
    RATE_LIMIT = "rate_limit"
    INVALID_RESPONSE = "invalid_response"
    NETWORK_ERROR = "network_error"
    AUTHENTICATION = "authentication"
    VALIDATION = "validation"
    PROVIDER_ERROR = "provider_error"
    UNKNOWN = "unknown"


RETRYABLE_ERRORS = frozenset(
    {
        ErrorType.TIMEOUT,
        ErrorType.RATE_LIMIT,
        ErrorType.NETWORK_ERROR,
        ErrorType.PROVIDER_ERROR,
    }
)


def classify_status(status_code: int) -> ErrorType:
    """Map an HTTP status from a supplier API to an error type."""
    if status_code in (401, 403):
        return ErrorType.AUTHENTICATION
    if status_code == 429:
        return ErrorType.RATE_LIMIT
    if status_code in (400, 422):
        return ErrorType.VALIDATION
    if status_code >= 500:
        return ErrorType.PROVIDER_ERROR
    return ErrorType.UNKNOWN


class PurchaseOutcome(Enum):
    COMPLETED = "completed"
    ACCEPTED = "accepted"
    MANUAL = "manual"
    FAILED = "failed"


@dataclass(frozen=True)
class EsimArtifacts:
    """What the customer needs to install the eSIM."""

    iccid: str
    activation_code: str | None = None
    qr_code: str | None = None


@dataclass(frozen=True)
class PurchaseResult:
    """Result of a provisioning call."""

    outcome: PurchaseOutcome
    artifacts: EsimArtifacts | None = None
    provider_order_id: str | None = None
    request_id: str | None = None
    error_type: ErrorType | None = None
    error_message: str | None = None

    @property
    def retryable(self) -> bool:
        return self.outcome == PurchaseOutcome.FAILED and self.error_type in RETRYABLE_ERRORS

    @classmethod
    def completed(cls, artifacts: EsimArtifacts, provider_order_id: str | None = None) -> "PurchaseResult":
        return cls(PurchaseOutcome.COMPLETED, artifacts=artifacts, provider_order_id=provider_order_id)

    @classmethod
    def accepted(cls, request_id: str) -> "PurchaseResult":
        return cls(PurchaseOutcome.ACCEPTED, request_id=request_id)

    @classmethod
    def manual(cls, reason: str) -> "PurchaseResult":
        return cls(PurchaseOutcome.MANUAL, error_message=reason)

    @classmethod
    def failed(cls, error_type: ErrorType, error_message: str) -> "PurchaseResult":
        return cls(PurchaseOutcome.FAILED, error_type=error_type, error_message=error_message)


@dataclass(frozen=True)
class UsageResult:
    """Data usage of a provisioned eSIM, as reported by the supplier."""

    iccid: str
    remaining_mb: float | None = None
    total_mb: float | None = None
    status: str | None = None
    expires_at: str | None = None
    error_type: ErrorType | None = None
    error_message: str | None = None

    @property
    def success(self) -> bool:
        return self.error_type is None


class ProvisioningPort(ABC):
    """Abstract supplier interface."""

    @abstractmethod
    def purchase(
        self,
        provider_sku: str,
        quantity: int,
        customer_email: str,
        correlation_id: str,
        timeout: float,
    ) -> PurchaseResult:
        """Buy ``quantity`` eSIMs of ``provider_sku``.

        ``correlation_id`` is the caller's idempotency token; adapters pass
        it to the supplier so a retried call does not buy twice.
        """
        ...

    @abstractmethod
    def get_sim_usage(self, iccid: str, timeout: float) -> UsageResult:
        """Read remaining data for a provisioned eSIM (rate-limited upstream)."""
        ...

    @abstractmethod
    def health_check(self) -> bool:
        """Return True when the supplier API is reachable and authenticated."""
        ...
