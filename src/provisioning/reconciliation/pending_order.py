"""PendingAsyncOrder aggregate: bridges an accepted async supplier call to its order.

Created by the orchestrator as soon as a supplier accepts an order
asynchronously; resolved only by the webhook reconciler. At most one
record per supplier ``request_id`` is ever pending.
"""

from datetime import UTC, datetime
from enum import Enum

from protean.exceptions import ValidationError
from protean.fields import DateTime, Identifier, String
from protean.utils.globals import current_domain

from provisioning.domain import provisioning


class PendingStatus(Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


@provisioning.aggregate
class PendingAsyncOrder:
    request_id = String(required=True, max_length=255)
    order_id = Identifier(required=True)
    provider_id = String(max_length=100)
    status = String(
        max_length=20,
        choices=PendingStatus,
        default=PendingStatus.PENDING.value,
    )
    created_at = DateTime()
    resolved_at = DateTime()

    @classmethod
    def open(cls, request_id: str, order_id: str, provider_id: str | None = None):
        """Record an accepted async call, refusing a second pending record for the same request."""
        existing = current_domain.repository_for(cls).find_pending(request_id)
        if existing is not None:
            raise ValidationError({"request_id": [f"Request {request_id} is already awaiting a callback"]})
        return cls(
            request_id=request_id,
            order_id=order_id,
            provider_id=provider_id,
            status=PendingStatus.PENDING.value,
            created_at=datetime.now(UTC),
        )

    @property
    def is_pending(self) -> bool:
        return self.status == PendingStatus.PENDING.value

    def resolve(self, succeeded: bool) -> None:
        if not self.is_pending:
            raise ValidationError({"status": [f"Request {self.request_id} was already resolved as {self.status}"]})
        self.status = (PendingStatus.COMPLETED if succeeded else PendingStatus.FAILED).value
        self.resolved_at = datetime.now(UTC)


@provisioning.repository(part_of=PendingAsyncOrder)
class PendingAsyncOrderRepository:
    def find_pending(self, request_id: str):
        return self._dao.query.filter(request_id=request_id, status=PendingStatus.PENDING.value).all().first

    def find_latest(self, request_id: str):
        """Most recent record for a request, whatever its status (replays resolve to it)."""
        records = self._dao.query.filter(request_id=request_id).all().items
        if not records:
            return None
        return max(records, key=lambda r: r.created_at)
