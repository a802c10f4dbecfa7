"""eSIM data-usage lookup with a local per-ICCID daily quota.

Suppliers rate-limit their usage endpoints per SIM. Results are cached by
the provider registry, and a ``UsageQuota`` record per ICCID and UTC day
caps how often we ask, independently of the supplier's own limit.
"""

from dataclasses import dataclass
from datetime import UTC, datetime

import structlog
from protean.exceptions import ObjectNotFoundError
from protean.fields import Integer, String
from protean.utils.globals import current_domain

from provisioning.config import get_settings
from provisioning.domain import provisioning
from provisioning.order.order import Order, OrderStatus
from provisioning.provider.provider import Provider
from provisioning.provider.registry import ProviderRegistry, get_registry
from provisioning.supplier import get_supplier
from provisioning.supplier.port import UsageResult

logger = structlog.get_logger(__name__)


class UsageQuotaExceeded(Exception):
    """The daily usage-call budget for this eSIM is spent."""


@provisioning.aggregate
class UsageQuota:
    iccid = String(required=True, max_length=32)
    day = String(required=True, max_length=10)
    calls = Integer(default=0)


@dataclass(frozen=True)
class UsageLookup:
    usage: UsageResult
    cached: bool
    calls_today: int


def _quota_for(iccid: str, day: str) -> UsageQuota:
    repo = current_domain.repository_for(UsageQuota)
    quota = repo._dao.query.filter(id=f"{iccid}:{day}").all().first
    return quota or UsageQuota(id=f"{iccid}:{day}", iccid=iccid, day=day, calls=0)


def get_esim_usage(iccid: str, registry: ProviderRegistry | None = None, now: datetime | None = None) -> UsageLookup:
    registry = registry or get_registry()
    order = current_domain.repository_for(Order).find_by_iccid(iccid)
    if order is None or order.status != OrderStatus.COMPLETED.value:
        raise ObjectNotFoundError(f"No completed order holds eSIM {iccid}")

    day = (now or datetime.now(UTC)).date().isoformat()
    quota = _quota_for(iccid, day)

    cached = registry.usage_cache.get(iccid)
    if cached is not None:
        return UsageLookup(usage=cached, cached=True, calls_today=quota.calls)

    limit = get_settings().usage_daily_limit
    if quota.calls >= limit:
        logger.warning("usage_quota_exhausted", iccid=iccid, calls=quota.calls, limit=limit)
        raise UsageQuotaExceeded(f"Usage for {iccid} was already checked {quota.calls} times today")

    provider = current_domain.repository_for(Provider).get(order.provider_used)
    usage = get_supplier(provider).get_sim_usage(iccid, timeout=provider.timeout_seconds)

    quota.calls = quota.calls + 1
    current_domain.repository_for(UsageQuota).add(quota)

    if usage.success:
        registry.usage_cache.set(iccid, usage)
    else:
        logger.warning("usage_lookup_failed", iccid=iccid, error_type=usage.error_type.value)
    return UsageLookup(usage=usage, cached=False, calls_today=quota.calls)
