"""Per-supplier webhook authentication."""

import os
from dataclasses import dataclass

import structlog

from provisioning.config import Settings, get_settings
from provisioning.reconciliation.signatures import verify_signature, verify_timestamped_signature

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class WebhookScheme:
    supplier: str
    header: str
    secret_setting: str
    timestamped: bool = False


WEBHOOK_SCHEMES = {
    "airalo": WebhookScheme("airalo", "x-airalo-signature", "airalo_webhook_secret"),
    "provider": WebhookScheme("provider", "x-provider-signature", "provider_webhook_secret", timestamped=True),
}


def verify_webhook(supplier: str, body: bytes, headers, settings: Settings | None = None) -> bool:
    """Check a callback's signature header against the supplier's shared secret.

    Without a configured secret the check is skipped outside production so
    sandbox suppliers can be wired up; production always rejects.
    """
    scheme = WEBHOOK_SCHEMES.get(supplier)
    if scheme is None:
        return False
    settings = settings or get_settings()
    secret = getattr(settings, scheme.secret_setting)
    if not secret:
        if os.environ.get("PROTEAN_ENV") == "production":
            logger.error("webhook_secret_missing", supplier=supplier)
            return False
        logger.warning("webhook_signature_not_verified", supplier=supplier, reason="no secret configured")
        return True

    signature = headers.get(scheme.header)
    if scheme.timestamped:
        return verify_timestamped_signature(body, signature, secret, settings.webhook_tolerance_seconds)
    return verify_signature(body, signature, secret)
