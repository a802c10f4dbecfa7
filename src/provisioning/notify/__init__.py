"""Notifier abstraction: pluggable customer and operator messaging."""

import os

_notifier_instance = None


def get_notifier():
    """Return the configured notifier (singleton).

    Uses FakeNotifier by default; NOTIFIER_ADAPTER=webhook posts alerts to
    DISCORD_WEBHOOK_URL and deliveries to DELIVERY_WEBHOOK_URL.
    """
    global _notifier_instance
    if _notifier_instance is None:
        adapter = os.environ.get("NOTIFIER_ADAPTER", "fake")
        if adapter == "fake":
            from provisioning.notify.fake_adapter import FakeNotifier

            _notifier_instance = FakeNotifier()
        elif adapter == "webhook":
            from provisioning.config import get_settings
            from provisioning.notify.webhook_adapter import WebhookNotifier

            _notifier_instance = WebhookNotifier(
                alert_url=get_settings().discord_webhook_url,
                delivery_url=os.environ.get("DELIVERY_WEBHOOK_URL"),
            )
        else:
            raise ValueError(f"Unknown notifier adapter: {adapter}")
    return _notifier_instance


def reset_notifier():
    """Reset the notifier singleton (useful for testing)."""
    global _notifier_instance
    _notifier_instance = None
