"""Refund gateway abstraction: pluggable payment gateway integration."""

import os

_gateway_instance = None


def get_gateway():
    """Return the configured refund gateway (singleton).

    Uses FakeGateway by default; select another with GATEWAY_ADAPTER.
    """
    global _gateway_instance
    if _gateway_instance is None:
        adapter = os.environ.get("GATEWAY_ADAPTER", "fake")
        if adapter == "fake":
            from provisioning.gateway.fake_adapter import FakeGateway

            _gateway_instance = FakeGateway()
        else:
            raise ValueError(f"Unknown gateway adapter: {adapter}")
    return _gateway_instance


def reset_gateway():
    """Reset the gateway singleton (useful for testing)."""
    global _gateway_instance
    _gateway_instance = None
