"""Supplier adapter registry: one client per configured provider."""

from provisioning.supplier.port import ProvisioningPort

_overrides: dict[str, ProvisioningPort] = {}
_instances: dict[str, ProvisioningPort] = {}


def _build(adapter: str) -> ProvisioningPort:
    if adapter == "fake":
        from provisioning.supplier.fake_adapter import FakeSupplier

        return FakeSupplier()
    if adapter == "manual":
        from provisioning.supplier.manual_adapter import ManualSupplier

        return ManualSupplier()
    if adapter == "airalo":
        from provisioning.supplier.airalo_adapter import AiraloSupplier

        return AiraloSupplier.from_env()
    raise ValueError(f"Unknown supplier adapter: {adapter}")


def get_supplier(provider) -> ProvisioningPort:
    """Return the client for a Provider record.

    An adapter registered for the provider's id wins; otherwise one client is
    built per adapter kind and shared by every provider using it.
    """
    provider_id = str(provider.id)
    if provider_id in _overrides:
        return _overrides[provider_id]
    if provider.adapter not in _instances:
        _instances[provider.adapter] = _build(provider.adapter)
    return _instances[provider.adapter]


def register_supplier(provider_id: str, adapter: ProvisioningPort) -> None:
    """Bind a specific client to one provider id."""
    _overrides[provider_id] = adapter


def reset_suppliers() -> None:
    """Forget every client (useful for testing)."""
    _overrides.clear()
    _instances.clear()
