"""Provider domain events: supplier configuration and circuit-breaker changes."""

from protean.fields import DateTime, Integer, String

from provisioning.domain import provisioning


@provisioning.event(part_of="Provider")
class ProviderRegistered:
    """A wholesale supplier was configured."""

    __version__ = 1

    provider_id = String(required=True)
    adapter = String(required=True)
    priority = Integer(required=True)
    registered_at = DateTime(required=True)


@provisioning.event(part_of="Provider")
class CircuitOpened:
    """The supplier failed often enough to be taken out of rotation."""

    __version__ = 1

    provider_id = String(required=True)
    consecutive_failures = Integer(required=True)
    opened_at = DateTime(required=True)


@provisioning.event(part_of="Provider")
class CircuitHalfOpened:
    """The cooldown elapsed; the supplier may be probed once."""

    __version__ = 1

    provider_id = String(required=True)
    half_opened_at = DateTime(required=True)


@provisioning.event(part_of="Provider")
class CircuitClosed:
    """The supplier recovered (successful probe or admin reset)."""

    __version__ = 1

    provider_id = String(required=True)
    closed_at = DateTime(required=True)
