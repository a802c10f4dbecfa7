"""Provider administration: register, tune and reset suppliers."""

from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Boolean, Identifier, Integer, String
from protean.utils.globals import current_domain

from provisioning.domain import provisioning
from provisioning.provider.provider import Provider
from provisioning.provider.registry import get_registry


@provisioning.command(part_of="Provider")
class RegisterProvider:
    """Configure a new wholesale supplier."""

    provider_id = Identifier(required=True)
    name = String(required=True, max_length=100)
    adapter = String(required=True, max_length=50)
    priority = Integer(default=100)
    is_active = Boolean(default=True)
    timeout_ms = Integer(default=10000)
    max_retries = Integer(default=3)


@provisioning.command(part_of="Provider")
class UpdateProvider:
    """Change a supplier's rank, availability or call budget."""

    provider_id = Identifier(required=True)
    priority = Integer()
    is_active = Boolean()
    timeout_ms = Integer()
    max_retries = Integer()


@provisioning.command(part_of="Provider")
class ResetCircuitBreaker:
    """Close a supplier's circuit and clear its failure history."""

    provider_id = Identifier(required=True)


@provisioning.command_handler(part_of=Provider)
class ProviderAdministrationHandler:
    @handle(RegisterProvider)
    def register_provider(self, command):
        repo = current_domain.repository_for(Provider)
        if repo._dao.query.filter(id=command.provider_id).all().first is not None:
            raise ValidationError({"provider_id": [f"Provider '{command.provider_id}' already exists"]})
        provider = Provider.register(
            provider_id=command.provider_id,
            name=command.name,
            adapter=command.adapter,
            priority=command.priority,
            is_active=command.is_active,
            timeout_ms=command.timeout_ms,
            max_retries=command.max_retries,
        )
        repo.add(provider)
        get_registry().invalidate()
        return str(provider.id)

    @handle(UpdateProvider)
    def update_provider(self, command):
        repo = current_domain.repository_for(Provider)
        provider = repo.get(command.provider_id)
        provider.update_settings(
            priority=command.priority,
            is_active=command.is_active,
            timeout_ms=command.timeout_ms,
            max_retries=command.max_retries,
        )
        repo.add(provider)
        get_registry().invalidate()

    @handle(ResetCircuitBreaker)
    def reset_circuit_breaker(self, command):
        repo = current_domain.repository_for(Provider)
        provider = repo.get(command.provider_id)
        provider.reset_circuit()
        repo.add(provider)
        get_registry().invalidate()
