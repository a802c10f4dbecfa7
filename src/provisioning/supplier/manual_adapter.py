"""Manual supplier: hands every order to staff instead of calling an API.

Configured as the lowest-priority provider so orders that no automated
supplier can serve land in ``pending_manual_fulfillment`` rather than
``failed``.
"""

from provisioning.supplier.port import ErrorType, ProvisioningPort, PurchaseResult, UsageResult


class ManualSupplier(ProvisioningPort):
    def purchase(
        self,
        provider_sku: str,
        quantity: int,
        customer_email: str,
        correlation_id: str,
        timeout: float,
    ) -> PurchaseResult:
        return PurchaseResult.manual(f"Manual fulfillment required for {provider_sku} (x{quantity})")

    def get_sim_usage(self, iccid: str, timeout: float) -> UsageResult:
        return UsageResult(
            iccid=iccid,
            error_type=ErrorType.VALIDATION,
            error_message="Usage is not available for manually fulfilled eSIMs",
        )

    def health_check(self) -> bool:
        return True
