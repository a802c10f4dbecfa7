"""Airalo partner API adapter.

Authenticates with OAuth client credentials and submits orders either
synchronously (``/orders``: the eSIM comes back in the response) or
asynchronously (``/orders-async``: Airalo answers with a ``request_id``
and posts the result to our webhook later).
"""

import os
import time

import httpx
import structlog

from provisioning.supplier.port import (
    EsimArtifacts,
    ErrorType,
    ProvisioningPort,
    PurchaseResult,
    UsageResult,
    classify_status,
)

logger = structlog.get_logger(__name__)

SANDBOX_URL = "https://sandbox-partners-api.airalo.com/v2"
_TOKEN_EXPIRY_BUFFER_SECONDS = 60


class AiraloResponseError(Exception):
    """Airalo answered 2xx with a body we cannot use."""


def _json_object(response: httpx.Response) -> dict:
    try:
        body = response.json()
    except ValueError as exc:
        raise AiraloResponseError(f"Airalo returned a non-JSON body from {response.request.url.path}") from exc
    if not isinstance(body, dict):
        raise AiraloResponseError(f"Airalo returned an unexpected body from {response.request.url.path}")
    return body


class AiraloSupplier(ProvisioningPort):
    def __init__(
        self,
        client_id: str,
        client_secret: str,
        api_url: str = SANDBOX_URL,
        webhook_url: str | None = None,
        client: httpx.Client | None = None,
    ) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.api_url = api_url.rstrip("/")
        self.webhook_url = webhook_url
        self.client = client or httpx.Client(timeout=10.0)
        self._access_token: str | None = None
        self._token_expires_at: float = 0.0

    @classmethod
    def from_env(cls) -> "AiraloSupplier":
        return cls(
            client_id=os.environ.get("AIRALO_CLIENT_ID", ""),
            client_secret=os.environ.get("AIRALO_CLIENT_SECRET", ""),
            api_url=os.environ.get("AIRALO_API_URL", SANDBOX_URL),
            webhook_url=os.environ.get("AIRALO_WEBHOOK_URL") or None,
        )

    # -------------------------------------------------------------------
    # Authentication
    # -------------------------------------------------------------------
    def _token(self, timeout: float) -> str:
        if self._access_token and self._token_expires_at > time.monotonic():
            return self._access_token

        response = self.client.post(
            f"{self.api_url}/token",
            data={
                "grant_type": "client_credentials",
                "client_id": self.client_id,
                "client_secret": self.client_secret,
            },
            headers={"Accept": "application/json"},
            timeout=timeout,
        )
        response.raise_for_status()
        data = _json_object(response).get("data") or {}
        token = data.get("access_token")
        if not token:
            raise AiraloResponseError("Airalo token response carried no access_token")
        self._access_token = token
        self._token_expires_at = time.monotonic() + int(data.get("expires_in", 3600)) - _TOKEN_EXPIRY_BUFFER_SECONDS
        return token

    def _headers(self, timeout: float) -> dict:
        return {
            "Accept": "application/json",
            "Authorization": f"Bearer {self._token(timeout)}",
        }

    # -------------------------------------------------------------------
    # Provisioning
    # -------------------------------------------------------------------
    def purchase(
        self,
        provider_sku: str,
        quantity: int,
        customer_email: str,
        correlation_id: str,
        timeout: float,
    ) -> PurchaseResult:
        form = {
            "package_id": provider_sku,
            "quantity": str(quantity),
            "type": "sim",
            "description": f"{correlation_id} for {customer_email}",
        }
        endpoint = "/orders"
        if self.webhook_url:
            endpoint = "/orders-async"
            form["webhook_url"] = self.webhook_url

        try:
            response = self.client.post(
                f"{self.api_url}{endpoint}",
                data=form,
                headers=self._headers(timeout),
                timeout=timeout,
            )
        except httpx.TimeoutException:
            return PurchaseResult.failed(ErrorType.TIMEOUT, f"Airalo did not answer within {timeout}s")
        except httpx.HTTPStatusError as exc:
            return self._error_result(exc.response)
        except httpx.TransportError as exc:
            return PurchaseResult.failed(ErrorType.NETWORK_ERROR, f"Airalo unreachable: {exc}")
        except AiraloResponseError as exc:
            return PurchaseResult.failed(ErrorType.INVALID_RESPONSE, str(exc))

        if response.is_error:
            return self._error_result(response)

        try:
            body = _json_object(response)
        except AiraloResponseError as exc:
            return PurchaseResult.failed(ErrorType.INVALID_RESPONSE, str(exc))
        data = body.get("data") or {}

        if self.webhook_url:
            request_id = data.get("request_id")
            if not request_id:
                return PurchaseResult.failed(ErrorType.INVALID_RESPONSE, "Async order accepted without request_id")
            return PurchaseResult.accepted(request_id=str(request_id))

        sims = data.get("sims") or []
        if not sims:
            message = (body.get("meta") or {}).get("message") or "Purchase failed: No eSIM data returned"
            return PurchaseResult.failed(ErrorType.INVALID_RESPONSE, message)

        sim = sims[0] if isinstance(sims[0], dict) else {}
        if not sim.get("iccid"):
            logger.error("airalo_sim_without_iccid", correlation_id=correlation_id, provider_order_id=data.get("id"))
            return PurchaseResult.failed(ErrorType.INVALID_RESPONSE, "Airalo returned a SIM without an ICCID")
        return PurchaseResult.completed(
            EsimArtifacts(
                iccid=str(sim["iccid"]),
                activation_code=sim.get("lpa") or sim.get("qrcode"),
                qr_code=sim.get("qrcode_url"),
            ),
            provider_order_id=str(data.get("id")) if data.get("id") is not None else None,
        )

    def _error_result(self, response: httpx.Response) -> PurchaseResult:
        message = f"HTTP {response.status_code}"
        try:
            body = response.json()
            message = (body.get("meta") or {}).get("message") or (body.get("error") or {}).get("message") or message
        except ValueError:
            pass
        logger.warning("airalo_request_failed", status_code=response.status_code, message=message)
        return PurchaseResult.failed(classify_status(response.status_code), message)

    # -------------------------------------------------------------------
    # Usage
    # -------------------------------------------------------------------
    def get_sim_usage(self, iccid: str, timeout: float) -> UsageResult:
        try:
            response = self.client.get(
                f"{self.api_url}/sims/{iccid}/usage",
                headers=self._headers(timeout),
                timeout=timeout,
            )
            response.raise_for_status()
        except httpx.TimeoutException:
            return UsageResult(iccid=iccid, error_type=ErrorType.TIMEOUT, error_message="Usage request timed out")
        except httpx.HTTPStatusError as exc:
            return UsageResult(
                iccid=iccid,
                error_type=classify_status(exc.response.status_code),
                error_message=f"HTTP {exc.response.status_code}",
            )
        except httpx.TransportError as exc:
            return UsageResult(iccid=iccid, error_type=ErrorType.NETWORK_ERROR, error_message=str(exc))
        except AiraloResponseError as exc:
            return UsageResult(iccid=iccid, error_type=ErrorType.INVALID_RESPONSE, error_message=str(exc))

        try:
            data = _json_object(response).get("data") or {}
        except AiraloResponseError as exc:
            return UsageResult(iccid=iccid, error_type=ErrorType.INVALID_RESPONSE, error_message=str(exc))
        return UsageResult(
            iccid=iccid,
            remaining_mb=data.get("remaining"),
            total_mb=data.get("total"),
            status=data.get("status"),
            expires_at=data.get("expired_at"),
        )

    def health_check(self) -> bool:
        try:
            self._token(timeout=5.0)
        except (httpx.HTTPError, AiraloResponseError) as exc:
            logger.warning("airalo_health_check_failed", error=str(exc))
            return False
        return True
