"""Supplier callback parsing.

Every supplier's webhook body is reduced to a ``CallbackNotice`` before it
reaches the reconciler. Payload shape:

    {"request_id": "...", "status": "completed" | "failed",
     "data": {"id": ..., "sims": [{"iccid", "qrcode_url", "lpa", "qrcode"}]},
     "error": {"message": "..."}}

Suppliers that send a flat ``data`` object (``iccid``, ``activation_code``,
``qr_code``) are accepted too.
"""

from dataclasses import dataclass

from provisioning.supplier.port import EsimArtifacts

DEFAULT_FAILURE_MESSAGE = "Async order failed"


class MalformedCallback(ValueError):
    """The callback cannot be understood; reject it without touching any order."""


@dataclass(frozen=True)
class CallbackNotice:
    request_id: str
    succeeded: bool
    artifacts: EsimArtifacts | None = None
    provider_order_id: str | None = None
    error_message: str | None = None


def _artifacts(data: dict) -> EsimArtifacts | None:
    sims = data.get("sims")
    if sims:
        sim = sims[0]
        iccid = sim.get("iccid")
        activation_code = sim.get("lpa") or sim.get("qrcode")
        qr_code = sim.get("qrcode_url")
    else:
        iccid = data.get("iccid")
        activation_code = data.get("activation_code") or data.get("lpa")
        qr_code = data.get("qr_code") or data.get("qrcode_url")
    if not iccid or not (activation_code or qr_code):
        return None
    return EsimArtifacts(iccid=str(iccid), activation_code=activation_code, qr_code=qr_code)


def parse_callback(payload) -> CallbackNotice:
    if not isinstance(payload, dict):
        raise MalformedCallback("Callback body must be a JSON object")
    request_id = payload.get("request_id")
    if not request_id:
        raise MalformedCallback("Missing request_id")
    status = payload.get("status")

    if status == "completed":
        data = payload.get("data") or {}
        artifacts = _artifacts(data)
        if artifacts is None:
            raise MalformedCallback("No SIM data in completed callback")
        provider_order_id = data.get("id") if data.get("id") is not None else data.get("provider_order_id")
        return CallbackNotice(
            request_id=str(request_id),
            succeeded=True,
            artifacts=artifacts,
            provider_order_id=str(provider_order_id) if provider_order_id is not None else None,
        )

    if status == "failed":
        error = payload.get("error") or {}
        message = error.get("message") if isinstance(error, dict) else str(error)
        return CallbackNotice(
            request_id=str(request_id),
            succeeded=False,
            error_message=message or DEFAULT_FAILURE_MESSAGE,
        )

    raise MalformedCallback(f"Unknown callback status: {status!r}")
