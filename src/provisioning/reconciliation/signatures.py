"""Webhook authenticity checks.

Two schemes are in use by suppliers:

* plain: hex HMAC-SHA256 of the raw request body (optionally ``sha256=`` prefixed)
* timestamped: ``t=<unix>,v1=<hex>`` where the MAC covers ``"<t>.<body>"``;
  the timestamp must be within the tolerance window to stop replays
"""

import hashlib
import hmac
import time


def compute_signature(payload: bytes, secret: str) -> str:
    return hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()


def verify_signature(payload: bytes, signature: str | None, secret: str) -> bool:
    """Constant-time check of a plain HMAC-SHA256 signature."""
    if not signature or not secret:
        return False
    if signature.startswith("sha256="):
        signature = signature[len("sha256=") :]
    return hmac.compare_digest(compute_signature(payload, secret), signature.strip().lower())


def parse_timestamped_header(header: str | None) -> tuple[int, list[str]] | None:
    """Split ``t=<unix>,v1=<hex>[,v1=<hex>]`` into the timestamp and candidate signatures."""
    if not header:
        return None
    timestamp = None
    signatures = []
    for part in header.split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError:
                return None
        elif key == "v1" and value:
            signatures.append(value)
    if timestamp is None or not signatures:
        return None
    return timestamp, signatures


def compute_timestamped_signature(payload: bytes, secret: str, timestamp: int) -> str:
    signed = f"{timestamp}.".encode() + payload
    return compute_signature(signed, secret)


def verify_timestamped_signature(
    payload: bytes,
    header: str | None,
    secret: str,
    tolerance_seconds: int = 300,
    now: float | None = None,
) -> bool:
    """Check a ``t=...,v1=...`` signature and its freshness."""
    if not secret:
        return False
    parsed = parse_timestamped_header(header)
    if parsed is None:
        return False
    timestamp, signatures = parsed
    now = time.time() if now is None else now
    if abs(now - timestamp) > tolerance_seconds:
        return False
    expected = compute_timestamped_signature(payload, secret, timestamp)
    return any(hmac.compare_digest(expected, candidate) for candidate in signatures)
