from __future__ import annotations

import hmac
import time
from dataclasses import dataclass
from hashlib import sha256

from storefront.core.errors import AuthError

SIGNATURE_HEADER = "X-Signature"
REQUEST_ID_HEADER = "X-Request-Id"


@dataclass(frozen=True)
class ParsedSignature:
    ts: str
    v1: str


def build_manifest(resource_id: str, request_id: str, ts: str) -> str:
    # Provider lowercases alphanumeric ids before signing.
    return f"id:{str(resource_id).lower()};request-id:{request_id};ts:{ts};"


def sign_manifest(secret: str, manifest: str) -> str:
    return hmac.new(secret.encode("utf-8"), manifest.encode("utf-8"), sha256).hexdigest()


def format_signature_header(ts: str, v1: str) -> str:
    return f"ts={ts},v1={v1}"


def sign_request(secret: str, resource_id: str, request_id: str, ts: str | None = None) -> tuple[str, str]:
    ts = ts or str(int(time.time()))
    v1 = sign_manifest(secret, build_manifest(resource_id, request_id, ts))
    return format_signature_header(ts, v1), ts


def parse_signature_header(value: str | None) -> ParsedSignature:
    if not value or not value.strip():
        raise AuthError("missing signature", reason="missing_signature")
    parts: dict[str, str] = {}
    for chunk in value.split(","):
        key, sep, item = chunk.strip().partition("=")
        if sep and key.strip() and item.strip():
            parts[key.strip()] = item.strip()
    ts = parts.get("ts")
    v1 = parts.get("v1")
    if not ts or not v1:
        raise AuthError("invalid signature format", reason="invalid_signature_format")
    return ParsedSignature(ts=ts, v1=v1)


def check_freshness(ts: str, tolerance_seconds: int, now: float | None = None) -> None:
    try:
        signed_at = int(ts)
    except ValueError:
        raise AuthError("signature timestamp is not a unix time", reason="invalid_signature_format") from None
    if signed_at > 10**11:
        # Millisecond timestamps.
        signed_at //= 1000
    age = (time.time() if now is None else now) - signed_at
    if abs(age) > tolerance_seconds:
        raise AuthError(
            f"signature timestamp outside the {tolerance_seconds}s window",
            reason="stale_signature",
            age_seconds=int(age),
        )


def verify_signature(
    secret: str | None,
    signature_header: str | None,
    request_id: str | None,
    resource_id: str | None,
    *,
    tolerance_seconds: int | None = None,
    now: float | None = None,
) -> ParsedSignature:
    if not secret:
        raise AuthError("webhook secret is not configured; refusing unsigned notification", reason="secret_not_configured")
    parsed = parse_signature_header(signature_header)
    if not request_id or not request_id.strip():
        raise AuthError("missing request id", reason="missing_request_id")
    if not resource_id:
        raise AuthError("notification has no resource id to verify", reason="missing_resource_id")

    expected = sign_manifest(secret, build_manifest(resource_id, request_id.strip(), parsed.ts))
    if not hmac.compare_digest(expected, parsed.v1.lower()):
        raise AuthError("signature mismatch", reason="signature_mismatch")
    if tolerance_seconds:
        check_freshness(parsed.ts, tolerance_seconds, now)
    return parsed
