from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Mapping
from urllib.parse import parse_qs

from storefront.core.config import Settings
from storefront.core.errors import ValidationError
from storefront.core.signing import REQUEST_ID_HEADER, SIGNATURE_HEADER, ParsedSignature, verify_signature

TOPIC_PAYMENT = "payment"
TOPIC_MERCHANT_ORDER = "merchant_order"
KNOWN_TOPICS = {TOPIC_PAYMENT, TOPIC_MERCHANT_ORDER}

_RESOURCE_ID = re.compile(r"(payments|merchant_orders)/(\w+)")


@dataclass(frozen=True)
class Notification:
    topic: str
    resource_id: str
    signed_id: str

    @property
    def is_known(self) -> bool:
        return self.topic in KNOWN_TOPICS


def decode_body(raw: bytes, content_type: str | None) -> dict[str, Any]:
    if not raw:
        return {}
    text = raw.decode("utf-8", errors="replace")
    if content_type and "application/x-www-form-urlencoded" in content_type:
        return {key: values[-1] for key, values in parse_qs(text).items()}
    try:
        body = json.loads(text)
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def _topic_from(query: Mapping[str, str], body: Mapping[str, Any]) -> str | None:
    topic = query.get("type") or query.get("topic") or body.get("type") or body.get("topic")
    if not topic:
        action = str(body.get("action") or "")
        if action.startswith("payment."):
            topic = TOPIC_PAYMENT
    return str(topic).strip().lower() if topic else None


def parse_notification(query: Mapping[str, str], body: Mapping[str, Any]) -> Notification:
    data = body.get("data") if isinstance(body.get("data"), dict) else {}
    signed_id = query.get("data.id") or data.get("id") or query.get("id") or body.get("id")
    resource_id = signed_id

    resource = query.get("resource") or body.get("resource")
    topic = _topic_from(query, body)
    if isinstance(resource, str):
        match = _RESOURCE_ID.search(resource)
        if match:
            resource_id = resource_id or match.group(2)
            topic = topic or (TOPIC_PAYMENT if match.group(1) == "payments" else TOPIC_MERCHANT_ORDER)
        elif resource.isdigit():
            resource_id = resource_id or resource

    if not resource_id:
        raise ValidationError("notification carries no resource id", topic=topic)
    resource_id = str(resource_id)
    return Notification(
        topic=topic or TOPIC_PAYMENT,
        resource_id=resource_id,
        signed_id=str(signed_id or resource_id),
    )


def authenticate(settings: Settings, headers: Mapping[str, str], notification: Notification) -> ParsedSignature:
    return verify_signature(
        settings.mp_webhook_secret,
        headers.get(SIGNATURE_HEADER),
        headers.get(REQUEST_ID_HEADER),
        notification.signed_id,
        tolerance_seconds=settings.mp_signature_tolerance_seconds,
    )
