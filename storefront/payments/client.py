from __future__ import annotations

import logging
from typing import Any, Callable
from uuid import uuid4

import httpx

from storefront.core.config import Settings, get_settings
from storefront.core.errors import PaymentProviderError
from storefront.core.retry import RetryPolicy

logger = logging.getLogger(__name__)


def _response_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


class MercadoPagoClient:
    def __init__(
        self,
        settings: Settings | None = None,
        *,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] | None = None,
    ):
        self.settings = settings or get_settings()
        self.base_url = self.settings.mp_api_base_url.rstrip("/")
        self.timeout = max(1.0, float(self.settings.mp_timeout_seconds))
        self.transport = transport
        self.sleep = sleep
        self.retry_policy = RetryPolicy(max_attempts=max(1, self.settings.mp_max_attempts))

    def _headers(self, idempotency_key: str | None = None) -> dict[str, str]:
        if not self.settings.mp_access_token:
            raise PaymentProviderError("payment provider access token is not configured")
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.settings.mp_access_token}",
        }
        if idempotency_key:
            headers["X-Idempotency-Key"] = idempotency_key
        return headers

    def _request(
        self,
        method: str,
        path: str,
        *,
        json_body: dict[str, Any] | None = None,
        idempotency_key: str | None = None,
    ) -> dict[str, Any]:
        # Same idempotency key on every retry so a POST is never applied twice.
        if idempotency_key is None and method.upper() == "POST":
            idempotency_key = str(uuid4())
        headers = self._headers(idempotency_key=idempotency_key)
        url = f"{self.base_url}{path}"

        def _attempt(_attempt_number: int) -> httpx.Response:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                response = client.request(method, url, headers=headers, json=json_body)
            response.raise_for_status()
            return response

        try:
            response = self.retry_policy.call(_attempt, operation=f"mercadopago {method} {path}", sleep=self.sleep)
        except httpx.HTTPStatusError as exc:
            body = _response_body(exc.response)
            logger.warning("provider error %s on %s %s: %s", exc.response.status_code, method, path, body)
            raise PaymentProviderError(
                f"payment provider returned {exc.response.status_code}",
                status=exc.response.status_code,
                body=body,
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning("provider unreachable on %s %s: %s", method, path, exc)
            raise PaymentProviderError(f"payment provider unreachable: {exc}") from exc

        payload = _response_body(response)
        if not isinstance(payload, dict):
            raise PaymentProviderError("payment provider returned a non-object payload", status=response.status_code, body=payload)
        return payload

    def create_preference(self, payload: dict[str, Any]) -> dict[str, Any]:
        return self._request("POST", "/checkout/preferences", json_body=payload)

    def create_payment(self, payload: dict[str, Any], idempotency_key: str | None = None) -> dict[str, Any]:
        return self._request("POST", "/v1/payments", json_body=payload, idempotency_key=idempotency_key)

    def get_payment(self, payment_id: str) -> dict[str, Any]:
        return self._request("GET", f"/v1/payments/{payment_id}")

    def get_merchant_order(self, merchant_order_id: str) -> dict[str, Any]:
        return self._request("GET", f"/merchant_orders/{merchant_order_id}")


def get_payment_client() -> MercadoPagoClient:
    return MercadoPagoClient()
