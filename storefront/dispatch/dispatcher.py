"""Hands paid orders to the downstream automation workflow.

Delivery is at-least-once: transient failures (network, timeout, 429, 5xx)
are retried with capped exponential backoff, any other 4xx stops at once.
A failed dispatch never touches order state; each run is written to
``despachos_pedido`` so an operator can redispatch later.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable
from uuid import uuid4

import httpx
from sqlalchemy.orm import Session

from storefront.core.canonical import canonical_json
from storefront.core.config import Settings, get_settings
from storefront.core.errors import DispatchFailed
from storefront.core.retry import RetryPolicy
from storefront.core.signing import sign_request
from storefront.core.timeutil import now_utc
from storefront.dispatch.payload import build_order_payload
from storefront.persistence import pg
from storefront.persistence.models import DispatchRecordModel, OrderModel

logger = logging.getLogger(__name__)

DISPATCH_SIGNATURE_HEADER = "X-N8N-Signature"


@dataclass(frozen=True)
class DispatchResult:
    pedido_id: str
    request_id: str
    outcome: str
    attempts: int = 0
    response_status: int | None = None
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "pedido_id": self.pedido_id,
            "request_id": self.request_id,
            "outcome": self.outcome,
            "attempts": self.attempts,
            "response_status": self.response_status,
            "last_error": self.last_error,
        }


class OrderDispatcher:
    def __init__(
        self,
        settings: Settings | None = None,
        *,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] | None = None,
    ):
        self.settings = settings or get_settings()
        self.transport = transport
        self.sleep = sleep
        self.retry_policy = RetryPolicy(
            max_attempts=max(1, self.settings.dispatch_max_attempts),
            initial_wait_seconds=self.settings.dispatch_backoff_initial_seconds,
            max_wait_seconds=self.settings.dispatch_backoff_max_seconds,
            jitter_seconds=self.settings.dispatch_backoff_jitter_seconds,
        )

    @property
    def enabled(self) -> bool:
        return bool(self.settings.dispatch_url)

    def headers_for(self, pedido_id: str, request_id: str) -> dict[str, str]:
        headers = {"Content-Type": "application/json", "X-Request-Id": request_id}
        if self.settings.dispatch_token:
            headers["Authorization"] = f"Bearer {self.settings.dispatch_token}"
        if self.settings.dispatch_secret:
            signature, ts = sign_request(self.settings.dispatch_secret, pedido_id, request_id)
            headers[DISPATCH_SIGNATURE_HEADER] = signature
            headers["X-Request-Timestamp"] = ts
        else:
            headers["X-Request-Timestamp"] = str(int(now_utc().timestamp()))
        return headers

    def dispatch(self, payload: dict[str, Any], request_id: str | None = None) -> DispatchResult:
        pedido_id = str(payload["pedido_id"])
        request_id = request_id or str(uuid4())
        if not self.enabled:
            logger.info("dispatch skipped for order %s: no downstream url configured", pedido_id)
            return DispatchResult(pedido_id, request_id, "skipped")

        body = canonical_json(payload)
        headers = self.headers_for(pedido_id, request_id)
        attempts = 0

        def _attempt(attempt_number: int) -> httpx.Response:
            nonlocal attempts
            attempts = attempt_number
            with httpx.Client(timeout=self.settings.dispatch_timeout_seconds, transport=self.transport) as client:
                response = client.post(self.settings.dispatch_url, content=body, headers=headers)
            response.raise_for_status()
            return response

        try:
            response = self.retry_policy.call(_attempt, operation=f"dispatch order {pedido_id}", sleep=self.sleep)
        except httpx.HTTPStatusError as exc:
            raise DispatchFailed(
                f"downstream returned {exc.response.status_code}: {exc.response.text[:200]}",
                attempts=attempts,
                status=exc.response.status_code,
            ) from exc
        except httpx.HTTPError as exc:
            raise DispatchFailed(f"{type(exc).__name__}: {exc}", attempts=attempts) from exc

        logger.info("order %s dispatched: status=%s attempts=%s", pedido_id, response.status_code, attempts)
        return DispatchResult(pedido_id, request_id, "delivered", attempts=attempts, response_status=response.status_code)


def _record(session: Session, result: DispatchResult) -> None:
    session.add(
        DispatchRecordModel(
            pedido_id=result.pedido_id,
            request_id=result.request_id,
            outcome=result.outcome,
            attempts=result.attempts,
            response_status=result.response_status,
            last_error=result.last_error,
            created_at=now_utc(),
        )
    )
    session.flush()


def dispatch_order(session: Session, order: OrderModel, dispatcher: OrderDispatcher) -> DispatchResult:
    request_id = str(uuid4())
    try:
        result = dispatcher.dispatch(build_order_payload(order), request_id=request_id)
    except DispatchFailed as exc:
        logger.error(
            "order %s dispatch failed after %s attempt(s): %s",
            order.id,
            exc.attempts,
            exc.last_error,
        )
        result = DispatchResult(
            order.id,
            request_id,
            "failed",
            attempts=exc.attempts,
            response_status=exc.status,
            last_error=exc.last_error,
        )
    _record(session, result)
    return result


def dispatch_in_own_transaction(order_id: str, dispatcher: OrderDispatcher) -> DispatchResult | None:
    with pg.session_scope() as session:
        order = session.get(OrderModel, order_id)
        if order is None:
            logger.warning("dispatch requested for unknown order %s", order_id)
            return None
        return dispatch_order(session, order, dispatcher)


def get_dispatcher() -> OrderDispatcher:
    return OrderDispatcher()
