"""Maps the provider's authoritative payment state onto local orders.

The provider payment id is the idempotency key: every delivery re-fetches
the current payment, appends an audit event, and applies the mapped order
status only when the transition table allows it. Replays and out-of-order
deliveries therefore converge on the same final state.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from decimal import Decimal
from typing import Any

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.orm import Session

from storefront.core.config import Settings, get_settings
from storefront.core.timeutil import now_utc
from storefront.domain.orders.commands import ReconstructedItem
from storefront.domain.orders.pricing import to_money
from storefront.domain.orders.service import OrderService
from storefront.domain.orders.status import OrderStatus, map_provider_status
from storefront.payments.client import MercadoPagoClient
from storefront.payments.webhooks import TOPIC_MERCHANT_ORDER, TOPIC_PAYMENT, Notification
from storefront.persistence import pg
from storefront.persistence.models import OrderModel, PaymentEventModel

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReconcileOutcome:
    payment_id: str
    provider_status: str | None
    action: str
    pedido_id: str | None = None
    previous_status: str | None = None
    order_status: str | None = None
    finalized: bool = False
    pix: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _metadata(payment: dict[str, Any]) -> dict[str, Any]:
    metadata = payment.get("metadata")
    return metadata if isinstance(metadata, dict) else {}


def pix_details(payment: dict[str, Any]) -> dict[str, Any] | None:
    poi = payment.get("point_of_interaction")
    data = poi.get("transaction_data") if isinstance(poi, dict) else None
    if not isinstance(data, dict):
        return None
    return {
        "qr_code": data.get("qr_code"),
        "qr_code_base64": data.get("qr_code_base64"),
        "ticket_url": data.get("ticket_url"),
        "expires_at": payment.get("date_of_expiration"),
    }


class PaymentReconciler:
    def __init__(self, session: Session, client: MercadoPagoClient, settings: Settings | None = None):
        self.session = session
        self.client = client
        self.settings = settings or get_settings()
        self.orders = OrderService(session, self.settings)

    def _locate_order(self, payment_id: str, payment: dict[str, Any]) -> OrderModel | None:
        if payment_id:
            # An order already bound to this payment wins, including rebuilt ones.
            bound = self.session.scalars(
                select(OrderModel).where(OrderModel.provider_payment_id == payment_id).limit(1)
            ).first()
            if bound is not None:
                return bound
        pedido_id = _metadata(payment).get("pedido_id")
        if pedido_id:
            order = self.session.get(OrderModel, str(pedido_id))
            if order is not None:
                return order
        reference = payment.get("external_reference") or _metadata(payment).get("numero_pedido")
        if reference:
            return self.orders.find_by_number(str(reference))
        return None

    def _record_event(self, payment_id: str, payment: dict[str, Any], order: OrderModel | None, source: str) -> None:
        amount = payment.get("transaction_amount")
        self.session.add(
            PaymentEventModel(
                provider_payment_id=payment_id,
                status=payment.get("status"),
                status_detail=payment.get("status_detail"),
                amount=to_money(amount) if amount is not None else None,
                payment_method_id=payment.get("payment_method_id"),
                pedido_id=order.id if order else None,
                numero_pedido=order.numero_pedido if order else payment.get("external_reference"),
                source=source,
                raw=payment,
                created_at=now_utc(),
            )
        )
        self.session.flush()

    def _reconstruct(self, payment_id: str, payment: dict[str, Any]) -> OrderModel | None:
        metadata = _metadata(payment)
        raw_items = metadata.get("items")
        if not isinstance(raw_items, list) or not raw_items:
            return None
        try:
            items = [ReconstructedItem.model_validate(item) for item in raw_items]
        except PydanticValidationError as exc:
            logger.error("payment %s metadata items unusable for reconstruction: %s", payment_id, exc)
            return None
        customer = metadata.get("customer") if isinstance(metadata.get("customer"), dict) else None
        if customer is None and isinstance(payment.get("payer"), dict):
            customer = {"email": payment["payer"].get("email"), "nome": payment["payer"].get("first_name")}
        shipping = metadata.get("shipping") if isinstance(metadata.get("shipping"), dict) else None
        return self.orders.reconstruct_order(
            numero_pedido=metadata.get("numero_pedido") or payment.get("external_reference"),
            forma_pagamento=str(metadata.get("forma_pagamento") or payment.get("payment_method_id") or "mercado_pago"),
            items=items,
            amount_paid=Decimal(str(payment.get("transaction_amount") or 0)),
            customer=customer,
            shipping=shipping,
        )

    def apply_payment(
        self,
        payment: dict[str, Any],
        source: str = "webhook",
        order: OrderModel | None = None,
    ) -> ReconcileOutcome:
        payment_id = str(payment.get("id") or "")
        provider_status = payment.get("status")
        pix = pix_details(payment)
        if order is None:
            order = self._locate_order(payment_id, payment)
        self._record_event(payment_id, payment, order, source)

        target = map_provider_status(provider_status)
        if target is None:
            logger.warning("unmapped provider status %r for payment %s; order untouched", provider_status, payment_id)
            return ReconcileOutcome(
                payment_id, provider_status, "unmapped", pedido_id=order.id if order else None, pix=pix
            )

        action_prefix = ""
        if order is None:
            if target != OrderStatus.PAGO:
                logger.warning("payment %s (%s) matches no local order", payment_id, provider_status)
                return ReconcileOutcome(payment_id, provider_status, "order_not_found", pix=pix)
            order = self._reconstruct(payment_id, payment)
            if order is None:
                logger.error("approved payment %s matches no order and cannot be reconstructed", payment_id)
                return ReconcileOutcome(payment_id, provider_status, "order_not_found", pix=pix)
            order.provider_payment_id = payment_id
            action_prefix = "reconstructed:"

        transition = self.orders.transition(order, target, cause=f"{source}:payment={payment_id}")
        if transition.applied and target == OrderStatus.PAGO:
            order.provider_payment_id = payment_id
            amount = payment.get("transaction_amount")
            if amount is not None and to_money(amount) != order.total and not action_prefix:
                self.orders.flag_for_review(order, f"amount_mismatch:paid={to_money(amount)},total={order.total}")
            self.session.flush()

        return ReconcileOutcome(
            payment_id=payment_id,
            provider_status=provider_status,
            action=action_prefix + transition.reason,
            pedido_id=order.id,
            previous_status=transition.previous,
            order_status=order.status,
            finalized=transition.applied and target == OrderStatus.PAGO,
            pix=pix,
        )

    def reconcile_payment(self, payment_id: str, source: str = "webhook") -> ReconcileOutcome:
        payment = self.client.get_payment(str(payment_id))
        payment.setdefault("id", payment_id)
        outcome = self.apply_payment(payment, source=source)
        logger.info(
            "payment reconciled: payment=%s status=%s order=%s action=%s",
            outcome.payment_id,
            outcome.provider_status,
            outcome.pedido_id,
            outcome.action,
        )
        return outcome


def reconcile_in_own_transaction(client: MercadoPagoClient, payment_id: str, source: str) -> ReconcileOutcome:
    with pg.session_scope() as session:
        return PaymentReconciler(session, client).reconcile_payment(payment_id, source=source)


def process_notification(client: MercadoPagoClient, notification: Notification, source: str = "webhook") -> list[ReconcileOutcome]:
    if notification.topic == TOPIC_PAYMENT:
        return [reconcile_in_own_transaction(client, notification.resource_id, source)]

    if notification.topic != TOPIC_MERCHANT_ORDER:
        return []

    merchant_order = client.get_merchant_order(notification.resource_id)
    payments = merchant_order.get("payments") if isinstance(merchant_order.get("payments"), list) else []
    outcomes: list[ReconcileOutcome] = []
    failures: list[Exception] = []
    for entry in payments:
        payment_id = entry.get("id") if isinstance(entry, dict) else None
        if payment_id is None:
            continue
        try:
            outcomes.append(reconcile_in_own_transaction(client, str(payment_id), f"{source}:merchant_order"))
        except Exception as exc:  # re-raised below
            logger.error(
                "merchant_order %s: payment %s failed to reconcile: %s",
                notification.resource_id,
                payment_id,
                exc,
            )
            failures.append(exc)
    if failures:
        # Surface the failure so the provider redelivers; finished payments replay as no-ops.
        raise failures[0]
    return outcomes
