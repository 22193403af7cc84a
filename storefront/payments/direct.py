"""Transparent checkout: charge a pending order through ``POST /v1/payments``.

The browser supplies a card token (or picks PIX); the amount always comes
from the stored order total. The provider's answer goes through the payment
reconciler, so order status, audit events and stock release follow the same
rules as a webhook delivery.
"""

from __future__ import annotations

import logging
import re
from typing import Any

from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from storefront.core.config import Settings, get_settings
from storefront.core.errors import PaymentProviderError, ValidationError
from storefront.payments.client import MercadoPagoClient
from storefront.payments.preference import PayerInput, PreferenceBuilder, payable_order, provider_amount
from storefront.payments.reconciler import PaymentReconciler, ReconcileOutcome
from storefront.persistence import pg
from storefront.persistence.models import OrderModel

logger = logging.getLogger(__name__)

PIX_METHOD = "pix"


class DirectPayer(PayerInput):
    nome: str | None = None


class DirectPaymentRequest(BaseModel):
    pedido_id: str
    payment_method_id: str = Field(min_length=1)
    token: str | None = None
    installments: int = Field(default=1, ge=1)
    issuer_id: str | None = None
    payer: DirectPayer


def is_pix(request: DirectPaymentRequest) -> bool:
    return request.payment_method_id.strip().lower() == PIX_METHOD


class DirectPaymentService:
    def __init__(self, session: Session, client: MercadoPagoClient, settings: Settings | None = None):
        self.session = session
        self.client = client
        self.settings = settings or get_settings()
        self.builder = PreferenceBuilder(self.settings)

    def validate(self, request: DirectPaymentRequest) -> None:
        if is_pix(request):
            return
        if not (request.token or "").strip():
            raise ValidationError("card payments need a card token", payment_method_id=request.payment_method_id)
        if request.installments > self.settings.max_installments:
            raise ValidationError(
                f"at most {self.settings.max_installments} installments are allowed",
                installments=request.installments,
            )

    def payer(self, payer: DirectPayer) -> dict[str, Any]:
        data: dict[str, Any] = {"email": payer.email}
        if payer.nome:
            data["first_name"] = payer.nome
        digits = re.sub(r"\D", "", payer.cpf or "")
        if digits:
            data["identification"] = {"type": "CPF", "number": digits}
        return data

    def build(self, order: OrderModel, request: DirectPaymentRequest) -> dict[str, Any]:
        metadata = self.builder.metadata(order, request.payer)
        metadata["source"] = "direct"
        payload: dict[str, Any] = {
            "transaction_amount": provider_amount(order.total),
            "description": f"Pedido {order.numero_pedido}",
            "payment_method_id": PIX_METHOD if is_pix(request) else request.payment_method_id,
            "payer": self.payer(request.payer),
            "external_reference": order.numero_pedido,
            "notification_url": self.builder.notification_url(),
            "statement_descriptor": self.settings.statement_descriptor[:22],
            "metadata": metadata,
        }
        if not is_pix(request):
            payload.update(
                token=request.token,
                installments=request.installments,
                binary_mode=True,
                capture=True,
            )
            if request.issuer_id:
                payload["issuer_id"] = request.issuer_id
        return payload

    def pay(self, request: DirectPaymentRequest, idempotency_key: str | None = None) -> tuple[ReconcileOutcome, dict[str, Any]]:
        self.validate(request)
        order = payable_order(self.session, request.pedido_id)
        payment = self.client.create_payment(self.build(order, request), idempotency_key=idempotency_key)
        if not payment.get("id"):
            raise PaymentProviderError("payment provider answered without a payment id", body=payment)

        outcome = PaymentReconciler(self.session, self.client, self.settings).apply_payment(
            payment, source="direct", order=order
        )
        logger.info(
            "direct payment created: order=%s payment=%s status=%s action=%s",
            order.id,
            outcome.payment_id,
            outcome.provider_status,
            outcome.action,
        )
        return outcome, payment


def pay_in_own_transaction(
    client: MercadoPagoClient,
    request: DirectPaymentRequest,
    idempotency_key: str | None = None,
) -> tuple[ReconcileOutcome, dict[str, Any]]:
    with pg.session_scope() as session:
        return DirectPaymentService(session, client).pay(request, idempotency_key=idempotency_key)
