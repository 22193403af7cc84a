from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Any
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from storefront.core.config import Settings, get_settings
from storefront.core.errors import ValidationError
from storefront.core.timeutil import now_utc
from storefront.domain.orders.pricing import ZERO, payment_method_kind
from storefront.domain.orders.service import OrderService
from storefront.domain.orders.status import OrderStatus
from storefront.payments.client import MercadoPagoClient
from storefront.persistence.models import OrderModel

logger = logging.getLogger(__name__)

LOCAL_HOSTS = {"localhost", "127.0.0.1", "0.0.0.0", "::1"}
BACK_URL_KEYS = ("success", "failure", "pending")
WEBHOOK_PATH = "/webhooks/mercadopago"

PIX_ONLY_METHODS = {
    "default_payment_method_id": "pix",
    "excluded_payment_types": [
        {"id": "credit_card"},
        {"id": "debit_card"},
        {"id": "ticket"},
        {"id": "atm"},
    ],
}
CARD_ONLY_EXCLUSIONS = {
    "excluded_payment_methods": [{"id": "pix"}],
    "excluded_payment_types": [
        {"id": "bank_transfer"},
        {"id": "ticket"},
        {"id": "atm"},
    ],
}


class PayerInput(BaseModel):
    model_config = ConfigDict(extra="ignore")

    nome: str = Field(min_length=1)
    email: str = Field(min_length=3)
    cpf: str | None = None


class BackUrls(BaseModel):
    success: str | None = None
    failure: str | None = None
    pending: str | None = None


class CheckoutSessionRequest(BaseModel):
    pedido_id: str
    payer: PayerInput
    back_urls: BackUrls | None = None


@dataclass(frozen=True)
class CheckoutSession:
    preference_id: str
    init_point: str | None
    sandbox_init_point: str | None
    back_urls: dict[str, str]


def to_https(url: str | None) -> str | None:
    if not url or not isinstance(url, str):
        return None
    url = url.strip()
    if url.lower().startswith("http://"):
        return "https://" + url[len("http://"):]
    return url


def is_local_url(url: str | None) -> bool:
    if not url:
        return False
    host = (urlsplit(url).hostname or "").lower()
    return host in LOCAL_HOSTS


def provider_amount(value: Decimal) -> float:
    # Provider API takes JSON numbers with two decimals.
    return float(Decimal(value).quantize(Decimal("0.01")))


class PreferenceBuilder:
    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()

    @property
    def base_url(self) -> str:
        return (to_https(self.settings.site_url) or "").rstrip("/")

    def default_back_urls(self) -> dict[str, str]:
        return {
            "success": f"{self.base_url}/checkout/sucesso",
            "failure": f"{self.base_url}/checkout/erro",
            "pending": f"{self.base_url}/checkout/pendente",
        }

    def back_urls(self, requested: BackUrls | dict | None, origin: str | None = None) -> dict[str, str]:
        if requested is None:
            return self.default_back_urls()
        raw = requested.model_dump() if isinstance(requested, BackUrls) else dict(requested)
        if not self.settings.is_dev and (is_local_url(origin) or any(is_local_url(raw.get(k)) for k in BACK_URL_KEYS)):
            logger.info("local back urls replaced by defaults: origin=%s", origin)
            return self.default_back_urls()

        secured = {key: to_https(raw.get(key)) for key in BACK_URL_KEYS}
        if not all(url and url.lower().startswith("https://") for url in secured.values()):
            return self.default_back_urls()
        return secured  # type: ignore[return-value]

    def notification_url(self) -> str:
        configured = self.settings.mp_notification_url
        if configured:
            return to_https(configured) or configured
        return f"{to_https(self.settings.public_api_url).rstrip('/')}{WEBHOOK_PATH}"

    def payment_methods(self, forma_pagamento: str) -> dict[str, Any]:
        kind = payment_method_kind(forma_pagamento)
        if kind == "pix":
            return dict(PIX_ONLY_METHODS)
        if kind == "card":
            return {
                "default_payment_type_id": "credit_card",
                "installments": self.settings.max_installments,
                **CARD_ONLY_EXCLUSIONS,
            }
        return {"installments": self.settings.max_installments}

    def items(self, order: OrderModel) -> list[dict[str, Any]]:
        currency = self.settings.currency_id
        if order.desconto > ZERO:
            # Discounts cannot be expressed per line; charge the whole order total, shipping included, as one line.
            return [
                {
                    "id": order.numero_pedido,
                    "title": f"Pedido {order.numero_pedido}",
                    "quantity": 1,
                    "unit_price": provider_amount(order.total),
                    "currency_id": currency,
                }
            ]
        lines = []
        for item in order.items:
            line = {
                "id": item.variante_id or item.produto_id,
                "title": item.nome,
                "quantity": item.quantidade,
                "unit_price": provider_amount(item.preco_unitario),
                "currency_id": currency,
            }
            if item.imagem:
                line["picture_url"] = item.imagem
            lines.append(line)
        return lines

    def payer(self, payer: PayerInput) -> dict[str, Any]:
        data: dict[str, Any] = {"name": payer.nome, "email": payer.email}
        digits = re.sub(r"\D", "", payer.cpf or "")
        if digits:
            data["identification"] = {"type": "CPF", "number": digits}
        return data

    def metadata(self, order: OrderModel, payer: PayerInput) -> dict[str, Any]:
        return {
            "pedido_id": order.id,
            "numero_pedido": order.numero_pedido,
            "forma_pagamento": order.forma_pagamento,
            "customer": {"nome": payer.nome, "email": payer.email, "cpf": payer.cpf},
            "shipping": {"frete": format(order.frete, "f"), "endereco": order.endereco_entrega},
            "items": [
                {
                    "produto_id": item.produto_id,
                    "variante_id": item.variante_id,
                    "nome": item.nome,
                    "quantidade": item.quantidade,
                    "preco": format(item.preco_unitario, "f"),
                }
                for item in order.items
            ],
        }

    def build(
        self,
        order: OrderModel,
        payer: PayerInput,
        requested_back_urls: BackUrls | dict | None = None,
        origin: str | None = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "items": self.items(order),
            "payer": self.payer(payer),
            "back_urls": self.back_urls(requested_back_urls, origin),
            "auto_return": "approved",
            "notification_url": self.notification_url(),
            "external_reference": order.numero_pedido,
            "statement_descriptor": self.settings.statement_descriptor[:22],
            "payment_methods": self.payment_methods(order.forma_pagamento),
            "metadata": self.metadata(order, payer),
        }
        if order.frete > ZERO and order.desconto <= ZERO:
            payload["shipments"] = {"cost": provider_amount(order.frete), "mode": "not_specified"}
        return payload


def payable_order(session: Session, pedido_id: str) -> OrderModel:
    order = OrderService(session).get_order(pedido_id)
    if order.status != OrderStatus.PENDENTE.value:
        raise ValidationError(
            f"order {order.numero_pedido} is {order.status}; only pending orders can be paid",
            pedido_id=order.id,
            status=order.status,
        )
    if order.total <= ZERO:
        raise ValidationError("order total must be positive", pedido_id=order.id)
    return order


class CheckoutService:
    def __init__(self, session: Session, client: MercadoPagoClient, settings: Settings | None = None):
        self.session = session
        self.client = client
        self.builder = PreferenceBuilder(settings)

    def create_session(self, request: CheckoutSessionRequest, origin: str | None = None) -> CheckoutSession:
        order = payable_order(self.session, request.pedido_id)
        payload = self.builder.build(order, request.payer, request.back_urls, origin)
        response = self.client.create_preference(payload)

        preference_id = str(response.get("id") or "")
        if not preference_id:
            logger.warning("provider preference response without id for order=%s", order.id)
        order.provider_preference_id = preference_id or None
        order.updated_at = now_utc()
        self.session.flush()
        logger.info("checkout session created: order=%s preference=%s", order.id, preference_id)
        return CheckoutSession(
            preference_id=preference_id,
            init_point=response.get("init_point"),
            sandbox_init_point=response.get("sandbox_init_point"),
            back_urls=payload["back_urls"],
        )
