from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from storefront.core.config import Settings, get_settings
from storefront.core.errors import InsufficientStock, NotFound, StorefrontError, ValidationError
from storefront.core.timeutil import now_utc
from storefront.domain.coupons.validator import CouponGrant, CouponValidator
from storefront.domain.inventory.ledger import StockLedger
from storefront.domain.orders.commands import CreateOrderRequest, ReconstructedItem
from storefront.domain.orders.pricing import ZERO, line_subtotal, method_discount_percent, price_order, to_money
from storefront.domain.orders.status import STOCK_RELEASING, OrderStatus, can_transition
from storefront.persistence.models import (
    CustomerModel,
    OrderItemModel,
    OrderModel,
    ProductModel,
    ProductVariantModel,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransitionOutcome:
    order_id: str
    previous: str
    target: str
    applied: bool
    reason: str
    released_lines: int = 0


def generate_order_number(now: datetime | None = None) -> str:
    now = now or now_utc()
    return f"{now:%Y%m%d%H%M%S}{secrets.randbelow(10_000):04d}"


class OrderService:
    def __init__(self, session: Session, settings: Settings | None = None):
        self.session = session
        self.settings = settings or get_settings()
        self.ledger = StockLedger(session)

    def get_order(self, order_id: str) -> OrderModel:
        order = self.session.get(OrderModel, order_id)
        if order is None:
            raise NotFound(f"order {order_id} not found", pedido_id=order_id)
        return order

    def find_by_number(self, numero_pedido: str) -> OrderModel | None:
        return self.session.scalar(select(OrderModel).where(OrderModel.numero_pedido == numero_pedido))

    def _number_taken(self, numero_pedido: str) -> bool:
        return self.session.scalar(
            select(OrderModel.id).where(OrderModel.numero_pedido == numero_pedido)
        ) is not None

    def _allocate_order_number(self, requested: str | None) -> str:
        if requested:
            if self._number_taken(requested):
                raise ValidationError(f"order number {requested} already exists", numero_pedido=requested)
            return requested
        for _ in range(max(1, self.settings.order_number_max_attempts)):
            candidate = generate_order_number()
            if not self._number_taken(candidate):
                return candidate
        raise StorefrontError("could not allocate a unique order number")

    def _load_variants(self, variant_ids: Iterable[str]) -> dict[str, ProductVariantModel]:
        ids = sorted(set(variant_ids))
        rows = self.session.scalars(
            select(ProductVariantModel).where(ProductVariantModel.id.in_(ids))
        ).all()
        return {row.id: row for row in rows}

    def _check_advisory_totals(self, request: CreateOrderRequest, subtotal: Decimal, total: Decimal) -> None:
        if request.subtotal is not None and to_money(request.subtotal) != subtotal:
            logger.warning("client subtotal ignored: client=%s server=%s", request.subtotal, subtotal)
        if request.total is not None and to_money(request.total) != total:
            logger.warning("client total ignored: client=%s server=%s", request.total, total)
        if request.status and request.status != OrderStatus.PENDENTE.value:
            logger.info("client status %r ignored; orders start as pendente", request.status)

    def create_order(self, request: CreateOrderRequest) -> OrderModel:
        variants = self._load_variants(item.variante_id for item in request.itens)
        for item in request.itens:
            variant = variants.get(item.variante_id)
            if variant is None or not variant.ativo or not variant.product.ativo:
                raise ValidationError(f"variant {item.variante_id} is not available", variante_id=item.variante_id)
            if item.produto_id and item.produto_id != variant.produto_id:
                raise ValidationError(
                    f"variant {item.variante_id} does not belong to product {item.produto_id}",
                    variante_id=item.variante_id,
                    produto_id=item.produto_id,
                )

        if request.cliente_id and self.session.get(CustomerModel, request.cliente_id) is None:
            raise ValidationError(f"customer {request.cliente_id} not found", cliente_id=request.cliente_id)

        coupon: CouponGrant | None = None
        if request.cupom:
            coupon = CouponValidator(self.session).validate(request.cupom)

        breakdown = price_order(
            [(variants[item.variante_id].product.preco, item.quantidade) for item in request.itens],
            shipping=request.frete,
            coupon_percent=coupon.percent if coupon else ZERO,
            method_percent=method_discount_percent(request.forma_pagamento, self.settings.payment_method_discounts),
        )
        self._check_advisory_totals(request, breakdown.subtotal, breakdown.total)

        now = now_utc()
        with self.session.begin_nested():
            order = OrderModel(
                numero_pedido=self._allocate_order_number(request.numero_pedido),
                cliente_id=request.cliente_id,
                subtotal=breakdown.subtotal,
                desconto=breakdown.discount,
                frete=breakdown.shipping,
                total=breakdown.total,
                status=OrderStatus.PENDENTE.value,
                forma_pagamento=request.forma_pagamento,
                cupom=coupon.code if coupon else None,
                endereco_entrega=request.endereco_entrega,
                created_at=now,
                updated_at=now,
            )
            self.session.add(order)

            for item in request.itens:
                variant = variants[item.variante_id]
                reservation = self.ledger.reserve(variant.id, item.quantidade)
                if not reservation.ok:
                    raise InsufficientStock(variant.id, reservation.requested, reservation.available)
                product = variant.product
                order.items.append(
                    OrderItemModel(
                        produto_id=product.id,
                        variante_id=variant.id,
                        nome=product.nome,
                        imagem=product.imagem,
                        tamanho=variant.tamanho,
                        cor=variant.cor,
                        quantidade=item.quantidade,
                        preco_unitario=to_money(product.preco),
                        subtotal=line_subtotal(product.preco, item.quantidade),
                        stock_reserved=True,
                    )
                )
            self.session.flush()

        logger.info(
            "order created: id=%s numero=%s items=%s total=%s",
            order.id,
            order.numero_pedido,
            len(order.items),
            order.total,
        )
        return order

    def release_stock(self, order: OrderModel) -> int:
        released = 0
        for item in order.items:
            if not item.stock_reserved or not item.variante_id:
                continue
            self.ledger.release(item.variante_id, item.quantidade)
            item.stock_reserved = False
            released += 1
        self.session.flush()
        return released

    def transition(self, order: OrderModel, target: OrderStatus | str, cause: str = "") -> TransitionOutcome:
        current = OrderStatus(order.status)
        target = OrderStatus(target)
        if current == target:
            return TransitionOutcome(order.id, current.value, target.value, applied=False, reason="unchanged")
        if not can_transition(current, target):
            logger.warning(
                "transition rejected: order=%s %s -> %s (%s)", order.id, current.value, target.value, cause
            )
            return TransitionOutcome(order.id, current.value, target.value, applied=False, reason="not_allowed")

        result = self.session.execute(
            update(OrderModel)
            .where(OrderModel.id == order.id)
            .where(OrderModel.status == current.value)
            .values(status=target.value, updated_at=now_utc())
            .execution_options(synchronize_session=False)
        )
        self.session.refresh(order, attribute_names=["status", "updated_at"])
        if result.rowcount != 1:
            logger.info("transition lost race: order=%s now=%s wanted=%s", order.id, order.status, target.value)
            return TransitionOutcome(order.id, current.value, target.value, applied=False, reason="concurrent_update")

        released = self.release_stock(order) if target in STOCK_RELEASING else 0
        logger.info(
            "order transitioned: id=%s %s -> %s released_lines=%s cause=%s",
            order.id,
            current.value,
            target.value,
            released,
            cause,
        )
        return TransitionOutcome(order.id, current.value, target.value, applied=True, reason="applied", released_lines=released)

    def cancel_order(self, order_id: str, cause: str = "manual") -> TransitionOutcome:
        order = self.get_order(order_id)
        outcome = self.transition(order, OrderStatus.CANCELADO, cause=cause)
        if outcome.reason == "not_allowed":
            raise ValidationError(
                f"order {order.numero_pedido} cannot be cancelled from status {order.status}",
                pedido_id=order.id,
                status=order.status,
            )
        return outcome

    def flag_for_review(self, order: OrderModel, reason: str) -> None:
        order.needs_review = True
        order.review_reason = f"{order.review_reason};{reason}" if order.review_reason else reason
        order.updated_at = now_utc()
        self.session.flush()
        logger.warning("order flagged for review: id=%s reason=%s", order.id, reason)

    def upsert_customer(self, data: dict[str, Any]) -> CustomerModel | None:
        email = str(data.get("email") or "").strip().lower()
        if not email:
            return None
        customer = self.session.scalar(select(CustomerModel).where(CustomerModel.email == email))
        if customer is None:
            customer = CustomerModel(email=email, nome=str(data.get("nome") or email), created_at=now_utc())
            self.session.add(customer)
        for field in ("cpf", "telefone"):
            if data.get(field):
                setattr(customer, field, str(data[field]))
        self.session.flush()
        return customer

    def reconstruct_order(
        self,
        numero_pedido: str | None,
        forma_pagamento: str,
        items: list[ReconstructedItem],
        amount_paid: Decimal,
        customer: dict[str, Any] | None = None,
        shipping: dict[str, Any] | None = None,
    ) -> OrderModel:
        """Rebuild a pending order from payment metadata when no local order exists.

        Reservations go through the stock ledger; lines that cannot be reserved
        keep stock untouched and flag the order for manual reconciliation.
        """
        if not items:
            raise ValidationError("payment metadata has no items to rebuild the order from")
        shipping = shipping or {}
        now = now_utc()
        short: list[str] = []

        with self.session.begin_nested():
            owner = self.upsert_customer(customer or {})
            frete = to_money(shipping.get("frete") or 0)
            subtotal = sum((line_subtotal(item.preco, item.quantidade) for item in items), ZERO)
            paid = to_money(amount_paid)
            desconto = min(max(subtotal + frete - paid, ZERO), subtotal)
            address = shipping.get("endereco") or shipping or None
            if isinstance(address, str):
                address = {"endereco": address}
            number = numero_pedido if numero_pedido and not self._number_taken(numero_pedido) else None
            order = OrderModel(
                numero_pedido=self._allocate_order_number(number),
                cliente_id=owner.id if owner else None,
                subtotal=subtotal,
                desconto=desconto,
                frete=frete,
                total=subtotal - desconto + frete,
                status=OrderStatus.PENDENTE.value,
                forma_pagamento=forma_pagamento,
                endereco_entrega=address,
                created_at=now,
                updated_at=now,
            )
            self.session.add(order)

            for item in items:
                variant = self.session.get(ProductVariantModel, item.variante_id) if item.variante_id else None
                reserved = False
                if variant is None:
                    short.append(item.variante_id or item.produto_id)
                else:
                    reserved = self.ledger.reserve(variant.id, item.quantidade).ok
                    if not reserved:
                        short.append(variant.id)
                product = self.session.get(ProductModel, item.produto_id)
                order.items.append(
                    OrderItemModel(
                        produto_id=item.produto_id,
                        variante_id=variant.id if variant else item.variante_id,
                        nome=item.nome or (product.nome if product else item.produto_id),
                        imagem=product.imagem if product else None,
                        tamanho=variant.tamanho if variant else None,
                        cor=variant.cor if variant else None,
                        quantidade=item.quantidade,
                        preco_unitario=to_money(item.preco),
                        subtotal=line_subtotal(item.preco, item.quantidade),
                        stock_reserved=reserved,
                    )
                )
            self.session.flush()

        if short:
            self.flag_for_review(order, "insufficient_stock:" + ",".join(short))
        if order.total != paid:
            self.flag_for_review(order, f"amount_mismatch:paid={paid},total={order.total}")
        logger.warning("order reconstructed from payment metadata: id=%s numero=%s", order.id, order.numero_pedido)
        return order
