from __future__ import annotations

from decimal import Decimal

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from storefront.api.utils import order_detail, order_summary
from storefront.core.canonical import to_wire
from storefront.core.config import get_settings
from storefront.core.errors import ValidationError
from storefront.core.security import Actor, get_actor, require_roles
from storefront.dispatch.dispatcher import OrderDispatcher, dispatch_order, get_dispatcher
from storefront.domain.coupons.validator import CouponValidator
from storefront.domain.inventory.ledger import StockLedger
from storefront.domain.orders.commands import CreateOrderRequest
from storefront.domain.orders.pricing import method_discount_percent, price_order
from storefront.domain.orders.service import OrderService
from storefront.domain.orders.status import OrderStatus
from storefront.persistence.pg import get_session

router = APIRouter(tags=["orders"])

STAFF_ROLES = {"admin", "system"}


class CouponValidateRequest(BaseModel):
    codigo: str
    subtotal: Decimal | None = Field(default=None, ge=0)
    forma_pagamento: str | None = None


class CancelRequest(BaseModel):
    motivo: str | None = None


@router.post("/orders", status_code=201)
def create_order(
    req: CreateOrderRequest,
    actor: Actor = Depends(get_actor),
    session: Session = Depends(get_session),
):
    require_roles(actor, {"storefront", "admin"}, detail="order creation requires storefront/admin role")
    order = OrderService(session).create_order(req)
    return order_summary(order)


@router.get("/orders/{order_id}")
def get_order(order_id: str, actor: Actor = Depends(get_actor), session: Session = Depends(get_session)):
    return order_detail(OrderService(session).get_order(order_id))


@router.post("/orders/{order_id}/cancel")
def cancel_order(
    order_id: str,
    req: CancelRequest | None = None,
    actor: Actor = Depends(get_actor),
    session: Session = Depends(get_session),
):
    require_roles(actor, STAFF_ROLES, detail="cancellation requires admin/system role")
    cause = f"{actor.type}:{actor.id}"
    if req and req.motivo:
        cause = f"{cause}:{req.motivo}"
    service = OrderService(session)
    outcome = service.cancel_order(order_id, cause=cause)
    order = service.get_order(order_id)
    return {**order_summary(order), "applied": outcome.applied, "released_lines": outcome.released_lines}


@router.post("/orders/{order_id}/dispatch")
def redispatch_order(
    order_id: str,
    actor: Actor = Depends(get_actor),
    session: Session = Depends(get_session),
    dispatcher: OrderDispatcher = Depends(get_dispatcher),
):
    require_roles(actor, STAFF_ROLES, detail="redispatch requires admin/system role")
    order = OrderService(session).get_order(order_id)
    if order.status != OrderStatus.PAGO.value:
        raise ValidationError(
            f"only paid orders are dispatched; order {order.numero_pedido} is {order.status}",
            pedido_id=order.id,
            status=order.status,
        )
    return dispatch_order(session, order, dispatcher).to_dict()


@router.get("/stock/check")
def check_stock(
    produto_id: str = Query(min_length=1),
    quantidade: int = Query(gt=0),
    variante_id: str | None = Query(default=None),
    actor: Actor = Depends(get_actor),
    session: Session = Depends(get_session),
):
    sufficient = StockLedger(session).has_sufficient_stock(produto_id, quantidade, variant_id=variante_id)
    return {"produto_id": produto_id, "variante_id": variante_id, "quantidade": quantidade, "suficiente": sufficient}


@router.post("/coupons/validate")
def validate_coupon(
    req: CouponValidateRequest,
    actor: Actor = Depends(get_actor),
    session: Session = Depends(get_session),
):
    grant = CouponValidator(session).validate(req.codigo)
    result = {"valido": True, "codigo": grant.code, "desconto_percentual": grant.percent}
    if req.subtotal is not None:
        breakdown = price_order(
            [(req.subtotal, 1)],
            coupon_percent=grant.percent,
            method_percent=method_discount_percent(req.forma_pagamento, get_settings().payment_method_discounts),
        )
        result.update(
            {
                "desconto_cupom": breakdown.coupon_discount,
                "desconto_forma_pagamento": breakdown.method_discount,
                "desconto_total": breakdown.discount,
            }
        )
    return to_wire(result)
