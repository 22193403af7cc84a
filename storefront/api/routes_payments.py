from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, Depends, Header, Request
from sqlalchemy.orm import Session

from storefront.api.routes_webhooks import schedule_dispatch
from storefront.core.security import Actor, get_actor, require_roles
from storefront.dispatch.dispatcher import OrderDispatcher, get_dispatcher
from storefront.payments.client import MercadoPagoClient, get_payment_client
from storefront.payments.direct import DirectPaymentRequest, pay_in_own_transaction
from storefront.payments.preference import CheckoutService, CheckoutSessionRequest
from storefront.payments.reconciler import reconcile_in_own_transaction
from storefront.persistence.pg import get_session

router = APIRouter(tags=["payments"])

CHECKOUT_ROLES = {"storefront", "admin"}


@router.post("/checkout/preferences")
def create_checkout_preference(
    req: CheckoutSessionRequest,
    request: Request,
    actor: Actor = Depends(get_actor),
    session: Session = Depends(get_session),
    client: MercadoPagoClient = Depends(get_payment_client),
):
    require_roles(actor, CHECKOUT_ROLES, detail="checkout requires storefront/admin role")
    checkout = CheckoutService(session, client).create_session(req, origin=request.headers.get("origin"))
    return {
        "preference_id": checkout.preference_id,
        "init_point": checkout.init_point,
        "sandbox_init_point": checkout.sandbox_init_point,
        "back_urls": checkout.back_urls,
    }


@router.post("/payments", status_code=201)
def create_direct_payment(
    req: DirectPaymentRequest,
    background_tasks: BackgroundTasks,
    idempotency_key: str | None = Header(default=None, alias="X-Idempotency-Key"),
    actor: Actor = Depends(get_actor),
    client: MercadoPagoClient = Depends(get_payment_client),
    dispatcher: OrderDispatcher = Depends(get_dispatcher),
):
    require_roles(actor, CHECKOUT_ROLES, detail="payments require storefront/admin role")
    outcome, payment = pay_in_own_transaction(client, req, idempotency_key=idempotency_key)
    dispatched = schedule_dispatch(background_tasks, [outcome], dispatcher)
    return {
        **outcome.to_dict(),
        "status_detail": payment.get("status_detail"),
        "payment_method_id": payment.get("payment_method_id"),
        "dispatch_scheduled": dispatched,
    }


@router.post("/payments/{payment_id}/sync")
def sync_payment(
    payment_id: str,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_actor),
    client: MercadoPagoClient = Depends(get_payment_client),
    dispatcher: OrderDispatcher = Depends(get_dispatcher),
):
    require_roles(actor, {"admin", "system"}, detail="payment sync requires admin/system role")
    outcome = reconcile_in_own_transaction(client, payment_id, source=f"sync:{actor.id}")
    dispatched = schedule_dispatch(background_tasks, [outcome], dispatcher)
    return {**outcome.to_dict(), "dispatch_scheduled": dispatched}
