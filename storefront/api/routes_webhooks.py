from __future__ import annotations

import logging

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from starlette.concurrency import run_in_threadpool

from storefront.core.config import get_settings
from storefront.dispatch.dispatcher import OrderDispatcher, dispatch_in_own_transaction, get_dispatcher
from storefront.payments.client import MercadoPagoClient, get_payment_client
from storefront.payments.reconciler import ReconcileOutcome, process_notification
from storefront.payments.webhooks import authenticate, decode_body, parse_notification

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhooks"])


def schedule_dispatch(
    background_tasks: BackgroundTasks,
    outcomes: list[ReconcileOutcome],
    dispatcher: OrderDispatcher,
) -> list[str]:
    scheduled = []
    for outcome in outcomes:
        if outcome.finalized and outcome.pedido_id:
            background_tasks.add_task(dispatch_in_own_transaction, outcome.pedido_id, dispatcher)
            scheduled.append(outcome.pedido_id)
    return scheduled


@router.api_route("/webhooks/mercadopago", methods=["GET", "POST"])
async def mercadopago_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    client: MercadoPagoClient = Depends(get_payment_client),
    dispatcher: OrderDispatcher = Depends(get_dispatcher),
):
    query = dict(request.query_params)
    if query.get("ping"):
        return {"ok": True, "pong": 1}

    body = decode_body(await request.body(), request.headers.get("content-type"))
    notification = parse_notification(query, body)
    authenticate(get_settings(), request.headers, notification)

    if not notification.is_known:
        logger.info("ignoring notification topic=%s id=%s", notification.topic, notification.resource_id)
        return {"ok": True, "ignored": True, "topic": notification.topic}

    outcomes = await run_in_threadpool(process_notification, client, notification, "webhook")
    dispatched = schedule_dispatch(background_tasks, outcomes, dispatcher)
    return {
        "ok": True,
        "topic": notification.topic,
        "id": notification.resource_id,
        "results": [outcome.to_dict() for outcome in outcomes],
        "dispatch_scheduled": dispatched,
    }
