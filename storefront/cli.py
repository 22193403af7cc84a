from __future__ import annotations

import argparse
import json
from typing import Any, Sequence

from storefront.core.canonical import to_wire
from storefront.core.config import get_settings
from storefront.core.logging import configure_logging
from storefront.persistence.pg import init_db, session_scope


def _print(payload: Any) -> None:
    print(json.dumps(to_wire(payload), ensure_ascii=False, indent=2))


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Storefront order/payment core CLI")
    top = parser.add_subparsers(dest="command", required=True)

    serve = top.add_parser("serve", help="Run the HTTP API with uvicorn")
    serve.add_argument("--host", default=None)
    serve.add_argument("--port", type=int, default=None)
    serve.add_argument("--reload", action="store_true")

    top.add_parser("seed-demo", help="Insert the demo catalog (idempotent)")

    sync = top.add_parser("sync-payment", help="Re-fetch a provider payment and reconcile its order")
    sync.add_argument("payment_id")
    sync.add_argument("--no-dispatch", action="store_true", help="Skip dispatch even if the order becomes paid")

    redispatch = top.add_parser("redispatch", help="Send a paid order to the downstream workflow again")
    redispatch.add_argument("order_id")

    return parser


def _serve(args: argparse.Namespace) -> int:
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "storefront.main:app",
        host=args.host or settings.api_host,
        port=args.port or settings.api_port,
        reload=args.reload,
        log_level=settings.log_level.lower(),
    )
    return 0


def _seed_demo(_: argparse.Namespace) -> int:
    from storefront.demo.catalog import seed_demo_catalog

    init_db()
    with session_scope() as session:
        _print(seed_demo_catalog(session))
    return 0


def _sync_payment(args: argparse.Namespace) -> int:
    from storefront.dispatch.dispatcher import OrderDispatcher, dispatch_in_own_transaction
    from storefront.payments.client import MercadoPagoClient
    from storefront.payments.reconciler import reconcile_in_own_transaction

    init_db()
    outcome = reconcile_in_own_transaction(MercadoPagoClient(), args.payment_id, source="cli")
    result: dict[str, Any] = outcome.to_dict()
    if outcome.finalized and outcome.pedido_id and not args.no_dispatch:
        dispatched = dispatch_in_own_transaction(outcome.pedido_id, OrderDispatcher())
        result["dispatch"] = dispatched.to_dict() if dispatched else None
    _print(result)
    return 0


def _redispatch(args: argparse.Namespace) -> int:
    from storefront.dispatch.dispatcher import OrderDispatcher, dispatch_order
    from storefront.domain.orders.service import OrderService
    from storefront.domain.orders.status import OrderStatus

    init_db()
    with session_scope() as session:
        order = OrderService(session).get_order(args.order_id)
        if order.status != OrderStatus.PAGO.value:
            print(f"order {order.numero_pedido} is {order.status}; only paid orders are dispatched")
            return 1
        result = dispatch_order(session, order, OrderDispatcher())
        _print(result.to_dict())
    return 0 if result.outcome != "failed" else 1


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    configure_logging()

    handlers = {
        "serve": _serve,
        "seed-demo": _seed_demo,
        "sync-payment": _sync_payment,
        "redispatch": _redispatch,
    }
    handler = handlers.get(args.command)
    if handler is None:
        parser.error("unsupported command")
    return handler(args)


if __name__ == "__main__":
    raise SystemExit(main())
