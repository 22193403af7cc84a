from __future__ import annotations

from enum import Enum


class OrderStatus(str, Enum):
    PENDENTE = "pendente"
    PAGO = "pago"
    RECUSADO = "recusado"
    CANCELADO = "cancelado"
    REEMBOLSADO = "reembolsado"
    CONTESTACAO = "contestacao"


PROVIDER_STATUS_MAP: dict[str, OrderStatus] = {
    "approved": OrderStatus.PAGO,
    "pending": OrderStatus.PENDENTE,
    "in_process": OrderStatus.PENDENTE,
    "rejected": OrderStatus.RECUSADO,
    "cancelled": OrderStatus.CANCELADO,
    "refunded": OrderStatus.REEMBOLSADO,
    "charged_back": OrderStatus.CONTESTACAO,
}

ALLOWED_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDENTE: frozenset({OrderStatus.PAGO, OrderStatus.RECUSADO, OrderStatus.CANCELADO}),
    OrderStatus.PAGO: frozenset({OrderStatus.REEMBOLSADO, OrderStatus.CONTESTACAO}),
}

# Entering one of these gives the reserved units back to the shelf.
STOCK_RELEASING = frozenset({OrderStatus.RECUSADO, OrderStatus.CANCELADO, OrderStatus.REEMBOLSADO})


def map_provider_status(status: str | None) -> OrderStatus | None:
    return PROVIDER_STATUS_MAP.get((status or "").strip().lower())


def can_transition(current: OrderStatus | str, target: OrderStatus | str) -> bool:
    return OrderStatus(target) in ALLOWED_TRANSITIONS.get(OrderStatus(current), frozenset())
