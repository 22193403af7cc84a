from __future__ import annotations

from typing import Any

from storefront.core.timeutil import iso_z
from storefront.persistence.models import OrderModel


def _customer(order: OrderModel) -> dict[str, Any] | None:
    customer = order.customer
    if customer is None:
        return None
    return {"id": customer.id, "nome": customer.nome, "email": customer.email, "cpf": customer.cpf}


def build_order_payload(order: OrderModel) -> dict[str, Any]:
    return {
        "numero_pedido": order.numero_pedido,
        "pedido_id": order.id,
        "criado_em": iso_z(order.created_at),
        "status": order.status,
        "forma_pagamento": order.forma_pagamento,
        "subtotal": order.subtotal,
        "desconto": order.desconto,
        "frete": order.frete,
        "total": order.total,
        "cliente": _customer(order),
        "endereco_entrega": order.endereco_entrega,
        "itens": [
            {
                "produto_id": item.produto_id,
                "nome": item.nome,
                "quantidade": item.quantidade,
                "preco_unitario": item.preco_unitario,
                "subtotal": item.subtotal,
                "tamanho": item.tamanho,
                "cor": item.cor,
                "imagem": item.imagem,
            }
            for item in order.items
        ],
    }
