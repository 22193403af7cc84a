from __future__ import annotations

from typing import Any

from storefront.core.canonical import to_wire
from storefront.persistence.models import OrderModel


def order_summary(order: OrderModel) -> dict[str, Any]:
    return to_wire(
        {
            "pedido_id": order.id,
            "numero_pedido": order.numero_pedido,
            "subtotal": order.subtotal,
            "desconto": order.desconto,
            "frete": order.frete,
            "total": order.total,
            "status": order.status,
        }
    )


def order_detail(order: OrderModel) -> dict[str, Any]:
    detail = order_summary(order)
    detail.update(
        to_wire(
            {
                "cliente_id": order.cliente_id,
                "forma_pagamento": order.forma_pagamento,
                "cupom": order.cupom,
                "endereco_entrega": order.endereco_entrega,
                "provider_preference_id": order.provider_preference_id,
                "provider_payment_id": order.provider_payment_id,
                "needs_review": order.needs_review,
                "review_reason": order.review_reason,
                "created_at": order.created_at,
                "updated_at": order.updated_at,
                "itens": [
                    {
                        "produto_id": item.produto_id,
                        "variante_id": item.variante_id,
                        "nome": item.nome,
                        "tamanho": item.tamanho,
                        "cor": item.cor,
                        "imagem": item.imagem,
                        "quantidade": item.quantidade,
                        "preco_unitario": item.preco_unitario,
                        "subtotal": item.subtotal,
                        "stock_reserved": item.stock_reserved,
                    }
                    for item in order.items
                ],
            }
        )
    )
    return detail
