from __future__ import annotations

from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class OrderItemInput(BaseModel):
    model_config = ConfigDict(extra="ignore")

    produto_id: str | None = None
    variante_id: str = Field(min_length=1)
    quantidade: int = Field(gt=0)
    preco_unitario: Decimal | None = Field(default=None, ge=0, description="advisory, canonical price wins")
    nome: str | None = None
    subtotal: Decimal | None = None
    tamanho: str | None = None
    cor: str | None = None
    imagem: str | None = None


class CreateOrderRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    cliente_id: str | None = None
    numero_pedido: str | None = Field(default=None, max_length=32)
    forma_pagamento: str = Field(min_length=1)
    endereco_entrega: dict[str, Any] | str | None = None
    frete: Decimal = Field(default=Decimal("0"), ge=0)
    cupom: str | None = None
    itens: list[OrderItemInput] = Field(min_length=1)

    # Advisory values computed by the caller; never used for money.
    subtotal: Decimal | None = None
    desconto: Decimal | None = None
    total: Decimal | None = None
    status: str | None = None

    @field_validator("endereco_entrega")
    @classmethod
    def _wrap_plain_address(cls, value):
        if isinstance(value, str):
            return {"endereco": value}
        return value


class ReconstructedItem(BaseModel):
    model_config = ConfigDict(extra="ignore")

    produto_id: str
    variante_id: str | None = None
    nome: str | None = None
    quantidade: int = Field(gt=0)
    preco: Decimal = Field(ge=0)
