from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.types import JSON


def _json_type():
    return JSON().with_variant(JSONB(astext_type=Text()), "postgresql")


def _uuid() -> str:
    return str(uuid.uuid4())


def _money():
    return Numeric(12, 2)


class Base(DeclarativeBase):
    pass


class CustomerModel(Base):
    __tablename__ = "clientes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    nome: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    cpf: Mapped[Optional[str]] = mapped_column(String(14), nullable=True)
    telefone: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class ProductModel(Base):
    __tablename__ = "produtos"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_uuid)
    nome: Mapped[str] = mapped_column(String(255), nullable=False)
    preco: Mapped[Decimal] = mapped_column(_money(), nullable=False)
    imagem: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    ativo: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    variants: Mapped[list["ProductVariantModel"]] = relationship(back_populates="product")


class ProductVariantModel(Base):
    __tablename__ = "variantes_produto"
    __table_args__ = (CheckConstraint("estoque >= 0", name="ck_variantes_estoque_non_negative"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_uuid)
    produto_id: Mapped[str] = mapped_column(String(64), ForeignKey("produtos.id"), nullable=False)
    tamanho: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    cor: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    estoque: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    ativo: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    product: Mapped[ProductModel] = relationship(back_populates="variants")


class CouponModel(Base):
    __tablename__ = "cupons"
    __table_args__ = (
        CheckConstraint(
            "desconto_percentual >= 0 AND desconto_percentual <= 100",
            name="ck_cupons_percentual_range",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    codigo: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    desconto_percentual: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    inicio_em: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    fim_em: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="ativo")


class OrderModel(Base):
    __tablename__ = "pedidos"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    numero_pedido: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    cliente_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("clientes.id"), nullable=True)
    subtotal: Mapped[Decimal] = mapped_column(_money(), nullable=False)
    desconto: Mapped[Decimal] = mapped_column(_money(), nullable=False, default=Decimal("0.00"))
    frete: Mapped[Decimal] = mapped_column(_money(), nullable=False, default=Decimal("0.00"))
    total: Mapped[Decimal] = mapped_column(_money(), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pendente")
    forma_pagamento: Mapped[str] = mapped_column(String(64), nullable=False)
    cupom: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    endereco_entrega: Mapped[Optional[dict]] = mapped_column(_json_type(), nullable=True)
    provider_preference_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    provider_payment_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    needs_review: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    review_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    items: Mapped[list["OrderItemModel"]] = relationship(
        back_populates="order",
        order_by="OrderItemModel.id",
        cascade="all, delete-orphan",
    )
    customer: Mapped[Optional[CustomerModel]] = relationship()


class OrderItemModel(Base):
    __tablename__ = "itens_pedido"
    __table_args__ = (CheckConstraint("quantidade > 0", name="ck_itens_quantidade_positive"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    pedido_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("pedidos.id", ondelete="CASCADE"),
        nullable=False,
    )
    produto_id: Mapped[str] = mapped_column(String(64), nullable=False)
    variante_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    nome: Mapped[str] = mapped_column(String(255), nullable=False)
    imagem: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    tamanho: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    cor: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    quantidade: Mapped[int] = mapped_column(Integer, nullable=False)
    preco_unitario: Mapped[Decimal] = mapped_column(_money(), nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(_money(), nullable=False)
    stock_reserved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    order: Mapped[OrderModel] = relationship(back_populates="items")


class PaymentEventModel(Base):
    __tablename__ = "pagamentos_eventos"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    provider_payment_id: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    status_detail: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    amount: Mapped[Optional[Decimal]] = mapped_column(_money(), nullable=True)
    payment_method_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    pedido_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    numero_pedido: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    source: Mapped[str] = mapped_column(String(64), nullable=False)
    raw: Mapped[dict] = mapped_column(_json_type(), nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class DispatchRecordModel(Base):
    __tablename__ = "despachos_pedido"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    pedido_id: Mapped[str] = mapped_column(String(36), nullable=False)
    request_id: Mapped[str] = mapped_column(String(36), nullable=False)
    outcome: Mapped[str] = mapped_column(String(16), nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    response_status: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


Index("ix_variantes_produto_id", ProductVariantModel.produto_id)
Index("ix_itens_pedido_pedido_id", OrderItemModel.pedido_id)
Index("ix_pedidos_status", OrderModel.status)
Index("ix_pedidos_provider_payment_id", OrderModel.provider_payment_id)
Index("ix_pagamentos_eventos_payment_id", PaymentEventModel.provider_payment_id)
Index("ix_despachos_pedido_pedido_id", DispatchRecordModel.pedido_id)
