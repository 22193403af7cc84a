"""Per-variant stock counters.

Every mutation is a single conditional UPDATE on the variant row. The row
update is the serialization point, so concurrent checkouts never need an
application lock and stock can never go below zero.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from storefront.core.errors import NotFound, ValidationError
from storefront.persistence.models import ProductVariantModel

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Reservation:
    variant_id: str
    requested: int
    granted: bool
    available: int

    @property
    def ok(self) -> bool:
        return self.granted


def _require_positive(qty: int) -> int:
    if int(qty) <= 0:
        raise ValidationError("quantity must be positive", quantity=qty)
    return int(qty)


class StockLedger:
    def __init__(self, session: Session):
        self.session = session

    def available(self, variant_id: str) -> int:
        stock = self.session.scalar(
            select(ProductVariantModel.estoque).where(ProductVariantModel.id == variant_id)
        )
        if stock is None:
            raise NotFound(f"variant {variant_id} not found", variant_id=variant_id)
        return int(stock)

    def reserve(self, variant_id: str, qty: int) -> Reservation:
        qty = _require_positive(qty)
        result = self.session.execute(
            update(ProductVariantModel)
            .where(ProductVariantModel.id == variant_id)
            .where(ProductVariantModel.ativo.is_(True))
            .where(ProductVariantModel.estoque >= qty)
            .values(estoque=ProductVariantModel.estoque - qty)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            return Reservation(variant_id=variant_id, requested=qty, granted=True, available=self.available(variant_id))

        available = self.available(variant_id)
        logger.info("reservation refused: variant=%s requested=%s available=%s", variant_id, qty, available)
        return Reservation(variant_id=variant_id, requested=qty, granted=False, available=available)

    def release(self, variant_id: str, qty: int) -> None:
        qty = _require_positive(qty)
        result = self.session.execute(
            update(ProductVariantModel)
            .where(ProductVariantModel.id == variant_id)
            .values(estoque=ProductVariantModel.estoque + qty)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise NotFound(f"variant {variant_id} not found", variant_id=variant_id)
        logger.info("stock released: variant=%s qty=%s", variant_id, qty)

    def restock(self, variant_id: str, qty: int) -> int:
        self.release(variant_id, qty)
        return self.available(variant_id)

    def has_sufficient_stock(self, product_id: str, qty: int, variant_id: str | None = None) -> bool:
        qty = _require_positive(qty)
        if variant_id:
            stock = self.session.scalar(
                select(ProductVariantModel.estoque)
                .where(ProductVariantModel.id == variant_id)
                .where(ProductVariantModel.produto_id == product_id)
                .where(ProductVariantModel.ativo.is_(True))
            )
            return stock is not None and int(stock) >= qty

        total = self.session.scalar(
            select(func.coalesce(func.sum(ProductVariantModel.estoque), 0))
            .where(ProductVariantModel.produto_id == product_id)
            .where(ProductVariantModel.ativo.is_(True))
        )
        return int(total or 0) >= qty
