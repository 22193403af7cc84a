from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from storefront.core.errors import CouponInvalid
from storefront.core.timeutil import as_utc, now_utc
from storefront.domain.orders.pricing import percent_of
from storefront.persistence.models import CouponModel

ACTIVE = "ativo"


@dataclass(frozen=True)
class CouponGrant:
    code: str
    percent: Decimal

    def discount_for(self, subtotal: Decimal) -> Decimal:
        return percent_of(subtotal, self.percent)


def normalize_code(code: str | None) -> str:
    return (code or "").strip().upper()


def check_coupon(coupon: CouponModel, now: datetime) -> str | None:
    if coupon.status != ACTIVE:
        return "inactive"
    starts_at = as_utc(coupon.inicio_em)
    ends_at = as_utc(coupon.fim_em)
    if starts_at is not None and now < starts_at:
        return "not_started"
    if ends_at is not None and now > ends_at:
        return "expired"
    return None


class CouponValidator:
    def __init__(self, session: Session):
        self.session = session

    def validate(self, code: str | None, now: datetime | None = None) -> CouponGrant:
        normalized = normalize_code(code)
        if not normalized:
            raise CouponInvalid(code or "", "empty_code")

        coupon = self.session.scalar(
            select(CouponModel).where(func.upper(CouponModel.codigo) == normalized).limit(1)
        )
        if coupon is None:
            raise CouponInvalid(normalized, "not_found")

        reason = check_coupon(coupon, as_utc(now) or now_utc())
        if reason:
            raise CouponInvalid(normalized, reason)
        return CouponGrant(code=coupon.codigo.upper(), percent=Decimal(coupon.desconto_percentual))
