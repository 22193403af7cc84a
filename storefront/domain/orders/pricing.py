from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Iterable, Mapping

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
HUNDRED = Decimal("100")


def to_money(value) -> Decimal:
    if isinstance(value, float):
        value = repr(value)
    try:
        amount = Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"invalid money amount: {value!r}") from exc
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def percent_of(amount: Decimal, percent: Decimal) -> Decimal:
    return to_money(amount * Decimal(percent) / HUNDRED)


def payment_method_kind(method: str | None) -> str:
    raw = (method or "").strip().lower()
    if "pix" in raw:
        return "pix"
    if any(token in raw for token in ("credit", "card", "cart")):
        return "card"
    return "any"


def method_discount_percent(method: str | None, discounts: Mapping[str, Decimal]) -> Decimal:
    kind = payment_method_kind(method)
    return Decimal(discounts.get(kind, 0))


@dataclass(frozen=True)
class PriceBreakdown:
    subtotal: Decimal
    coupon_discount: Decimal
    method_discount: Decimal
    shipping: Decimal

    @property
    def discount(self) -> Decimal:
        # Discounts never take the goods below zero.
        return min(self.coupon_discount + self.method_discount, self.subtotal)

    @property
    def total(self) -> Decimal:
        return self.subtotal - self.discount + self.shipping


def line_subtotal(unit_price: Decimal, quantity: int) -> Decimal:
    return to_money(to_money(unit_price) * int(quantity))


def price_order(
    lines: Iterable[tuple[Decimal, int]],
    shipping: Decimal = ZERO,
    coupon_percent: Decimal = ZERO,
    method_percent: Decimal = ZERO,
) -> PriceBreakdown:
    subtotal = sum((line_subtotal(price, qty) for price, qty in lines), ZERO)
    shipping = to_money(shipping)
    if shipping < ZERO:
        raise ValueError("shipping cost cannot be negative")
    return PriceBreakdown(
        subtotal=subtotal,
        coupon_discount=percent_of(subtotal, coupon_percent),
        method_discount=percent_of(subtotal, method_percent),
        shipping=shipping,
    )
