from __future__ import annotations

from typing import Any


class StorefrontError(Exception):
    """Base error for the order/payment core.

    ``expected`` separates business outcomes the caller should show to the
    user (insufficient stock, invalid coupon, ...) from real failures that
    must be alerted on.
    """

    code = "storefront_error"
    status_code = 500
    expected = False

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.code, "detail": self.message, **self.details}


class ValidationError(StorefrontError):
    code = "validation_error"
    status_code = 422
    expected = True


class NotFound(StorefrontError):
    code = "not_found"
    status_code = 404
    expected = True


class InsufficientStock(StorefrontError):
    code = "insufficient_stock"
    status_code = 409
    expected = True

    def __init__(self, variant_id: str, requested: int, available: int):
        super().__init__(
            f"insufficient stock for variant={variant_id}: requested={requested} available={available}",
            variant_id=variant_id,
            requested=requested,
            available=available,
        )
        self.variant_id = variant_id
        self.requested = requested
        self.available = available


class CouponInvalid(StorefrontError):
    code = "coupon_invalid"
    status_code = 422
    expected = True

    def __init__(self, coupon_code: str, reason: str):
        super().__init__(f"coupon {coupon_code!r} is not valid: {reason}", coupon=coupon_code, reason=reason)
        self.coupon_code = coupon_code
        self.reason = reason


class AuthError(StorefrontError):
    code = "auth_error"
    status_code = 401
    expected = True


class PaymentProviderError(StorefrontError):
    code = "payment_provider_error"
    status_code = 502

    def __init__(self, message: str, status: int | None = None, body: Any = None):
        super().__init__(message, provider_status=status, provider_body=body)
        self.status = status
        self.body = body


class DispatchFailed(StorefrontError):
    code = "dispatch_failed"
    status_code = 502

    def __init__(self, last_error: str, attempts: int, status: int | None = None):
        super().__init__(
            f"order dispatch failed after {attempts} attempt(s): {last_error}",
            attempts=attempts,
            last_error=last_error,
            response_status=status,
        )
        self.last_error = last_error
        self.attempts = attempts
        self.status = status
