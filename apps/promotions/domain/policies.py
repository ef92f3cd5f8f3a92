from __future__ import annotations

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

from .errors import PromoCodeRejectedError

_CENT = Decimal("0.01")
_HUNDRED = Decimal("100")


def _money(value) -> Decimal:
    return Decimal(str(value)).quantize(_CENT, rounding=ROUND_HALF_UP)


def calculate_discount(promo, amount) -> Decimal:
    """
    Discount for `amount`: a percentage (capped by `max_discount_amount` when
    set) or a fixed amount, never more than `amount` itself.
    """
    amount = _money(amount)
    if amount <= 0:
        return Decimal("0.00")

    if promo.discount_type == promo.TYPE_PERCENTAGE:
        discount = amount * Decimal(str(promo.discount_value)) / _HUNDRED
        if promo.max_discount_amount is not None and discount > promo.max_discount_amount:
            discount = Decimal(str(promo.max_discount_amount))
    else:
        discount = Decimal(str(promo.discount_value))

    return _money(max(Decimal("0"), min(discount, amount)))


def ensure_active_window(promo, *, now: datetime) -> None:
    if not promo.is_active:
        raise PromoCodeRejectedError(
            "This promo code is no longer active.",
            reason=PromoCodeRejectedError.REASON_INACTIVE,
            code=promo.code,
        )
    if promo.valid_from and now < promo.valid_from:
        raise PromoCodeRejectedError(
            "This promo code is not active yet.",
            reason=PromoCodeRejectedError.REASON_NOT_STARTED,
            code=promo.code,
        )
    if promo.valid_until and now > promo.valid_until:
        raise PromoCodeRejectedError(
            "This promo code has expired.",
            reason=PromoCodeRejectedError.REASON_EXPIRED,
            code=promo.code,
        )


def ensure_minimum_order(promo, *, order_value) -> None:
    if promo.minimum_order_amount is not None and _money(order_value) < promo.minimum_order_amount:
        raise PromoCodeRejectedError(
            f"Order total must be at least {promo.minimum_order_amount} to use this promo code.",
            reason=PromoCodeRejectedError.REASON_BELOW_MINIMUM,
            code=promo.code,
        )


def ensure_global_capacity(promo) -> None:
    if promo.usage_limit is not None and promo.usage_count >= promo.usage_limit:
        raise PromoCodeRejectedError(
            "This promo code has reached its usage limit.",
            reason=PromoCodeRejectedError.REASON_EXHAUSTED,
            code=promo.code,
        )


def ensure_customer_capacity(promo, *, customer_usage_count: int) -> None:
    if promo.user_usage_limit is not None and customer_usage_count >= promo.user_usage_limit:
        raise PromoCodeRejectedError(
            "You have already used this promo code the maximum number of times.",
            reason=PromoCodeRejectedError.REASON_USER_LIMIT_REACHED,
            code=promo.code,
        )
