from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal

from django.utils import timezone

from apps.promotions.domain.errors import PromoCodeRejectedError
from apps.promotions.domain.policies import (
    calculate_discount,
    ensure_active_window,
    ensure_customer_capacity,
    ensure_global_capacity,
    ensure_minimum_order,
)
from apps.promotions.models import PromoCode, PromoCodeUsage

logger = logging.getLogger("storefront.promotions")


@dataclass(frozen=True)
class ValidatePromoCodeCommand:
    code: str
    customer_id: int
    order_value: Decimal
    product_ids: tuple[int, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class PromoValidationResult:
    valid: bool
    discount_amount: Decimal
    promo_code: PromoCode


class ValidatePromoCodeUseCase:
    @staticmethod
    def execute(cmd: ValidatePromoCodeCommand) -> PromoValidationResult:
        code = (cmd.code or "").strip().upper()
        promo = PromoCode.objects.filter(code=code).first()
        if promo is None:
            raise PromoCodeRejectedError(
                "Promo code not found.",
                reason=PromoCodeRejectedError.REASON_NOT_FOUND,
                code=code,
            )

        try:
            ensure_active_window(promo, now=timezone.now())
            ValidatePromoCodeUseCase._ensure_applicable(promo, cmd.product_ids)
            ensure_minimum_order(promo, order_value=cmd.order_value)
            ensure_global_capacity(promo)
            ensure_customer_capacity(
                promo,
                customer_usage_count=PromoCodeUsage.objects.filter(
                    customer_id=cmd.customer_id,
                    promo_code=promo,
                    is_active=True,
                ).count(),
            )
        except PromoCodeRejectedError as exc:
            logger.info(
                "promo_code_rejected",
                extra={"code": code, "reason": exc.reason, "customer_id": cmd.customer_id},
            )
            raise

        return PromoValidationResult(
            valid=True,
            discount_amount=calculate_discount(promo, cmd.order_value),
            promo_code=promo,
        )

    @staticmethod
    def _ensure_applicable(promo: PromoCode, product_ids: tuple[int, ...]) -> None:
        if promo.apply_to_all_products or not product_ids:
            return
        allowed = set(promo.products.values_list("id", flat=True))
        if allowed and not allowed.intersection(product_ids):
            raise PromoCodeRejectedError(
                "This promo code does not apply to the selected products.",
                reason=PromoCodeRejectedError.REASON_NOT_APPLICABLE,
                code=promo.code,
            )
