from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from decimal import Decimal

from django.db import transaction
from django.db.models import F, Q

from apps.orders.models import Order
from apps.orders.services.order_service import OrderService
from apps.promotions.models import PromoCode, PromoCodeUsage

logger = logging.getLogger("storefront.promotions")


@dataclass(frozen=True)
class RecordPromoUsageCommand:
    order_id: int


@dataclass(frozen=True)
class RecordPromoUsageResult:
    recorded: tuple[str, ...] = field(default_factory=tuple)
    rejected: tuple[str, ...] = field(default_factory=tuple)


class RecordPromoUsageUseCase:
    """
    Counts promo code usage for an order whose payment is confirmed.

    Idempotent per (order, code). The global limit is enforced by a
    conditional increment, so two checkouts racing for the last use cannot
    both be counted; the loser gets a `promo_usage_rejected` history entry.
    """

    @staticmethod
    @transaction.atomic
    def execute(cmd: RecordPromoUsageCommand) -> RecordPromoUsageResult:
        order = Order.objects.get(id=cmd.order_id)

        discounts: OrderedDict[str, Decimal] = OrderedDict()
        for item in order.items.all():
            if item.promo_code:
                discounts[item.promo_code] = discounts.get(item.promo_code, Decimal("0")) + item.discount_amount

        recorded: list[str] = []
        rejected: list[str] = []
        for code, discount in discounts.items():
            promo = PromoCode.objects.select_for_update().filter(code=code).first()
            if promo is None:
                rejected.append(code)
                continue
            if PromoCodeUsage.objects.filter(order=order, promo_code=promo).exists():
                continue

            if promo.user_usage_limit is not None:
                customer_uses = PromoCodeUsage.objects.filter(
                    customer_id=order.customer_id, promo_code=promo, is_active=True
                ).count()
                if customer_uses >= promo.user_usage_limit:
                    rejected.append(code)
                    continue

            updated = (
                PromoCode.objects.filter(pk=promo.pk)
                .filter(Q(usage_limit__isnull=True) | Q(usage_count__lt=F("usage_limit")))
                .update(usage_count=F("usage_count") + 1)
            )
            if not updated:
                rejected.append(code)
                continue

            PromoCodeUsage.objects.create(
                customer_id=order.customer_id,
                promo_code=promo,
                code=code,
                order=order,
                discount_amount=discount,
                order_total=order.subtotal,
            )
            recorded.append(code)

        for code in rejected:
            logger.warning("promo_usage_rejected", extra={"order_number": order.order_number, "code": code})
            OrderService.append_history(
                order,
                status="promo_usage_rejected",
                note=f"Promo code {code} could not be counted for this order (limit reached or code removed).",
            )

        return RecordPromoUsageResult(recorded=tuple(recorded), rejected=tuple(rejected))
