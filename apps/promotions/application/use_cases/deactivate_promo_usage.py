from __future__ import annotations

from dataclasses import dataclass

from django.db import transaction
from django.db.models import F

from apps.promotions.models import PromoCode, PromoCodeUsage


@dataclass(frozen=True)
class DeactivatePromoUsageCommand:
    order_id: int


class DeactivatePromoUsageUseCase:
    @staticmethod
    @transaction.atomic
    def execute(cmd: DeactivatePromoUsageCommand) -> int:
        usages = list(
            PromoCodeUsage.objects.select_for_update().filter(order_id=cmd.order_id, is_active=True)
        )
        for usage in usages:
            PromoCode.objects.filter(pk=usage.promo_code_id, usage_count__gt=0).update(
                usage_count=F("usage_count") - 1
            )
        PromoCodeUsage.objects.filter(id__in=[u.id for u in usages]).update(is_active=False)
        return len(usages)
