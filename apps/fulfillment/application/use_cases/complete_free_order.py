from __future__ import annotations

from dataclasses import dataclass

from django.db import transaction
from django.utils import timezone

from apps.fulfillment.domain.errors import FulfillmentPreconditionError
from apps.fulfillment.services.fulfillment_service import FulfillmentOutcome, FulfillmentService
from apps.notifications.domain.ports import NotificationSender
from apps.orders.models import Order
from apps.orders.services.order_service import SYSTEM_ACTOR, OrderService
from apps.promotions.application.use_cases.record_promo_usage import (
    RecordPromoUsageCommand,
    RecordPromoUsageUseCase,
)


@dataclass(frozen=True)
class CompleteFreeOrderCommand:
    order_id: int
    changed_by: str = SYSTEM_ACTOR


class CompleteFreeOrderUseCase:
    """Settles a zero-value order without any payment-provider round-trip."""

    @staticmethod
    @transaction.atomic
    def execute(
        cmd: CompleteFreeOrderCommand,
        *,
        sender: NotificationSender | None = None,
    ) -> FulfillmentOutcome:
        order = OrderService.get_for_update(cmd.order_id)
        if not order.is_free:
            raise FulfillmentPreconditionError("Only zero-value orders can be completed as free.")
        if order.payment_status == Order.PAYMENT_FREE:
            return FulfillmentOutcome(order=order, auto_delivered=order.order_status == Order.STATUS_COMPLETED)

        now = timezone.now()
        order = OrderService.update_status(
            order.id,
            {
                "payment_status": Order.PAYMENT_FREE,
                "order_status": Order.STATUS_PROCESSING,
                "paid_at": now,
                "processed_at": now,
            },
            history_status="free_order",
            note="Zero-value order; payment skipped.",
            changed_by=cmd.changed_by,
        )
        RecordPromoUsageUseCase.execute(RecordPromoUsageCommand(order_id=order.id))
        return FulfillmentService.start(order.id, changed_by=cmd.changed_by, sender=sender)
