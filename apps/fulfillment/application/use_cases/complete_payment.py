from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from django.db import transaction
from django.utils import timezone

from apps.fulfillment.services.fulfillment_service import FulfillmentService
from apps.notifications.domain.ports import NotificationSender
from apps.orders.models import Order
from apps.orders.services.order_service import SYSTEM_ACTOR, OrderService
from apps.promotions.application.use_cases.record_promo_usage import (
    RecordPromoUsageCommand,
    RecordPromoUsageUseCase,
)

logger = logging.getLogger("storefront.fulfillment")


@dataclass(frozen=True)
class CaptureDetails:
    transaction_id: str
    provider_order_id: str = ""
    payer_email: str = ""
    amount: Decimal | None = None
    currency: str = ""


@dataclass(frozen=True)
class CompletePaymentCommand:
    order_id: int
    capture: CaptureDetails
    changed_by: str = SYSTEM_ACTOR


@dataclass(frozen=True)
class CompletePaymentResult:
    order: Order
    already_paid: bool
    auto_delivered: bool


class CompletePaymentUseCase:
    @staticmethod
    @transaction.atomic
    def execute(
        cmd: CompletePaymentCommand,
        *,
        sender: NotificationSender | None = None,
    ) -> CompletePaymentResult:
        order = OrderService.get_for_update(cmd.order_id)
        if order.payment_status == Order.PAYMENT_PAID:
            logger.info("payment_already_completed", extra={"order_number": order.order_number})
            return CompletePaymentResult(order=order, already_paid=True, auto_delivered=False)

        capture = cmd.capture
        if capture.amount is not None and Decimal(str(capture.amount)) != order.total_price:
            logger.warning(
                "payment_amount_mismatch",
                extra={
                    "order_number": order.order_number,
                    "expected": str(order.total_price),
                    "captured": str(capture.amount),
                },
            )

        now = timezone.now()
        patch = {
            "payment_status": Order.PAYMENT_PAID,
            "provider_transaction_id": capture.transaction_id,
            "paid_at": now,
            "order_status": Order.STATUS_PROCESSING,
            "processed_at": now,
        }
        if capture.provider_order_id:
            patch["provider_order_id"] = capture.provider_order_id
        if capture.payer_email:
            patch["payer_email"] = capture.payer_email

        order = OrderService.update_status(
            order.id,
            patch,
            history_status="payment_completed",
            note=f"Payment captured (transaction {capture.transaction_id}).",
            changed_by=cmd.changed_by,
        )
        logger.info(
            "payment_completed",
            extra={"order_number": order.order_number, "transaction_id": capture.transaction_id},
        )

        RecordPromoUsageUseCase.execute(RecordPromoUsageCommand(order_id=order.id))
        outcome = FulfillmentService.start(order.id, changed_by=cmd.changed_by, sender=sender)
        return CompletePaymentResult(order=outcome.order, already_paid=False, auto_delivered=outcome.auto_delivered)
