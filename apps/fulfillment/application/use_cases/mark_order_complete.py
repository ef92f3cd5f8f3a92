from __future__ import annotations

import logging
from dataclasses import dataclass

from django.db import transaction
from django.utils import timezone

from apps.fulfillment.domain.errors import FulfillmentPreconditionError
from apps.fulfillment.services.delivery_service import DeliveryService
from apps.fulfillment.services.fulfillment_service import notify_on_commit
from apps.notifications.domain.ports import NotificationSender
from apps.notifications.domain.types import NotificationKind
from apps.orders.models import Order
from apps.orders.services.order_service import OrderService

logger = logging.getLogger("storefront.fulfillment")


@dataclass(frozen=True)
class MarkOrderCompleteCommand:
    order_id: int
    changed_by: str
    note: str = ""


class MarkOrderCompleteUseCase:
    """
    Admin completion of an order that was held for customization.

    The order must be paid (or free), not cancelled, not already completed,
    and at least one of its items must have a deliverable design file.
    """

    @staticmethod
    @transaction.atomic
    def execute(
        cmd: MarkOrderCompleteCommand,
        *,
        sender: NotificationSender | None = None,
    ) -> Order:
        order = OrderService.get_for_update(cmd.order_id)

        if order.order_status == Order.STATUS_COMPLETED:
            raise FulfillmentPreconditionError("Order is already completed.")
        if order.order_status == Order.STATUS_CANCELLED:
            raise FulfillmentPreconditionError("Cancelled orders cannot be completed.")
        if not order.is_payment_settled:
            raise FulfillmentPreconditionError("Order has not been paid.")
        if not DeliveryService.has_deliverable_files(order):
            raise FulfillmentPreconditionError(
                "Upload at least one design file before completing this order.",
                field="files",
            )

        delivery = DeliveryService.deliver_items(order)
        now = timezone.now()
        patch = {
            "order_status": Order.STATUS_COMPLETED,
            "completed_at": now,
            "processed_at": now,
            "processed_by": cmd.changed_by,
            "download_expiry": delivery.expires_at,
        }
        if order.customization_status != Order.CUSTOMIZATION_NONE:
            patch["customization_status"] = Order.CUSTOMIZATION_COMPLETED

        order = OrderService.update_status(
            order.id,
            patch,
            history_status="completed",
            note=cmd.note or f"Order completed by admin ({delivery.files_granted} file(s)).",
            changed_by=cmd.changed_by,
        )
        logger.info(
            "order_marked_complete",
            extra={"order_number": order.order_number, "changed_by": cmd.changed_by},
        )
        notify_on_commit(order.id, NotificationKind.FILES_READY, sender=sender)
        return order
