from __future__ import annotations

import logging
from dataclasses import dataclass

from django.db import transaction
from django.utils import timezone

from apps.notifications.application.use_cases.notify_order_event import (
    NotifyOrderEventCommand,
    NotifyOrderEventUseCase,
)
from apps.notifications.domain.ports import NotificationSender
from apps.notifications.domain.types import NotificationKind
from apps.orders.models import Order
from apps.orders.services.order_service import SYSTEM_ACTOR, OrderService

from .delivery_service import DeliveryService

logger = logging.getLogger("storefront.fulfillment")


@dataclass(frozen=True)
class FulfillmentOutcome:
    order: Order
    auto_delivered: bool


def notify_on_commit(
    order_id: int,
    kind: NotificationKind,
    *,
    extra_context: dict | None = None,
    sender: NotificationSender | None = None,
) -> None:
    """Sends the notification once the surrounding transaction commits."""

    def _send() -> None:
        context = dict(extra_context or {})
        if kind == NotificationKind.FILES_READY:
            order = Order.objects.get(id=order_id)
            context.setdefault("download_links", DeliveryService.download_links(order))
            if order.download_expiry:
                context.setdefault("download_expiry", order.download_expiry.date().isoformat())
        NotifyOrderEventUseCase.execute(
            NotifyOrderEventCommand(order_id=order_id, kind=kind, extra_context=context),
            sender=sender,
        )

    transaction.on_commit(_send)


class FulfillmentService:
    @staticmethod
    @transaction.atomic
    def start(
        order_id: int,
        *,
        changed_by: str = SYSTEM_ACTOR,
        sender: NotificationSender | None = None,
    ) -> FulfillmentOutcome:
        """
        Runs right after payment is settled (paid or free). Orders with an
        item that is customizable or has no design file yet wait for an
        admin; everything else is delivered and completed immediately.
        """
        order = OrderService.get_for_update(order_id)
        if order.order_status == Order.STATUS_COMPLETED:
            return FulfillmentOutcome(order=order, auto_delivered=True)

        held_items = DeliveryService.items_needing_manual_work(order)
        if held_items:
            DeliveryService.hold_for_customization(order, held_items)
            # Files may already be in progress; never move processing back to pending.
            if order.customization_status == Order.CUSTOMIZATION_NONE:
                order = OrderService.update_status(
                    order.id,
                    {"customization_status": Order.CUSTOMIZATION_PENDING},
                    history_status="awaiting_customization",
                    note=f"{len(held_items)} item(s) need manual processing before delivery.",
                    changed_by=changed_by,
                )
            logger.info(
                "order_held_for_customization",
                extra={
                    "order_number": order.order_number,
                    "items": [item.product_slug for item in held_items],
                    "customization_status": order.customization_status,
                },
            )
            notify_on_commit(order.id, NotificationKind.CUSTOMIZATION_PROCESSING, sender=sender)
            return FulfillmentOutcome(order=order, auto_delivered=False)

        delivery = DeliveryService.deliver_items(order)
        order = OrderService.update_status(
            order.id,
            {
                "order_status": Order.STATUS_COMPLETED,
                "completed_at": timezone.now(),
                "download_expiry": delivery.expires_at,
            },
            history_status="completed",
            note=f"Files delivered automatically ({delivery.files_granted} file(s)).",
            changed_by=changed_by,
        )
        notify_on_commit(order.id, NotificationKind.FILES_READY, sender=sender)
        return FulfillmentOutcome(order=order, auto_delivered=True)
