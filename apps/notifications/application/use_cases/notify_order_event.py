from __future__ import annotations

import logging
from dataclasses import dataclass, field

from django.conf import settings
from django.utils import timezone

from apps.notifications.domain.ports import NotificationSender
from apps.notifications.domain.types import ADMIN_KINDS, NotificationKind, SendResult
from apps.notifications.infrastructure.router import NotificationSenderRouter
from apps.orders.models import Order, OrderItem
from apps.orders.services.order_service import OrderService

logger = logging.getLogger("storefront.notifications")


@dataclass(frozen=True)
class NotifyOrderEventCommand:
    order_id: int
    kind: NotificationKind
    extra_context: dict = field(default_factory=dict)


class NotifyOrderEventUseCase:
    """
    Sends the notification for an order state transition.

    Never raises: a failed send is logged and recorded in the order history,
    and the transition that triggered it stands.
    """

    @staticmethod
    def execute(cmd: NotifyOrderEventCommand, *, sender: NotificationSender | None = None) -> SendResult:
        order = Order.objects.filter(id=cmd.order_id).first()
        if order is None:
            logger.warning("notification_order_missing", extra={"order_id": cmd.order_id, "kind": str(cmd.kind)})
            return SendResult(success=False, error="Order not found.")

        recipients = NotifyOrderEventUseCase._recipients(order, cmd.kind)
        if not recipients:
            return SendResult(success=True, skipped=True)

        context = NotifyOrderEventUseCase._base_context(order)
        context.update(cmd.extra_context or {})

        try:
            sender = sender or NotificationSenderRouter.resolve()
            for to_email in recipients:
                sender.send(to_email=to_email, kind=cmd.kind, context=context)
        except Exception as exc:
            logger.exception(
                "notification_failed",
                extra={"order_number": order.order_number, "kind": str(cmd.kind)},
            )
            OrderService.append_history(
                order,
                status="notification_failed",
                note=f"Failed to send {cmd.kind} notification: {exc}",
            )
            return SendResult(success=False, error=str(exc))

        if cmd.kind == NotificationKind.FILES_READY:
            Order.objects.filter(id=order.id).update(email_sent=True, email_sent_at=timezone.now())

        logger.info(
            "notification_sent",
            extra={"order_number": order.order_number, "kind": str(cmd.kind), "recipients": len(recipients)},
        )
        return SendResult(success=True, recipients=tuple(recipients))

    @staticmethod
    def _recipients(order: Order, kind: NotificationKind) -> list[str]:
        if kind in ADMIN_KINDS:
            return list(getattr(settings, "ADMIN_NOTIFICATION_EMAILS", []) or [])
        return [order.customer_email] if order.customer_email else []

    @staticmethod
    def _base_context(order: Order) -> dict:
        return {
            "order_id": order.id,
            "order_number": order.order_number,
            "customer_name": order.customer_name,
            "customer_email": order.customer_email,
            "total_price": str(order.total_price),
            "payment_status": order.payment_status,
            "has_customizable_products": order.has_customizable_products,
            "custom_work_items": [
                {"product_name": item.product_name, "quantity": item.quantity}
                for item in order.items.all()
                if item.requires_customization
                or item.delivery_status == OrderItem.DELIVERY_AWAITING_CUSTOMIZATION
            ],
        }
