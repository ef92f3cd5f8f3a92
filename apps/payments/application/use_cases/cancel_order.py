from __future__ import annotations

import logging
from dataclasses import dataclass

from django.conf import settings
from django.db import transaction

from apps.fulfillment.services.delivery_service import DeliveryService
from apps.fulfillment.services.fulfillment_service import notify_on_commit
from apps.notifications.domain.ports import NotificationSender
from apps.notifications.domain.types import NotificationKind
from apps.orders.models import Order
from apps.orders.services.order_service import OrderService
from apps.payments.application.facade import PaymentGatewayFacade
from apps.payments.domain.errors import PaymentGatewayError, PaymentStateError
from apps.payments.domain.ports import PaymentGatewayPort, RefundResult
from apps.payments.models import PaymentIntent
from apps.promotions.application.use_cases.deactivate_promo_usage import (
    DeactivatePromoUsageCommand,
    DeactivatePromoUsageUseCase,
)

logger = logging.getLogger("storefront.payments")

REFUND_NOT_REQUIRED = "not_required"
REFUND_COMPLETED = "refunded"
REFUND_FAILED = "refund_failed"


@dataclass(frozen=True)
class CancelOrderCommand:
    order_id: int
    changed_by: str
    reason: str = ""


@dataclass(frozen=True)
class CancelOrderResult:
    order: Order
    refund_status: str
    refund_id: str = ""
    refund_error: str = ""


class CancelOrderUseCase:
    """
    Admin cancellation of an order.

    A paid order is refunded at the provider before it is cancelled. A
    refund that fails is recorded in the history and the order is cancelled
    anyway, leaving the money to be returned by hand. Free and unpaid orders
    skip the refund. Download access is revoked and promo usage released.
    """

    @staticmethod
    def execute(
        cmd: CancelOrderCommand,
        *,
        gateway: PaymentGatewayPort | None = None,
        sender: NotificationSender | None = None,
    ) -> CancelOrderResult:
        order = OrderService.get(cmd.order_id)
        if order.order_status == Order.STATUS_CANCELLED:
            raise PaymentStateError("Order is already cancelled.")

        needs_refund = order.payment_status == Order.PAYMENT_PAID and not order.is_free
        refund: RefundResult | None = None
        refund_error = ""
        if needs_refund and order.provider_transaction_id:
            refund, refund_error = CancelOrderUseCase._refund(order, gateway=gateway)
        elif needs_refund:
            refund_error = "No captured transaction is recorded for this order."

        with transaction.atomic():
            order = OrderService.get_for_update(order.id)

            if refund is not None:
                order = OrderService.update_status(
                    order.id,
                    {"payment_status": Order.PAYMENT_REFUNDED},
                    history_status="refund_processed",
                    note=f"Refund {refund.refund_id} issued for {order.total_price}.",
                    changed_by=cmd.changed_by,
                )
                refund_status = REFUND_COMPLETED
            elif needs_refund:
                OrderService.append_history(
                    order,
                    status="refund_failed",
                    note=f"Refund could not be issued: {refund_error}",
                    changed_by=cmd.changed_by,
                )
                refund_status = REFUND_FAILED
            else:
                refund_status = REFUND_NOT_REQUIRED

            # A provider refund webhook may have cancelled the order meanwhile.
            if order.order_status != Order.STATUS_CANCELLED:
                note = "Order cancelled by admin."
                if cmd.reason:
                    note = f"{note} Reason: {cmd.reason}"
                order = OrderService.update_status(
                    order.id,
                    {"order_status": Order.STATUS_CANCELLED},
                    history_status="cancelled",
                    note=note,
                    changed_by=cmd.changed_by,
                )

            revoked = DeliveryService.revoke_access(order)
            released = DeactivatePromoUsageUseCase.execute(DeactivatePromoUsageCommand(order_id=order.id))
            notify_on_commit(
                order.id,
                NotificationKind.ORDER_CANCELLED,
                extra_context={"refund_status": refund_status, "refund_amount": str(order.total_price)},
                sender=sender,
            )

        logger.info(
            "order_cancelled",
            extra={
                "order_number": order.order_number,
                "refund_status": refund_status,
                "grants_revoked": revoked,
                "promo_usages_released": released,
                "changed_by": cmd.changed_by,
            },
        )
        return CancelOrderResult(
            order=order,
            refund_status=refund_status,
            refund_id=refund.refund_id if refund else "",
            refund_error=refund_error,
        )

    @staticmethod
    def _refund(order: Order, *, gateway: PaymentGatewayPort | None) -> tuple[RefundResult | None, str]:
        intent = (
            PaymentIntent.objects.filter(order=order, status=PaymentIntent.STATUS_CAPTURED)
            .order_by("-created_at", "-id")
            .first()
        )
        gateway = gateway or PaymentGatewayFacade.get(intent.provider_code if intent else None)
        currency = intent.currency if intent else getattr(settings, "PAYMENT_CURRENCY", "USD")
        try:
            refund = gateway.refund(
                capture_id=order.provider_transaction_id,
                amount=order.total_price,
                currency=currency,
                note=f"Order {order.order_number} cancelled.",
            )
        except PaymentGatewayError as exc:
            logger.warning(
                "refund_failed",
                extra={"order_number": order.order_number, "capture_id": order.provider_transaction_id},
            )
            return None, str(exc)
        return refund, ""
