from __future__ import annotations

import logging
from dataclasses import dataclass

from apps.fulfillment.application.use_cases.complete_payment import (
    CaptureDetails,
    CompletePaymentCommand,
    CompletePaymentUseCase,
)
from apps.fulfillment.services.fulfillment_service import notify_on_commit
from apps.notifications.domain.ports import NotificationSender
from apps.notifications.domain.types import NotificationKind
from apps.orders.domain.errors import OrderNotFoundError
from apps.orders.models import Order
from apps.orders.services.order_service import OrderService
from apps.payments.application.facade import PaymentGatewayFacade
from apps.payments.domain.errors import PaymentGatewayError, PaymentStateError
from apps.payments.domain.ports import PaymentGatewayPort
from apps.payments.domain.types import CaptureStatus
from apps.payments.models import PaymentIntent

logger = logging.getLogger("storefront.payments")


@dataclass(frozen=True)
class CapturePaymentCommand:
    order_id: int
    provider_order_id: str
    customer_id: int


@dataclass(frozen=True)
class CaptureOutcome:
    order: Order
    status: str
    transaction_id: str = ""
    already_paid: bool = False
    auto_fulfilled: bool = False
    message: str = ""


class CapturePaymentUseCase:
    """
    Synchronous capture after the customer approves the checkout.

    Gateway failures are recorded on the order (`payment_status=failed`) and
    re-raised so the caller can answer with a retryable error.
    """

    @staticmethod
    def execute(
        cmd: CapturePaymentCommand,
        *,
        gateway: PaymentGatewayPort | None = None,
        sender: NotificationSender | None = None,
    ) -> CaptureOutcome:
        order = Order.objects.filter(id=cmd.order_id, customer_id=cmd.customer_id).first()
        if order is None:
            raise OrderNotFoundError(f"Order {cmd.order_id} not found.")

        intent = PaymentIntent.objects.filter(order=order, provider_reference=cmd.provider_order_id).first()
        if intent is None:
            raise PaymentStateError(
                "Payment reference does not belong to this order.",
                field="provider_order_id",
            )

        if order.payment_status == Order.PAYMENT_PAID:
            return CaptureOutcome(
                order=order,
                status=CaptureStatus.COMPLETED,
                transaction_id=order.provider_transaction_id,
                already_paid=True,
                auto_fulfilled=order.order_status == Order.STATUS_COMPLETED,
                message="Payment was already captured.",
            )
        if order.order_status == Order.STATUS_CANCELLED:
            raise PaymentStateError("Order has been cancelled.")

        gateway = gateway or PaymentGatewayFacade.get(intent.provider_code)
        try:
            capture = gateway.capture(reference=intent.provider_reference)
        except PaymentGatewayError as exc:
            logger.warning(
                "payment_capture_failed",
                extra={"order_number": order.order_number, "reference": intent.provider_reference},
            )
            CapturePaymentUseCase._mark_failed(
                order,
                intent,
                history_status="payment_capture_failed",
                note=f"Capture failed: {exc}",
                sender=sender,
            )
            raise

        status = (capture.status or "").upper()
        if status == CaptureStatus.COMPLETED:
            PaymentIntent.objects.filter(pk=intent.pk).update(status=PaymentIntent.STATUS_CAPTURED)
            result = CompletePaymentUseCase.execute(
                CompletePaymentCommand(
                    order_id=order.id,
                    capture=CaptureDetails(
                        transaction_id=capture.transaction_id,
                        provider_order_id=intent.provider_reference,
                        payer_email=capture.payer_email,
                        amount=capture.amount,
                        currency=capture.currency,
                    ),
                    changed_by=f"customer:{cmd.customer_id}",
                ),
                sender=sender,
            )
            return CaptureOutcome(
                order=result.order,
                status=status,
                transaction_id=capture.transaction_id,
                already_paid=result.already_paid,
                auto_fulfilled=result.auto_delivered,
                message="Payment captured.",
            )

        if status == CaptureStatus.PENDING:
            PaymentIntent.objects.filter(pk=intent.pk).update(status=PaymentIntent.STATUS_PENDING)
            reason = capture.status_reason or "held for review"
            order = OrderService.update_status(
                order.id,
                {
                    "payment_status": Order.PAYMENT_PENDING,
                    "provider_order_id": intent.provider_reference,
                    "provider_transaction_id": capture.transaction_id,
                },
                history_status="payment_pending",
                note=f"Payment is pending at the provider: {reason}.",
                changed_by=f"customer:{cmd.customer_id}",
            )
            return CaptureOutcome(
                order=order,
                status=status,
                transaction_id=capture.transaction_id,
                message=f"Payment pending: {reason}.",
            )

        order = CapturePaymentUseCase._mark_failed(
            order,
            intent,
            history_status="payment_declined",
            note=f"Provider returned capture status {status or 'UNKNOWN'}.",
            sender=sender,
        )
        return CaptureOutcome(
            order=order,
            status=status,
            transaction_id=capture.transaction_id,
            message="Payment was declined.",
        )

    @staticmethod
    def _mark_failed(
        order: Order,
        intent: PaymentIntent,
        *,
        history_status: str,
        note: str,
        sender: NotificationSender | None,
    ) -> Order:
        PaymentIntent.objects.filter(pk=intent.pk).update(status=PaymentIntent.STATUS_FAILED)
        if order.payment_status == Order.PAYMENT_FAILED:
            OrderService.append_history(order, status=history_status, note=note)
        else:
            order = OrderService.update_status(
                order.id,
                {"payment_status": Order.PAYMENT_FAILED},
                history_status=history_status,
                note=note,
            )
        notify_on_commit(order.id, NotificationKind.PAYMENT_FAILED, sender=sender)
        return order
