from __future__ import annotations

import logging
from dataclasses import dataclass

from django.db import IntegrityError, transaction
from django.utils import timezone

from apps.fulfillment.application.use_cases.complete_payment import (
    CaptureDetails,
    CompletePaymentCommand,
    CompletePaymentUseCase,
)
from apps.fulfillment.services.delivery_service import DeliveryService
from apps.fulfillment.services.fulfillment_service import notify_on_commit
from apps.notifications.domain.ports import NotificationSender
from apps.notifications.domain.types import NotificationKind
from apps.orders.models import Order
from apps.orders.services.order_service import OrderService
from apps.payments.application.facade import PaymentGatewayFacade
from apps.payments.domain.errors import WebhookProcessingError
from apps.payments.domain.ports import PaymentGatewayPort, VerifiedEvent
from apps.payments.domain.types import WebhookAction, WebhookEventKind
from apps.payments.models import PaymentIntent, WebhookEvent
from apps.promotions.application.use_cases.deactivate_promo_usage import (
    DeactivatePromoUsageCommand,
    DeactivatePromoUsageUseCase,
)

logger = logging.getLogger("storefront.payments")

WEBHOOK_ACTOR = "webhook"


@dataclass(frozen=True)
class HandleWebhookEventCommand:
    provider_code: str
    headers: dict
    payload: dict


@dataclass(frozen=True)
class WebhookResult:
    success: bool
    action: WebhookAction
    message: str
    order_id: int | None = None
    order_number: str = ""


class HandleWebhookEventUseCase:
    """
    Idempotent ingestion of provider payment events.

    The event id is checked before anything is written, the event row is
    stored (unprocessed) before any side effect, and the unique constraint
    on `WebhookEvent.event_id` turns a concurrent second delivery into a
    duplicate. Effects then run under the order row lock. An event whose
    processing failed stays unprocessed, so a redelivery of the same id
    runs it again instead of being reported as a duplicate.
    """

    @staticmethod
    def execute(
        cmd: HandleWebhookEventCommand,
        *,
        gateway: PaymentGatewayPort | None = None,
        sender: NotificationSender | None = None,
    ) -> WebhookResult:
        gateway = gateway or PaymentGatewayFacade.get(cmd.provider_code)
        verified = gateway.verify_event(payload=cmd.payload, headers=cmd.headers)

        seen = WebhookEvent.objects.filter(event_id=verified.event_id).select_related("order").first()
        if seen is not None and seen.processed:
            logger.info("webhook_duplicate", extra={"event_id": verified.event_id, "order_id": seen.order_id})
            return HandleWebhookEventUseCase._duplicate(verified, seen.order)

        if seen is not None:
            logger.info("webhook_retry", extra={"event_id": verified.event_id, "order_id": seen.order_id})
            event, order = seen, seen.order
        else:
            order = HandleWebhookEventUseCase._resolve_order(verified)
            if order is None:
                logger.warning(
                    "webhook_order_not_found",
                    extra={
                        "event_id": verified.event_id,
                        "event_type": verified.event_type,
                        "provider_order_id": verified.provider_order_id,
                        "capture_id": verified.capture_id,
                    },
                )
                return WebhookResult(success=False, action=WebhookAction.IGNORED, message="Order not found.")

            try:
                with transaction.atomic():
                    event = WebhookEvent.objects.create(
                        order=order,
                        provider_code=gateway.code,
                        event_id=verified.event_id,
                        event_type=verified.event_type,
                        raw_payload=cmd.payload,
                    )
            except IntegrityError:
                logger.info("webhook_duplicate_race", extra={"event_id": verified.event_id, "order_id": order.id})
                return HandleWebhookEventUseCase._duplicate(verified, order)

        try:
            with transaction.atomic():
                # Concurrent redeliveries of a failed event serialize on this row.
                event = WebhookEvent.objects.select_for_update().get(pk=event.pk)
                if event.processed:
                    return HandleWebhookEventUseCase._duplicate(verified, order)
                action, message = HandleWebhookEventUseCase._dispatch(order.id, verified, sender=sender)
                WebhookEvent.objects.filter(pk=event.pk).update(processed=True, processed_at=timezone.now())
        except Exception as exc:
            logger.exception(
                "webhook_processing_failed",
                extra={"event_id": verified.event_id, "order_number": order.order_number},
            )
            OrderService.append_history(
                order,
                status="webhook_error",
                note=f"{verified.event_type} ({verified.event_id}) failed: {exc}",
                changed_by=WEBHOOK_ACTOR,
            )
            raise WebhookProcessingError(str(exc), event_id=verified.event_id, order_id=order.id) from exc

        logger.info(
            "webhook_processed",
            extra={
                "event_id": verified.event_id,
                "event_type": verified.event_type,
                "order_number": order.order_number,
                "action": str(action),
            },
        )
        return WebhookResult(
            success=True,
            action=action,
            message=message,
            order_id=order.id,
            order_number=order.order_number,
        )

    @staticmethod
    def _duplicate(verified: VerifiedEvent, order: Order) -> WebhookResult:
        return WebhookResult(
            success=True,
            action=WebhookAction.DUPLICATE,
            message=f"Event {verified.event_id} was already received.",
            order_id=order.id,
            order_number=order.order_number,
        )

    @staticmethod
    def _resolve_order(verified: VerifiedEvent) -> Order | None:
        if verified.provider_order_id:
            order = Order.objects.filter(provider_order_id=verified.provider_order_id).first()
            if order is not None:
                return order
            intent = (
                PaymentIntent.objects.select_related("order")
                .filter(provider_reference=verified.provider_order_id)
                .first()
            )
            if intent is not None:
                return intent.order
        if verified.capture_id:
            return Order.objects.filter(provider_transaction_id=verified.capture_id).first()
        return None

    @staticmethod
    def _dispatch(
        order_id: int,
        verified: VerifiedEvent,
        *,
        sender: NotificationSender | None,
    ) -> tuple[WebhookAction, str]:
        order = OrderService.get_for_update(order_id)
        handler = {
            WebhookEventKind.PAYMENT_COMPLETED: HandleWebhookEventUseCase._on_completed,
            WebhookEventKind.PAYMENT_PENDING: HandleWebhookEventUseCase._on_pending,
            WebhookEventKind.PAYMENT_DENIED: HandleWebhookEventUseCase._on_denied,
            WebhookEventKind.PAYMENT_REFUNDED: HandleWebhookEventUseCase._on_refunded,
        }.get(verified.kind)
        if handler is None:
            OrderService.append_history(
                order,
                status="webhook_event",
                note=f"Received {verified.event_type} ({verified.event_id}).",
                changed_by=WEBHOOK_ACTOR,
            )
            return WebhookAction.UPDATED, f"Recorded {verified.event_type}."
        return handler(order, verified, sender=sender)

    @staticmethod
    def _on_completed(order: Order, verified: VerifiedEvent, *, sender) -> tuple[WebhookAction, str]:
        if order.payment_status == Order.PAYMENT_PAID:
            return WebhookAction.DUPLICATE, "Payment already completed."
        if order.payment_status == Order.PAYMENT_REFUNDED:
            OrderService.append_history(
                order,
                status="webhook_event",
                note=f"Ignored {verified.event_type} for a refunded order.",
                changed_by=WEBHOOK_ACTOR,
            )
            return WebhookAction.UPDATED, "Order was already refunded."

        PaymentIntent.objects.filter(order=order, provider_reference=verified.provider_order_id).update(
            status=PaymentIntent.STATUS_CAPTURED
        )
        result = CompletePaymentUseCase.execute(
            CompletePaymentCommand(
                order_id=order.id,
                capture=CaptureDetails(
                    transaction_id=verified.capture_id or order.provider_transaction_id,
                    provider_order_id=verified.provider_order_id,
                    payer_email=verified.payer_email,
                    amount=verified.amount,
                    currency=verified.currency,
                ),
                changed_by=WEBHOOK_ACTOR,
            ),
            sender=sender,
        )
        OrderService.append_history(
            order,
            status="webhook_payment_completed",
            note=f"Completed by {verified.event_type} ({verified.event_id}).",
            changed_by=WEBHOOK_ACTOR,
        )
        if result.auto_delivered:
            return WebhookAction.COMPLETED, "Payment completed and files delivered."
        return WebhookAction.COMPLETED, "Payment completed; order awaits customization."

    @staticmethod
    def _on_pending(order: Order, verified: VerifiedEvent, *, sender) -> tuple[WebhookAction, str]:
        reason = verified.reason or "no reason given"
        patch = {"payment_status": Order.PAYMENT_PENDING}
        if verified.capture_id:
            patch["provider_transaction_id"] = verified.capture_id
        unchanged = all(getattr(order, name) == value for name, value in patch.items())

        if order.payment_status in (Order.PAYMENT_PAID, Order.PAYMENT_FREE, Order.PAYMENT_REFUNDED) or unchanged:
            OrderService.append_history(
                order,
                status="webhook_payment_pending",
                note=f"Provider reports payment pending ({reason}); status kept at {order.payment_status}.",
                changed_by=WEBHOOK_ACTOR,
            )
            return WebhookAction.UPDATED, "Pending notice recorded."

        OrderService.update_status(
            order.id,
            patch,
            history_status="webhook_payment_pending",
            note=f"Payment held by provider: {reason}.",
            changed_by=WEBHOOK_ACTOR,
        )
        PaymentIntent.objects.filter(order=order, provider_reference=verified.provider_order_id).update(
            status=PaymentIntent.STATUS_PENDING
        )
        return WebhookAction.UPDATED, f"Payment pending: {reason}."

    @staticmethod
    def _on_denied(order: Order, verified: VerifiedEvent, *, sender) -> tuple[WebhookAction, str]:
        if order.payment_status in (Order.PAYMENT_PAID, Order.PAYMENT_FREE, Order.PAYMENT_REFUNDED):
            OrderService.append_history(
                order,
                status="webhook_payment_denied_ignored",
                note=f"{verified.event_type} ({verified.event_id}) ignored; payment is {order.payment_status}.",
                changed_by=WEBHOOK_ACTOR,
            )
            return WebhookAction.UPDATED, "Denial ignored for a settled order."

        OrderService.update_status(
            order.id,
            {"payment_status": Order.PAYMENT_FAILED, "order_status": Order.STATUS_CANCELLED},
            history_status="webhook_payment_denied",
            note=f"Payment denied by provider: {verified.reason or verified.event_type}.",
            changed_by=WEBHOOK_ACTOR,
        )
        PaymentIntent.objects.filter(order=order, provider_reference=verified.provider_order_id).update(
            status=PaymentIntent.STATUS_FAILED
        )
        notify_on_commit(order.id, NotificationKind.PAYMENT_FAILED, sender=sender)
        return WebhookAction.FAILED, "Payment denied; order cancelled."

    @staticmethod
    def _on_refunded(order: Order, verified: VerifiedEvent, *, sender) -> tuple[WebhookAction, str]:
        if order.payment_status == Order.PAYMENT_REFUNDED:
            OrderService.append_history(
                order,
                status="webhook_event",
                note=f"Repeated refund notice {verified.event_id}.",
                changed_by=WEBHOOK_ACTOR,
            )
            return WebhookAction.UPDATED, "Order was already refunded."

        OrderService.update_status(
            order.id,
            {"payment_status": Order.PAYMENT_REFUNDED, "order_status": Order.STATUS_CANCELLED},
            history_status="webhook_payment_refunded",
            note=f"Payment refunded ({verified.event_id}).",
            changed_by=WEBHOOK_ACTOR,
        )
        revoked = DeliveryService.revoke_access(order)
        released = DeactivatePromoUsageUseCase.execute(DeactivatePromoUsageCommand(order_id=order.id))
        return WebhookAction.UPDATED, f"Refund recorded; {revoked} grant(s) revoked, {released} promo use(s) released."
