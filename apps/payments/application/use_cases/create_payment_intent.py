from __future__ import annotations

import logging
from dataclasses import dataclass

from django.conf import settings
from django.db import transaction

from apps.orders.domain.errors import OrderNotFoundError
from apps.orders.models import Order
from apps.orders.services.order_service import OrderService
from apps.payments.application.facade import PaymentGatewayFacade
from apps.payments.domain.errors import PaymentStateError
from apps.payments.domain.ports import PaymentGatewayPort
from apps.payments.models import PaymentIntent

logger = logging.getLogger("storefront.payments")


@dataclass(frozen=True)
class CreatePaymentIntentCommand:
    order_id: int
    customer_id: int


class CreatePaymentIntentUseCase:
    @staticmethod
    def execute(
        cmd: CreatePaymentIntentCommand,
        *,
        gateway: PaymentGatewayPort | None = None,
    ) -> PaymentIntent:
        order = Order.objects.filter(id=cmd.order_id, customer_id=cmd.customer_id).first()
        if order is None:
            raise OrderNotFoundError(f"Order {cmd.order_id} not found.")
        if order.is_free or order.payment_status == Order.PAYMENT_FREE:
            raise PaymentStateError("Free orders do not need a payment.")
        if order.payment_status in (Order.PAYMENT_PAID, Order.PAYMENT_REFUNDED):
            raise PaymentStateError("Order has already been paid.")
        if order.order_status == Order.STATUS_CANCELLED:
            raise PaymentStateError("Order has been cancelled.")

        gateway = gateway or PaymentGatewayFacade.get()
        currency = getattr(settings, "PAYMENT_CURRENCY", "USD")
        redirect = gateway.create_intent(order=order, amount=order.total_price, currency=currency)

        with transaction.atomic():
            intent = PaymentIntent.objects.create(
                order=order,
                provider_code=gateway.code,
                provider_reference=redirect.provider_reference,
                amount=order.total_price,
                currency=currency,
                approval_url=redirect.approval_url,
            )
            OrderService.append_history(
                order,
                status="payment_intent_created",
                note=f"{gateway.name} checkout {redirect.provider_reference} opened.",
                changed_by=f"customer:{cmd.customer_id}",
            )

        logger.info(
            "payment_intent_created",
            extra={
                "order_number": order.order_number,
                "provider": gateway.code,
                "reference": redirect.provider_reference,
            },
        )
        return intent
