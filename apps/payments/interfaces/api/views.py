from __future__ import annotations

import logging

from django.conf import settings
from rest_framework import status
from rest_framework.permissions import AllowAny, IsAdminUser, IsAuthenticated
from rest_framework.views import APIView

from apps.orders.domain.errors import OrderNotFoundError
from apps.payments.application.use_cases.cancel_order import (
    CancelOrderCommand,
    CancelOrderUseCase,
)
from apps.payments.application.use_cases.capture_payment import (
    CapturePaymentCommand,
    CapturePaymentUseCase,
)
from apps.payments.application.use_cases.create_payment_intent import (
    CreatePaymentIntentCommand,
    CreatePaymentIntentUseCase,
)
from apps.payments.application.use_cases.get_webhook_status import (
    GetWebhookStatusCommand,
    GetWebhookStatusUseCase,
)
from apps.payments.application.use_cases.handle_webhook_event import (
    HandleWebhookEventCommand,
    HandleWebhookEventUseCase,
)
from apps.payments.domain.errors import (
    InvalidWebhookError,
    PaymentGatewayError,
    PaymentStateError,
    WebhookProcessingError,
)
from apps.payments.domain.types import CaptureStatus
from storefront.api_responses import error, invalid_input, success

from .serializers import AdminOrderCancelSerializer, PaymentCaptureSerializer, PaymentIntentCreateSerializer

logger = logging.getLogger("storefront.payments")


class PaymentIntentAPI(APIView):
    permission_classes = [IsAuthenticated]

    def post(self, request):
        serializer = PaymentIntentCreateSerializer(data=request.data)
        if not serializer.is_valid():
            return invalid_input(serializer)

        try:
            intent = CreatePaymentIntentUseCase.execute(
                CreatePaymentIntentCommand(
                    order_id=serializer.validated_data["order_id"],
                    customer_id=request.user.id,
                )
            )
        except OrderNotFoundError as exc:
            return error(message=str(exc), code="not_found", http_status=status.HTTP_404_NOT_FOUND)
        except PaymentStateError as exc:
            return error(message=str(exc), field=exc.field, code="conflict", http_status=status.HTTP_409_CONFLICT)
        except PaymentGatewayError as exc:
            return error(message=str(exc), code="payment_gateway_error", http_status=status.HTTP_502_BAD_GATEWAY)

        return success(
            data={
                "order_id": intent.order_id,
                "provider": intent.provider_code,
                "provider_order_id": intent.provider_reference,
                "approval_url": intent.approval_url,
            },
            http_status=status.HTTP_201_CREATED,
        )


class PaymentCaptureAPI(APIView):
    permission_classes = [IsAuthenticated]

    def post(self, request):
        serializer = PaymentCaptureSerializer(data=request.data)
        if not serializer.is_valid():
            return invalid_input(serializer)

        data = serializer.validated_data
        try:
            outcome = CapturePaymentUseCase.execute(
                CapturePaymentCommand(
                    order_id=data["order_id"],
                    provider_order_id=data["provider_order_id"],
                    customer_id=request.user.id,
                )
            )
        except OrderNotFoundError as exc:
            return error(message=str(exc), code="not_found", http_status=status.HTTP_404_NOT_FOUND)
        except PaymentStateError as exc:
            http_status = status.HTTP_400_BAD_REQUEST if exc.field else status.HTTP_409_CONFLICT
            return error(message=str(exc), field=exc.field, code="conflict", http_status=http_status)
        except PaymentGatewayError as exc:
            return error(message=str(exc), code="payment_gateway_error", http_status=status.HTTP_502_BAD_GATEWAY)

        order = outcome.order
        payload = {
            "order_id": order.id,
            "order_number": order.order_number,
            "capture_status": str(outcome.status),
            "transaction_id": outcome.transaction_id,
            "payment_status": order.payment_status,
            "order_status": order.order_status,
            "already_paid": outcome.already_paid,
            "auto_fulfilled": outcome.auto_fulfilled,
            "message": outcome.message,
        }
        if outcome.status == CaptureStatus.COMPLETED:
            return success(data=payload)
        if outcome.status == CaptureStatus.PENDING:
            return success(data=payload, http_status=status.HTTP_202_ACCEPTED)
        return error(message=outcome.message, code="payment_declined", details=payload)


class PaymentWebhookAPI(APIView):
    authentication_classes = []
    permission_classes = [AllowAny]

    def post(self, request):
        if not isinstance(request.data, dict):
            return error(message="Invalid payload.", code="invalid_webhook")

        provider_code = request.query_params.get("provider") or getattr(settings, "PAYMENT_PROVIDER", "paypal")
        try:
            result = HandleWebhookEventUseCase.execute(
                HandleWebhookEventCommand(
                    provider_code=provider_code,
                    headers=dict(request.headers),
                    payload=request.data,
                )
            )
        except WebhookProcessingError:
            # The event stays unprocessed; the provider's redelivery runs it again.
            return error(
                message="Webhook processing failed.",
                code="webhook_processing_failed",
                http_status=status.HTTP_500_INTERNAL_SERVER_ERROR,
            )
        except InvalidWebhookError as exc:
            logger.warning("webhook_rejected", extra={"provider": provider_code, "reason": str(exc)})
            return error(message=str(exc), code="invalid_webhook")
        except PaymentGatewayError as exc:
            return error(message=str(exc), code="payment_gateway_error", http_status=status.HTTP_502_BAD_GATEWAY)
        except ValueError as exc:
            return error(message=str(exc), code="unknown_provider")

        if not result.success:
            # Acknowledged with 200 so the provider stops retrying an event we cannot match.
            return error(message=result.message, code="order_not_found", http_status=status.HTTP_200_OK)

        return success(
            data={
                "action": str(result.action),
                "message": result.message,
                "order_number": result.order_number,
            }
        )


class AdminOrderWebhooksAPI(APIView):
    permission_classes = [IsAdminUser]

    def get(self, request, order_id: int):
        try:
            summary = GetWebhookStatusUseCase.execute(GetWebhookStatusCommand(order_id=order_id))
        except OrderNotFoundError as exc:
            return error(message=str(exc), code="not_found", http_status=status.HTTP_404_NOT_FOUND)
        return success(data=summary)


class AdminOrderCancelAPI(APIView):
    """Cancels an order, refunding it at the provider when it was paid."""

    permission_classes = [IsAdminUser]

    def post(self, request, order_id: int):
        serializer = AdminOrderCancelSerializer(data=request.data)
        if not serializer.is_valid():
            return invalid_input(serializer)

        try:
            result = CancelOrderUseCase.execute(
                CancelOrderCommand(
                    order_id=order_id,
                    changed_by=request.user.get_username() or f"user:{request.user.id}",
                    reason=serializer.validated_data["reason"],
                )
            )
        except OrderNotFoundError as exc:
            return error(message=str(exc), code="not_found", http_status=status.HTTP_404_NOT_FOUND)
        except PaymentStateError as exc:
            return error(message=str(exc), code="conflict", http_status=status.HTTP_409_CONFLICT)

        order = result.order
        return success(
            data={
                "order_id": order.id,
                "order_number": order.order_number,
                "order_status": order.order_status,
                "payment_status": order.payment_status,
                "refund_status": result.refund_status,
                "refund_id": result.refund_id,
                "refund_error": result.refund_error,
            }
        )
