from __future__ import annotations

from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from rest_framework.views import APIView

from apps.orders.application.use_cases.create_order import (
    CreateOrderCommand,
    CreateOrderUseCase,
    OrderItemInput,
)
from apps.orders.domain.errors import (
    OrderNumberExhaustedError,
    OrderValidationError,
    ProductNotFoundError,
)
from apps.orders.models import Order
from apps.promotions.domain.errors import PromoCodeRejectedError
from storefront.api_responses import error, invalid_input, success

from .serializers import OrderCreateSerializer, OrderSerializer


class OrderCreateAPI(APIView):
    permission_classes = [IsAuthenticated]

    def post(self, request):
        serializer = OrderCreateSerializer(data=request.data)
        if not serializer.is_valid():
            return invalid_input(serializer)

        data = serializer.validated_data
        customer_email = data.get("customer_email") or request.user.email
        if not customer_email:
            return error(message="Customer email is required.", field="customer_email", code="validation_error")

        try:
            order = CreateOrderUseCase.execute(
                CreateOrderCommand(
                    customer_id=request.user.id,
                    customer_email=customer_email,
                    customer_name=data["customer_name"],
                    customer_notes=data["customer_notes"],
                    expected_total=data.get("expected_total"),
                    items=tuple(OrderItemInput(**item) for item in data["items"]),
                )
            )
        except ProductNotFoundError as exc:
            return error(message=str(exc), field=exc.field, code="not_found", http_status=status.HTTP_404_NOT_FOUND)
        except PromoCodeRejectedError as exc:
            http_status = (
                status.HTTP_404_NOT_FOUND
                if exc.reason == PromoCodeRejectedError.REASON_NOT_FOUND
                else status.HTTP_400_BAD_REQUEST
            )
            return error(message=str(exc), field=exc.field, code=exc.reason, http_status=http_status)
        except OrderValidationError as exc:
            return error(message=str(exc), field=exc.field, code="validation_error")
        except OrderNumberExhaustedError as exc:
            return error(message=str(exc), code="conflict", http_status=status.HTTP_409_CONFLICT)

        return success(
            data={
                "order_id": order.id,
                "order_number": order.order_number,
                "order_status": order.order_status,
                "payment_status": order.payment_status,
                "total_price": str(order.total_price),
            },
            http_status=status.HTTP_201_CREATED,
        )


class OrderDetailAPI(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request, order_id: int):
        orders = Order.objects.prefetch_related("items", "history")
        if not request.user.is_staff:
            orders = orders.filter(customer_id=request.user.id)
        order = orders.filter(id=order_id).first()
        if order is None:
            return error(message="Order not found.", code="not_found", http_status=status.HTTP_404_NOT_FOUND)
        return success(data=OrderSerializer(order).data)
