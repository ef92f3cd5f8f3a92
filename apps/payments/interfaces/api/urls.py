from django.urls import path

from .views import (
    AdminOrderCancelAPI,
    AdminOrderWebhooksAPI,
    PaymentCaptureAPI,
    PaymentIntentAPI,
    PaymentWebhookAPI,
)

urlpatterns = [
    path("payments/intent/", PaymentIntentAPI.as_view(), name="api_payment_intent"),
    path("payments/capture/", PaymentCaptureAPI.as_view(), name="api_payment_capture"),
    path("webhooks/payment/", PaymentWebhookAPI.as_view(), name="api_payment_webhook"),
    path("admin/orders/<int:order_id>/webhooks/", AdminOrderWebhooksAPI.as_view(), name="api_admin_order_webhooks"),
    path("admin/orders/<int:order_id>/cancel/", AdminOrderCancelAPI.as_view(), name="api_admin_order_cancel"),
]
