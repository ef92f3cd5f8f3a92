from django.contrib import admin

from .models import PaymentIntent, WebhookEvent


@admin.register(PaymentIntent)
class PaymentIntentAdmin(admin.ModelAdmin):
    list_display = ("id", "order", "provider_code", "provider_reference", "amount", "currency", "status", "created_at")
    list_filter = ("provider_code", "status")
    search_fields = ("provider_reference", "order__order_number")


@admin.register(WebhookEvent)
class WebhookEventAdmin(admin.ModelAdmin):
    list_display = ("id", "event_id", "event_type", "order", "processed", "timestamp")
    list_filter = ("processed", "provider_code", "event_type")
    search_fields = ("event_id", "order__order_number")
    readonly_fields = ("raw_payload",)
