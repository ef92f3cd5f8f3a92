from django.contrib import admin

from .models import Order, OrderHistoryEntry, OrderItem


class OrderItemInline(admin.TabularInline):
    model = OrderItem
    extra = 0
    readonly_fields = ("product", "product_name", "quantity", "unit_price", "total_price", "delivery_status")


class OrderHistoryInline(admin.TabularInline):
    model = OrderHistoryEntry
    extra = 0
    can_delete = False
    readonly_fields = ("status", "note", "changed_by", "timestamp")

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = (
        "order_number",
        "customer_email",
        "total_price",
        "payment_status",
        "order_status",
        "customization_status",
        "created_at",
    )
    list_filter = ("payment_status", "order_status", "customization_status")
    search_fields = ("order_number", "customer_email", "provider_order_id", "provider_transaction_id")
    inlines = [OrderItemInline, OrderHistoryInline]
