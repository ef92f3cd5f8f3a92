from django.contrib import admin

from .models import PromoCode, PromoCodeUsage


@admin.register(PromoCode)
class PromoCodeAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "code",
        "discount_type",
        "discount_value",
        "usage_count",
        "usage_limit",
        "valid_from",
        "valid_until",
        "is_active",
    )
    list_filter = ("discount_type", "is_active", "apply_to_all_products")
    search_fields = ("code", "description")
    filter_horizontal = ("products",)


@admin.register(PromoCodeUsage)
class PromoCodeUsageAdmin(admin.ModelAdmin):
    list_display = ("id", "code", "customer", "order", "discount_amount", "is_active", "used_at")
    list_filter = ("is_active",)
    search_fields = ("code",)
