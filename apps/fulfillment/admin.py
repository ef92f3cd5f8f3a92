from django.contrib import admin

from .models import DesignFile, DesignFileGrant


@admin.register(DesignFile)
class DesignFileAdmin(admin.ModelAdmin):
    list_display = ("id", "file_name", "product", "order", "is_for_order", "color_hex", "is_active", "created_at")
    list_filter = ("is_for_order", "is_active", "file_type")
    search_fields = ("file_name", "product__name", "order__order_number")


@admin.register(DesignFileGrant)
class DesignFileGrantAdmin(admin.ModelAdmin):
    list_display = ("id", "order", "design_file", "download_count", "is_active", "expires_at")
    list_filter = ("is_active",)
    search_fields = ("order__order_number", "design_file__file_name")
