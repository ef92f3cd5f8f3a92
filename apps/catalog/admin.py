from django.contrib import admin

from .models import Product


@admin.register(Product)
class ProductAdmin(admin.ModelAdmin):
    list_display = ("id", "name", "slug", "price", "enable_customizations", "is_active")
    list_filter = ("enable_customizations", "is_active")
    search_fields = ("name", "slug")
