from __future__ import annotations

from rest_framework import serializers

from apps.orders.models import Order, OrderHistoryEntry, OrderItem
from storefront.serializers import StrictSerializer


class OrderItemInputSerializer(StrictSerializer):
    product_id = serializers.IntegerField(min_value=1)
    quantity = serializers.IntegerField(min_value=1, max_value=100, required=False, default=1)
    promo_code = serializers.CharField(max_length=20, required=False, allow_blank=True, default="")
    customization_payload = serializers.DictField(required=False, default=dict)


class OrderCreateSerializer(StrictSerializer):
    customer_email = serializers.EmailField(required=False)
    customer_name = serializers.CharField(max_length=200)
    customer_notes = serializers.CharField(required=False, allow_blank=True, default="")
    items = OrderItemInputSerializer(many=True, allow_empty=False)
    expected_total = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0, required=False)


class OrderItemSerializer(serializers.ModelSerializer):
    class Meta:
        model = OrderItem
        fields = [
            "id",
            "product_id",
            "product_name",
            "quantity",
            "original_price",
            "discount_amount",
            "unit_price",
            "total_price",
            "promo_code",
            "requires_customization",
            "delivery_status",
            "delivered_at",
        ]


class OrderHistoryEntrySerializer(serializers.ModelSerializer):
    class Meta:
        model = OrderHistoryEntry
        fields = ["status", "note", "changed_by", "timestamp"]


class OrderSerializer(serializers.ModelSerializer):
    items = OrderItemSerializer(many=True, read_only=True)
    history = OrderHistoryEntrySerializer(many=True, read_only=True)

    class Meta:
        model = Order
        fields = [
            "id",
            "order_number",
            "customer_email",
            "customer_name",
            "subtotal",
            "total_promo_discount",
            "total_price",
            "applied_promo_codes",
            "payment_status",
            "order_status",
            "customization_status",
            "has_customizable_products",
            "paid_at",
            "completed_at",
            "download_expiry",
            "created_at",
            "items",
            "history",
        ]
