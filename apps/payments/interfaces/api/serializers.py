from __future__ import annotations

from rest_framework import serializers

from storefront.serializers import StrictSerializer


class PaymentIntentCreateSerializer(StrictSerializer):
    order_id = serializers.IntegerField(min_value=1)


class PaymentCaptureSerializer(StrictSerializer):
    order_id = serializers.IntegerField(min_value=1)
    provider_order_id = serializers.CharField(max_length=100)


class AdminOrderCancelSerializer(StrictSerializer):
    reason = serializers.CharField(max_length=500, required=False, allow_blank=True, default="")
