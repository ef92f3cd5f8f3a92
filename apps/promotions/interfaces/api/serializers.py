from __future__ import annotations

from rest_framework import serializers

from storefront.serializers import StrictSerializer


class PromoCodeValidateSerializer(StrictSerializer):
    code = serializers.CharField(max_length=20)
    order_value = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0)
    product_ids = serializers.ListField(child=serializers.IntegerField(min_value=1), required=False, default=list)
