from __future__ import annotations

import re

from rest_framework import serializers

from apps.fulfillment.models import MIME_TYPES
from storefront.serializers import StrictSerializer

_HEX_COLOR = re.compile(r"^#[0-9a-fA-F]{6}$")


class MarkOrderCompleteSerializer(StrictSerializer):
    note = serializers.CharField(max_length=500, required=False, allow_blank=True, default="")


class UploadedFileSerializer(StrictSerializer):
    file_name = serializers.CharField(max_length=255)
    file_url = serializers.CharField(max_length=500)
    file_type = serializers.CharField(max_length=10)
    file_size = serializers.IntegerField(min_value=0)
    description = serializers.CharField(max_length=500, required=False, allow_blank=True, default="")

    def validate_file_type(self, value: str) -> str:
        value = value.strip().lower()
        if value not in MIME_TYPES:
            raise serializers.ValidationError("Unsupported file type.")
        return value


class AttachOrderFilesSerializer(StrictSerializer):
    product_id = serializers.IntegerField(min_value=1)
    color_name = serializers.CharField(max_length=50, required=False, allow_blank=True, default="")
    color_hex = serializers.CharField(max_length=7, required=False, allow_blank=True, default="")
    files = UploadedFileSerializer(many=True, allow_empty=False)

    def validate_color_hex(self, value: str) -> str:
        if value and not _HEX_COLOR.match(value):
            raise serializers.ValidationError("Use a #rrggbb color.")
        return value.lower()
