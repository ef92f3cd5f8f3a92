from django.conf import settings
from django.db import models
from django.utils import timezone

MIME_TYPES = {
    "psd": "image/vnd.adobe.photoshop",
    "ai": "application/postscript",
    "eps": "application/postscript",
    "pdf": "application/pdf",
    "svg": "image/svg+xml",
    "zip": "application/zip",
    "rar": "application/vnd.rar",
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "gif": "image/gif",
    "webp": "image/webp",
    "mp4": "video/mp4",
    "mov": "video/quicktime",
    "webm": "video/webm",
}


class DesignFile(models.Model):
    """A downloadable asset, either stock for a product or produced for one order."""

    product = models.ForeignKey("catalog.Product", on_delete=models.CASCADE, related_name="design_files")
    order = models.ForeignKey(
        "orders.Order", on_delete=models.CASCADE, null=True, blank=True, related_name="design_files"
    )
    is_for_order = models.BooleanField(default=False)
    color_name = models.CharField(max_length=50, blank=True, default="")
    color_hex = models.CharField(max_length=7, blank=True, default="")
    file_name = models.CharField(max_length=255)
    file_url = models.CharField(max_length=500)
    file_type = models.CharField(max_length=10)
    file_size = models.PositiveBigIntegerField()
    mime_type = models.CharField(max_length=100, blank=True, default="")
    description = models.CharField(max_length=500, blank=True, default="")
    is_active = models.BooleanField(default=True)
    max_downloads = models.PositiveIntegerField(null=True, blank=True)
    expires_at = models.DateTimeField(null=True, blank=True)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name="+"
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=["product", "is_active", "is_for_order"], name="design_file_product_idx"),
            models.Index(fields=["order", "product"], name="design_file_order_idx"),
        ]

    def __str__(self) -> str:
        return self.file_name

    def save(self, *args, **kwargs):
        self.file_type = (self.file_type or "").strip().lower()
        self.color_hex = (self.color_hex or "").strip().lower()
        if not self.mime_type:
            self.mime_type = MIME_TYPES.get(self.file_type, "application/octet-stream")
        super().save(*args, **kwargs)

    @property
    def is_expired(self) -> bool:
        return bool(self.expires_at and timezone.now() > self.expires_at)


class DesignFileGrant(models.Model):
    """A customer's counted, time-boxed right to download one file for one order."""

    order = models.ForeignKey("orders.Order", on_delete=models.CASCADE, related_name="design_file_grants")
    design_file = models.ForeignKey(DesignFile, on_delete=models.CASCADE, related_name="grants")
    download_count = models.PositiveIntegerField(default=0)
    first_downloaded_at = models.DateTimeField(null=True, blank=True)
    last_downloaded_at = models.DateTimeField(null=True, blank=True)
    is_active = models.BooleanField(default=True)
    expires_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["order", "design_file"], name="uq_grant_order_design_file"),
        ]
        indexes = [models.Index(fields=["order", "is_active"], name="design_grant_order_idx")]

    def __str__(self) -> str:
        return f"order={self.order_id} file={self.design_file_id}"

    @property
    def is_expired(self) -> bool:
        return bool(self.expires_at and timezone.now() > self.expires_at)
