from django.conf import settings
from django.db import models


class Order(models.Model):
    PAYMENT_PENDING = "pending"
    PAYMENT_PAID = "paid"
    PAYMENT_FREE = "free"
    PAYMENT_FAILED = "failed"
    PAYMENT_REFUNDED = "refunded"

    PAYMENT_STATUS_CHOICES = [
        (PAYMENT_PENDING, "Pending"),
        (PAYMENT_PAID, "Paid"),
        (PAYMENT_FREE, "Free"),
        (PAYMENT_FAILED, "Failed"),
        (PAYMENT_REFUNDED, "Refunded"),
    ]

    STATUS_PENDING = "pending"
    STATUS_PROCESSING = "processing"
    STATUS_COMPLETED = "completed"
    STATUS_CANCELLED = "cancelled"

    STATUS_CHOICES = [
        (STATUS_PENDING, "Pending"),
        (STATUS_PROCESSING, "Processing"),
        (STATUS_COMPLETED, "Completed"),
        (STATUS_CANCELLED, "Cancelled"),
    ]

    CUSTOMIZATION_NONE = "none"
    CUSTOMIZATION_PENDING = "pending"
    CUSTOMIZATION_PROCESSING = "processing"
    CUSTOMIZATION_COMPLETED = "completed"

    CUSTOMIZATION_STATUS_CHOICES = [
        (CUSTOMIZATION_NONE, "None"),
        (CUSTOMIZATION_PENDING, "Pending"),
        (CUSTOMIZATION_PROCESSING, "Processing"),
        (CUSTOMIZATION_COMPLETED, "Completed"),
    ]

    order_number = models.CharField(max_length=32, unique=True)
    customer = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name="orders"
    )
    customer_email = models.EmailField(max_length=254)
    customer_name = models.CharField(max_length=200)
    customer_notes = models.TextField(blank=True, default="")

    subtotal = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    total_promo_discount = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    total_price = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    applied_promo_codes = models.JSONField(default=list, blank=True)

    payment_status = models.CharField(max_length=20, choices=PAYMENT_STATUS_CHOICES, default=PAYMENT_PENDING)
    order_status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_PENDING)
    customization_status = models.CharField(
        max_length=20, choices=CUSTOMIZATION_STATUS_CHOICES, default=CUSTOMIZATION_NONE
    )
    has_customizable_products = models.BooleanField(default=False)

    provider_order_id = models.CharField(max_length=100, blank=True, default="", db_index=True)
    provider_transaction_id = models.CharField(max_length=100, blank=True, default="", db_index=True)
    payer_email = models.EmailField(max_length=254, blank=True, default="")
    paid_at = models.DateTimeField(null=True, blank=True)

    processed_at = models.DateTimeField(null=True, blank=True)
    processed_by = models.CharField(max_length=64, blank=True, default="")
    completed_at = models.DateTimeField(null=True, blank=True)
    download_expiry = models.DateTimeField(null=True, blank=True)
    email_sent = models.BooleanField(default=False)
    email_sent_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=["customer", "order_status"], name="order_customer_status_idx"),
            models.Index(fields=["payment_status", "order_status"], name="order_payment_status_idx"),
            models.Index(fields=["order_status", "created_at"], name="order_status_created_idx"),
        ]

    def __str__(self) -> str:
        return self.order_number

    @property
    def is_free(self) -> bool:
        return self.total_price == 0

    @property
    def is_payment_settled(self) -> bool:
        return self.payment_status in (self.PAYMENT_PAID, self.PAYMENT_FREE)


class OrderItem(models.Model):
    DELIVERY_PENDING = "pending"
    DELIVERY_DELIVERED = "delivered"
    DELIVERY_AWAITING_CUSTOMIZATION = "awaiting_customization"

    DELIVERY_STATUS_CHOICES = [
        (DELIVERY_PENDING, "Pending"),
        (DELIVERY_DELIVERED, "Delivered"),
        (DELIVERY_AWAITING_CUSTOMIZATION, "Awaiting customization"),
    ]

    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name="items")
    position = models.PositiveIntegerField(default=0)
    product = models.ForeignKey("catalog.Product", on_delete=models.PROTECT)
    product_name = models.CharField(max_length=255)
    product_slug = models.CharField(max_length=255)
    quantity = models.PositiveIntegerField(default=1)
    original_price = models.DecimalField(max_digits=12, decimal_places=2)
    discount_amount = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    unit_price = models.DecimalField(max_digits=12, decimal_places=2)
    total_price = models.DecimalField(max_digits=12, decimal_places=2)
    promo_code = models.CharField(max_length=20, blank=True, default="")
    requires_customization = models.BooleanField(default=False)
    customization_payload = models.JSONField(default=dict, blank=True)
    delivery_status = models.CharField(
        max_length=32, choices=DELIVERY_STATUS_CHOICES, default=DELIVERY_PENDING
    )
    delivered_at = models.DateTimeField(null=True, blank=True)
    delivery_notes = models.TextField(blank=True, default="")

    class Meta:
        ordering = ["position", "id"]

    def __str__(self) -> str:
        return f"{self.order} - {self.product_name} x{self.quantity}"

    @property
    def selected_color_hexes(self) -> list[str]:
        colors = (self.customization_payload or {}).get("colors") or []
        return [str(c.get("hex", "")).lower() for c in colors if c.get("hex")]


class OrderHistoryEntry(models.Model):
    """One audit row per state transition. Rows are never updated or deleted."""

    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name="history")
    status = models.CharField(max_length=64)
    note = models.TextField(blank=True, default="")
    changed_by = models.CharField(max_length=64, default="system")
    timestamp = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["timestamp", "id"]
        indexes = [models.Index(fields=["order", "timestamp"], name="order_history_order_ts_idx")]

    def __str__(self) -> str:
        return f"{self.order_id}:{self.status}"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValueError("Order history entries are append-only.")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValueError("Order history entries are append-only.")


class OrderNumberSequence(models.Model):
    prefix = models.CharField(max_length=16)
    year = models.PositiveIntegerField()
    last_value = models.PositiveIntegerField(default=0)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["prefix", "year"], name="uq_order_number_sequence"),
        ]

    def __str__(self) -> str:
        return f"{self.prefix}-{self.year}:{self.last_value}"
