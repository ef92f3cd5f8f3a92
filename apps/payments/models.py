from django.db import models


class PaymentIntent(models.Model):
    """A checkout session opened with the payment provider for one order."""

    STATUS_CREATED = "created"
    STATUS_CAPTURED = "captured"
    STATUS_PENDING = "pending"
    STATUS_FAILED = "failed"

    STATUS_CHOICES = [
        (STATUS_CREATED, "Created"),
        (STATUS_CAPTURED, "Captured"),
        (STATUS_PENDING, "Pending"),
        (STATUS_FAILED, "Failed"),
    ]

    order = models.ForeignKey("orders.Order", on_delete=models.PROTECT, related_name="payment_intents")
    provider_code = models.CharField(max_length=50)
    provider_reference = models.CharField(max_length=100, unique=True)
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    currency = models.CharField(max_length=10, default="USD")
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_CREATED)
    approval_url = models.URLField(max_length=500, blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [models.Index(fields=["order", "status"], name="payment_intent_order_idx")]

    def __str__(self) -> str:
        return f"{self.provider_code}:{self.provider_reference}"


class WebhookEvent(models.Model):
    """One row per provider event id; the ledger that makes delivery idempotent."""

    order = models.ForeignKey("orders.Order", on_delete=models.PROTECT, related_name="webhook_events")
    provider_code = models.CharField(max_length=50)
    event_id = models.CharField(max_length=100, unique=True)
    event_type = models.CharField(max_length=100)
    timestamp = models.DateTimeField(auto_now_add=True)
    processed = models.BooleanField(default=False)
    processed_at = models.DateTimeField(null=True, blank=True)
    raw_payload = models.JSONField(default=dict, blank=True)

    class Meta:
        ordering = ["timestamp", "id"]
        indexes = [models.Index(fields=["order", "processed"], name="webhook_event_order_idx")]

    def __str__(self) -> str:
        return f"{self.event_type}:{self.event_id}"
