from django.conf import settings
from django.db import models


class PromoCode(models.Model):
    TYPE_PERCENTAGE = "percentage"
    TYPE_FIXED_AMOUNT = "fixed_amount"

    DISCOUNT_TYPE_CHOICES = [
        (TYPE_PERCENTAGE, "Percentage"),
        (TYPE_FIXED_AMOUNT, "Fixed amount"),
    ]

    code = models.CharField(max_length=20, unique=True)
    products = models.ManyToManyField("catalog.Product", related_name="promo_codes", blank=True)
    apply_to_all_products = models.BooleanField(default=False)
    discount_type = models.CharField(max_length=20, choices=DISCOUNT_TYPE_CHOICES)
    discount_value = models.DecimalField(max_digits=12, decimal_places=2)
    max_discount_amount = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    usage_limit = models.PositiveIntegerField(null=True, blank=True)
    usage_count = models.PositiveIntegerField(default=0)
    user_usage_limit = models.PositiveIntegerField(null=True, blank=True)
    minimum_order_amount = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    valid_from = models.DateTimeField(null=True, blank=True)
    valid_until = models.DateTimeField(null=True, blank=True)
    is_active = models.BooleanField(default=True)
    description = models.CharField(max_length=200, blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=["code", "is_active"], name="promo_code_active_idx"),
            models.Index(fields=["is_active", "valid_from", "valid_until"], name="promo_code_window_idx"),
        ]

    def __str__(self) -> str:
        return self.code

    def save(self, *args, **kwargs):
        self.code = (self.code or "").strip().upper()
        super().save(*args, **kwargs)


class PromoCodeUsage(models.Model):
    customer = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="promo_code_usages"
    )
    promo_code = models.ForeignKey(PromoCode, on_delete=models.CASCADE, related_name="usages")
    code = models.CharField(max_length=20)
    order = models.ForeignKey("orders.Order", on_delete=models.CASCADE, related_name="promo_code_usages")
    discount_amount = models.DecimalField(max_digits=12, decimal_places=2)
    order_total = models.DecimalField(max_digits=12, decimal_places=2)
    is_active = models.BooleanField(default=True)
    used_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["order", "promo_code"], name="uq_promo_usage_order_code"),
        ]
        indexes = [
            models.Index(fields=["customer", "promo_code", "is_active"], name="promo_usage_customer_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.code} by user {self.customer_id} on order {self.order_id}"
