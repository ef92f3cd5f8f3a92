import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        ("catalog", "0001_initial"),
        ("orders", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="PromoCode",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("code", models.CharField(max_length=20, unique=True)),
                ("apply_to_all_products", models.BooleanField(default=False)),
                (
                    "discount_type",
                    models.CharField(
                        choices=[("percentage", "Percentage"), ("fixed_amount", "Fixed amount")],
                        max_length=20,
                    ),
                ),
                ("discount_value", models.DecimalField(decimal_places=2, max_digits=12)),
                ("max_discount_amount", models.DecimalField(blank=True, decimal_places=2, max_digits=12, null=True)),
                ("usage_limit", models.PositiveIntegerField(blank=True, null=True)),
                ("usage_count", models.PositiveIntegerField(default=0)),
                ("user_usage_limit", models.PositiveIntegerField(blank=True, null=True)),
                ("minimum_order_amount", models.DecimalField(blank=True, decimal_places=2, max_digits=12, null=True)),
                ("valid_from", models.DateTimeField(blank=True, null=True)),
                ("valid_until", models.DateTimeField(blank=True, null=True)),
                ("is_active", models.BooleanField(default=True)),
                ("description", models.CharField(blank=True, default="", max_length=200)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("products", models.ManyToManyField(blank=True, related_name="promo_codes", to="catalog.product")),
            ],
            options={
                "indexes": [
                    models.Index(fields=["code", "is_active"], name="promo_code_active_idx"),
                    models.Index(fields=["is_active", "valid_from", "valid_until"], name="promo_code_window_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="PromoCodeUsage",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("code", models.CharField(max_length=20)),
                ("discount_amount", models.DecimalField(decimal_places=2, max_digits=12)),
                ("order_total", models.DecimalField(decimal_places=2, max_digits=12)),
                ("is_active", models.BooleanField(default=True)),
                ("used_at", models.DateTimeField(auto_now_add=True)),
                (
                    "customer",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="promo_code_usages",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "order",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="promo_code_usages",
                        to="orders.order",
                    ),
                ),
                (
                    "promo_code",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="usages",
                        to="promotions.promocode",
                    ),
                ),
            ],
            options={
                "indexes": [
                    models.Index(fields=["customer", "promo_code", "is_active"], name="promo_usage_customer_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(fields=("order", "promo_code"), name="uq_promo_usage_order_code"),
                ],
            },
        ),
    ]
