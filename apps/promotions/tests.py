from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.test import SimpleTestCase, TestCase
from django.utils import timezone
from rest_framework.test import APIClient

from apps.catalog.models import Product
from apps.orders.application.use_cases.create_order import (
    CreateOrderCommand,
    CreateOrderUseCase,
    OrderItemInput,
)
from apps.orders.models import Order
from apps.promotions.application.use_cases.deactivate_promo_usage import (
    DeactivatePromoUsageCommand,
    DeactivatePromoUsageUseCase,
)
from apps.promotions.application.use_cases.record_promo_usage import (
    RecordPromoUsageCommand,
    RecordPromoUsageUseCase,
)
from apps.promotions.application.use_cases.validate_promo_code import (
    ValidatePromoCodeCommand,
    ValidatePromoCodeUseCase,
)
from apps.promotions.domain.errors import PromoCodeRejectedError
from apps.promotions.domain.policies import calculate_discount
from apps.promotions.models import PromoCode, PromoCodeUsage


class CalculateDiscountTests(SimpleTestCase):
    def _promo(self, **kwargs) -> PromoCode:
        defaults = {"code": "X", "discount_type": PromoCode.TYPE_PERCENTAGE, "discount_value": Decimal("10")}
        defaults.update(kwargs)
        return PromoCode(**defaults)

    def test_percentage_is_capped_by_max_discount(self):
        promo = self._promo(discount_value=Decimal("50"), max_discount_amount=Decimal("15.00"))
        self.assertEqual(calculate_discount(promo, Decimal("100.00")), Decimal("15.00"))
        self.assertEqual(calculate_discount(promo, Decimal("20.00")), Decimal("10.00"))

    def test_percentage_never_exceeds_amount_or_cap(self):
        promo = self._promo(discount_value=Decimal("33"), max_discount_amount=Decimal("7.50"))
        for amount in (Decimal("0.01"), Decimal("3.33"), Decimal("22.72"), Decimal("999.99")):
            discount = calculate_discount(promo, amount)
            self.assertLessEqual(discount, min(amount, promo.max_discount_amount))
            self.assertGreaterEqual(discount, Decimal("0"))

    def test_fixed_amount_is_clamped_to_amount(self):
        promo = self._promo(discount_type=PromoCode.TYPE_FIXED_AMOUNT, discount_value=Decimal("25.00"))
        self.assertEqual(calculate_discount(promo, Decimal("40.00")), Decimal("25.00"))
        self.assertEqual(calculate_discount(promo, Decimal("9.99")), Decimal("9.99"))
        self.assertEqual(calculate_discount(promo, Decimal("0")), Decimal("0.00"))


class ValidatePromoCodeTests(TestCase):
    def setUp(self) -> None:
        super().setUp()
        self.customer = get_user_model().objects.create_user(username="buyer", email="buyer@example.com")

    def _validate(self, code: str, order_value: str, **kwargs):
        return ValidatePromoCodeUseCase.execute(
            ValidatePromoCodeCommand(
                code=code,
                customer_id=self.customer.id,
                order_value=Decimal(order_value),
                **kwargs,
            )
        )

    def _assert_rejected(self, reason: str, code: str, order_value: str = "50.00", **kwargs):
        with self.assertRaises(PromoCodeRejectedError) as ctx:
            self._validate(code, order_value, **kwargs)
        self.assertEqual(ctx.exception.reason, reason)

    def test_valid_code_returns_discount(self):
        PromoCode.objects.create(code="WELCOME", discount_type=PromoCode.TYPE_FIXED_AMOUNT, discount_value=5)
        result = self._validate(" welcome ", "50.00")
        self.assertTrue(result.valid)
        self.assertEqual(result.discount_amount, Decimal("5.00"))

    def test_unknown_code(self):
        self._assert_rejected(PromoCodeRejectedError.REASON_NOT_FOUND, "NOPE")

    def test_inactive_code(self):
        PromoCode.objects.create(code="OFF", discount_type="percentage", discount_value=10, is_active=False)
        self._assert_rejected(PromoCodeRejectedError.REASON_INACTIVE, "OFF")

    def test_validity_window(self):
        now = timezone.now()
        PromoCode.objects.create(
            code="SOON", discount_type="percentage", discount_value=10, valid_from=now + timedelta(days=1)
        )
        PromoCode.objects.create(
            code="OLD", discount_type="percentage", discount_value=10, valid_until=now - timedelta(days=1)
        )
        self._assert_rejected(PromoCodeRejectedError.REASON_NOT_STARTED, "SOON")
        self._assert_rejected(PromoCodeRejectedError.REASON_EXPIRED, "OLD")

    def test_below_minimum_order_amount(self):
        PromoCode.objects.create(
            code="BIG", discount_type="percentage", discount_value=10, minimum_order_amount=Decimal("100.00")
        )
        for value in ("0.00", "50.00", "99.99"):
            self._assert_rejected(PromoCodeRejectedError.REASON_BELOW_MINIMUM, "BIG", order_value=value)
        self.assertTrue(self._validate("BIG", "100.00").valid)

    def test_exhausted_code_gives_no_discount(self):
        PromoCode.objects.create(
            code="ONCE", discount_type="percentage", discount_value=10, usage_limit=1, usage_count=1
        )
        self._assert_rejected(PromoCodeRejectedError.REASON_EXHAUSTED, "ONCE")

    def test_per_customer_limit_counts_active_usages_only(self):
        product = Product.objects.create(name="Poster", slug="poster", price=Decimal("10.00"))
        promo = PromoCode.objects.create(code="MINE", discount_type="percentage", discount_value=10, user_usage_limit=1)
        order = Order.objects.create(
            order_number="PD-2000-001",
            customer=self.customer,
            customer_email="buyer@example.com",
            customer_name="Buyer",
        )
        usage = PromoCodeUsage.objects.create(
            customer=self.customer,
            promo_code=promo,
            code="MINE",
            order=order,
            discount_amount=Decimal("1.00"),
            order_total=Decimal("10.00"),
        )
        self._assert_rejected(PromoCodeRejectedError.REASON_USER_LIMIT_REACHED, "MINE")

        usage.is_active = False
        usage.save()
        self.assertTrue(self._validate("MINE", "10.00", product_ids=(product.id,)).valid)

    def test_product_restricted_code(self):
        poster = Product.objects.create(name="Poster", slug="poster", price=Decimal("10.00"))
        mug = Product.objects.create(name="Mug", slug="mug", price=Decimal("10.00"))
        promo = PromoCode.objects.create(code="POSTERS", discount_type="percentage", discount_value=10)
        promo.products.add(poster)

        self.assertTrue(self._validate("POSTERS", "10.00", product_ids=(poster.id,)).valid)
        self._assert_rejected(PromoCodeRejectedError.REASON_NOT_APPLICABLE, "POSTERS", product_ids=(mug.id,))


class RecordPromoUsageTests(TestCase):
    def setUp(self) -> None:
        super().setUp()
        User = get_user_model()
        self.first = User.objects.create_user(username="first", email="first@example.com")
        self.second = User.objects.create_user(username="second", email="second@example.com")
        self.product = Product.objects.create(name="Poster", slug="poster", price=Decimal("20.00"))
        self.promo = PromoCode.objects.create(
            code="LAST1", discount_type=PromoCode.TYPE_FIXED_AMOUNT, discount_value=5, usage_limit=1
        )

    def _order(self, customer) -> Order:
        return CreateOrderUseCase.execute(
            CreateOrderCommand(
                customer_id=customer.id,
                customer_email=customer.email,
                customer_name=customer.username,
                items=(OrderItemInput(product_id=self.product.id, promo_code="LAST1"),),
            )
        )

    def test_usage_is_not_counted_at_order_creation(self):
        self._order(self.first)
        self.promo.refresh_from_db()
        self.assertEqual(self.promo.usage_count, 0)
        self.assertFalse(PromoCodeUsage.objects.exists())

    def test_recording_is_idempotent(self):
        order = self._order(self.first)
        first = RecordPromoUsageUseCase.execute(RecordPromoUsageCommand(order_id=order.id))
        again = RecordPromoUsageUseCase.execute(RecordPromoUsageCommand(order_id=order.id))

        self.assertEqual(first.recorded, ("LAST1",))
        self.assertEqual(again.recorded, ())
        self.promo.refresh_from_db()
        self.assertEqual(self.promo.usage_count, 1)
        usage = PromoCodeUsage.objects.get()
        self.assertEqual(usage.discount_amount, Decimal("5.00"))

    def test_last_use_goes_to_first_confirmed_payment(self):
        # Both checkouts validated while one use was left.
        order_a = self._order(self.first)
        order_b = self._order(self.second)

        RecordPromoUsageUseCase.execute(RecordPromoUsageCommand(order_id=order_a.id))
        result = RecordPromoUsageUseCase.execute(RecordPromoUsageCommand(order_id=order_b.id))

        self.assertEqual(result.rejected, ("LAST1",))
        self.promo.refresh_from_db()
        self.assertEqual(self.promo.usage_count, 1)
        self.assertTrue(order_b.history.filter(status="promo_usage_rejected").exists())
        self.assertFalse(PromoCodeUsage.objects.filter(order=order_b).exists())

    def test_deactivation_releases_usage(self):
        order = self._order(self.first)
        RecordPromoUsageUseCase.execute(RecordPromoUsageCommand(order_id=order.id))

        released = DeactivatePromoUsageUseCase.execute(DeactivatePromoUsageCommand(order_id=order.id))

        self.assertEqual(released, 1)
        self.promo.refresh_from_db()
        self.assertEqual(self.promo.usage_count, 0)
        self.assertFalse(PromoCodeUsage.objects.get(order=order).is_active)


class PromoCodeValidateApiTests(TestCase):
    def setUp(self) -> None:
        super().setUp()
        self.client = APIClient()
        self.client.force_authenticate(
            user=get_user_model().objects.create_user(username="buyer", email="buyer@example.com")
        )
        PromoCode.objects.create(
            code="TEN", discount_type="percentage", discount_value=10, minimum_order_amount=Decimal("30.00")
        )

    def test_valid_code(self):
        response = self.client.post(
            "/api/promo-codes/validate/", data={"code": "ten", "order_value": "40.00"}, format="json"
        )
        self.assertEqual(response.status_code, 200)
        data = response.json()["data"]
        self.assertTrue(data["valid"])
        self.assertEqual(data["code"], "TEN")
        self.assertEqual(data["discount_amount"], "4.00")

    def test_rejection_reason_is_exposed(self):
        response = self.client.post(
            "/api/promo-codes/validate/", data={"code": "TEN", "order_value": "10.00"}, format="json"
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"]["code"], "below_minimum")

        missing = self.client.post(
            "/api/promo-codes/validate/", data={"code": "NONE", "order_value": "10.00"}, format="json"
        )
        self.assertEqual(missing.status_code, 404)
        self.assertEqual(missing.json()["error"]["code"], "not_found")
