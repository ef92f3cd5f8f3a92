from __future__ import annotations

import threading
from decimal import Decimal
from unittest import mock

from django.contrib.auth import get_user_model
from django.db import connection
from django.test import TestCase, TransactionTestCase, override_settings, skipUnlessDBFeature
from django.utils import timezone
from rest_framework.test import APIClient

from apps.catalog.models import Product
from apps.fulfillment.models import DesignFile, DesignFileGrant
from apps.orders.application.use_cases.create_order import (
    CreateOrderCommand,
    CreateOrderUseCase,
    OrderItemInput,
)
from apps.orders.domain.errors import OrderNumberExhaustedError, OrderValidationError
from apps.orders.domain.policies import format_order_number
from apps.orders.models import Order, OrderHistoryEntry
from apps.orders.services.order_service import OrderService
from apps.promotions.models import PromoCode


def _create_order(customer, *items: OrderItemInput, **kwargs) -> Order:
    return CreateOrderUseCase.execute(
        CreateOrderCommand(
            customer_id=customer.id,
            customer_email=customer.email,
            customer_name="Test Customer",
            items=tuple(items),
            **kwargs,
        )
    )


class CreateOrderUseCaseTests(TestCase):
    def setUp(self) -> None:
        super().setUp()
        self.customer = get_user_model().objects.create_user(
            username="buyer", email="buyer@example.com", password="StrongPass12345!"
        )
        self.poster = Product.objects.create(name="Poster", slug="poster", price=Decimal("49.99"))
        self.logo = Product.objects.create(
            name="Custom Logo", slug="custom-logo", price=Decimal("20.00"), enable_customizations=True
        )

    def test_order_is_priced_from_catalog_and_starts_pending(self):
        order = _create_order(self.customer, OrderItemInput(product_id=self.poster.id, quantity=2))

        self.assertEqual(order.subtotal, Decimal("99.98"))
        self.assertEqual(order.total_price, Decimal("99.98"))
        self.assertEqual(order.payment_status, Order.PAYMENT_PENDING)
        self.assertEqual(order.order_status, Order.STATUS_PENDING)
        self.assertEqual(order.customization_status, Order.CUSTOMIZATION_NONE)
        self.assertFalse(order.has_customizable_products)
        self.assertEqual(list(order.history.values_list("status", flat=True)), ["pending"])

        item = order.items.get()
        self.assertEqual(item.product_name, "Poster")
        self.assertEqual(item.unit_price, Decimal("49.99"))
        self.assertEqual(item.total_price, Decimal("99.98"))

    def test_customizable_flag_is_snapshotted(self):
        order = _create_order(
            self.customer,
            OrderItemInput(product_id=self.poster.id),
            OrderItemInput(product_id=self.logo.id, customization_payload={"text": "ACME"}),
        )
        self.assertTrue(order.has_customizable_products)
        self.assertEqual(order.customization_status, Order.CUSTOMIZATION_PENDING)

        self.logo.enable_customizations = False
        self.logo.save()
        item = order.items.get(product=self.logo)
        self.assertTrue(item.requires_customization)
        self.assertEqual(item.customization_payload, {"text": "ACME"})

    def test_empty_items_are_rejected(self):
        with self.assertRaises(OrderValidationError) as ctx:
            _create_order(self.customer)
        self.assertEqual(ctx.exception.field, "items")
        self.assertFalse(Order.objects.exists())

    def test_expected_total_mismatch_is_rejected(self):
        with self.assertRaises(OrderValidationError) as ctx:
            _create_order(
                self.customer,
                OrderItemInput(product_id=self.poster.id),
                expected_total=Decimal("10.00"),
            )
        self.assertEqual(ctx.exception.field, "expected_total")

    def test_item_promo_code_discounts_line(self):
        PromoCode.objects.create(
            code="save10",
            discount_type=PromoCode.TYPE_PERCENTAGE,
            discount_value=Decimal("10"),
            apply_to_all_products=True,
        )
        order = _create_order(
            self.customer,
            OrderItemInput(product_id=self.poster.id, promo_code="save10"),
            expected_total=Decimal("44.99"),
        )
        item = order.items.get()
        self.assertEqual(item.promo_code, "SAVE10")
        self.assertEqual(item.discount_amount, Decimal("5.00"))
        self.assertEqual(order.total_promo_discount, Decimal("5.00"))
        self.assertEqual(order.total_price, Decimal("44.99"))
        self.assertEqual(order.applied_promo_codes, ["SAVE10"])

    def test_order_numbers_are_sequential_and_distinct(self):
        year = timezone.now().year
        numbers = [_create_order(self.customer, OrderItemInput(product_id=self.poster.id)).order_number for _ in range(5)]

        self.assertEqual(len(set(numbers)), 5)
        self.assertEqual(numbers[0], f"PD-{year}-001")
        self.assertEqual(numbers[-1], f"PD-{year}-005")

    def test_order_number_collision_is_retried(self):
        year = timezone.now().year
        taken = _create_order(self.customer, OrderItemInput(product_id=self.poster.id))
        # Simulate a counter reset: the next allocation collides once, then succeeds.
        with mock.patch.object(
            OrderService,
            "generate_order_number",
            side_effect=[taken.order_number, format_order_number(prefix="PD", year=year, sequence=99)],
        ):
            order = _create_order(self.customer, OrderItemInput(product_id=self.poster.id))
        self.assertEqual(order.order_number, f"PD-{year}-099")

    @override_settings(ORDER_NUMBER_MAX_ATTEMPTS=3)
    def test_order_number_exhaustion_fails_permanently(self):
        taken = _create_order(self.customer, OrderItemInput(product_id=self.poster.id))
        with mock.patch.object(OrderService, "generate_order_number", return_value=taken.order_number) as allocator:
            with self.assertRaises(OrderNumberExhaustedError):
                _create_order(self.customer, OrderItemInput(product_id=self.poster.id))
        self.assertEqual(allocator.call_count, 3)
        self.assertEqual(Order.objects.count(), 1)

    def test_zero_value_order_is_settled_without_payment(self):
        freebie = Product.objects.create(name="Freebie", slug="freebie", price=Decimal("0.00"))
        DesignFile.objects.create(
            product=freebie, file_name="freebie.zip", file_url="/uploads/freebie.zip", file_type="zip", file_size=10
        )

        with mock.patch("apps.payments.application.facade.PaymentGatewayFacade.get") as gateway_lookup:
            with self.captureOnCommitCallbacks(execute=True):
                order = _create_order(self.customer, OrderItemInput(product_id=freebie.id))

        gateway_lookup.assert_not_called()
        self.assertEqual(order.payment_status, Order.PAYMENT_FREE)
        self.assertEqual(order.order_status, Order.STATUS_COMPLETED)
        self.assertEqual(DesignFileGrant.objects.filter(order=order).count(), 1)
        statuses = list(order.history.values_list("status", flat=True))
        self.assertEqual(statuses, ["pending", "free_order", "completed"])

    def test_zero_value_customizable_order_waits_for_admin(self):
        free_logo = Product.objects.create(
            name="Free Logo", slug="free-logo", price=Decimal("0.00"), enable_customizations=True
        )
        order = _create_order(self.customer, OrderItemInput(product_id=free_logo.id))

        self.assertEqual(order.payment_status, Order.PAYMENT_FREE)
        self.assertEqual(order.order_status, Order.STATUS_PROCESSING)
        self.assertEqual(order.customization_status, Order.CUSTOMIZATION_PENDING)
        self.assertFalse(DesignFileGrant.objects.filter(order=order).exists())


class OrderServiceTests(TestCase):
    def setUp(self) -> None:
        super().setUp()
        customer = get_user_model().objects.create_user(username="buyer", email="buyer@example.com")
        product = Product.objects.create(name="Poster", slug="poster", price=Decimal("5.00"))
        self.order = _create_order(customer, OrderItemInput(product_id=product.id))

    def test_update_status_appends_one_entry_per_change(self):
        OrderService.update_status(
            self.order.id,
            {"order_status": Order.STATUS_PROCESSING, "processed_by": "admin"},
            history_status="processing",
            changed_by="admin",
        )
        self.assertEqual(self.order.history.count(), 2)

        OrderService.update_status(
            self.order.id,
            {"order_status": Order.STATUS_PROCESSING},
            history_status="processing",
            changed_by="admin",
        )
        self.assertEqual(self.order.history.count(), 2)

        entry = self.order.history.last()
        self.assertEqual(entry.status, "processing")
        self.assertEqual(entry.changed_by, "admin")

    def test_update_status_rejects_unknown_fields(self):
        with self.assertRaises(OrderValidationError):
            OrderService.update_status(self.order.id, {"total_price": 0}, history_status="tamper")
        self.assertEqual(self.order.history.count(), 1)

    def test_history_entries_are_append_only(self):
        entry = self.order.history.get()
        entry.note = "rewritten"
        with self.assertRaises(ValueError):
            entry.save()
        with self.assertRaises(ValueError):
            entry.delete()
        self.assertEqual(OrderHistoryEntry.objects.get(pk=entry.pk).note, "Order created with 1 item(s).")


@skipUnlessDBFeature("has_select_for_update")
class ConcurrentOrderNumberTests(TransactionTestCase):
    workers = 6

    def setUp(self) -> None:
        self.customer = get_user_model().objects.create_user(username="buyer", email="buyer@example.com")
        self.poster = Product.objects.create(name="Poster", slug="poster", price=Decimal("49.99"))

    def test_parallel_checkouts_get_distinct_numbers(self):
        barrier = threading.Barrier(self.workers)
        numbers, failures = [], []

        def checkout():
            try:
                barrier.wait(timeout=10)
                order = _create_order(self.customer, OrderItemInput(product_id=self.poster.id))
                numbers.append(order.order_number)
            except Exception as exc:
                failures.append(exc)
            finally:
                connection.close()

        threads = [threading.Thread(target=checkout) for _ in range(self.workers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(failures, [])
        self.assertEqual(len(set(numbers)), self.workers)
        self.assertEqual(
            set(Order.objects.values_list("order_number", flat=True)),
            set(numbers),
        )


class OrderApiTests(TestCase):
    def setUp(self) -> None:
        super().setUp()
        self.client = APIClient()
        User = get_user_model()
        self.customer = User.objects.create_user(username="buyer", email="buyer@example.com")
        self.other = User.objects.create_user(username="other", email="other@example.com")
        self.product = Product.objects.create(name="Poster", slug="poster", price=Decimal("49.99"))
        self.client.force_authenticate(user=self.customer)

    def test_create_order_contract(self):
        response = self.client.post(
            "/api/orders/",
            data={
                "customer_name": "Buyer One",
                "items": [{"product_id": self.product.id, "quantity": 1}],
                "expected_total": "49.99",
            },
            format="json",
        )
        self.assertEqual(response.status_code, 201)
        payload = response.json()
        self.assertTrue(payload["success"])
        self.assertEqual(payload["data"]["order_status"], "pending")
        self.assertEqual(payload["data"]["total_price"], "49.99")
        self.assertTrue(payload["data"]["order_number"].startswith("PD-"))

        order = Order.objects.get(pk=payload["data"]["order_id"])
        self.assertEqual(order.customer_email, "buyer@example.com")

    def test_unknown_fields_are_rejected(self):
        response = self.client.post(
            "/api/orders/",
            data={
                "customer_name": "Buyer One",
                "items": [{"product_id": self.product.id, "price": "0.01"}],
                "total_price": "0.01",
            },
            format="json",
        )
        self.assertEqual(response.status_code, 400)
        payload = response.json()
        self.assertFalse(payload["success"])
        self.assertEqual(payload["error"]["code"], "validation_error")
        self.assertFalse(Order.objects.exists())

    def test_missing_product_is_not_found(self):
        response = self.client.post(
            "/api/orders/",
            data={"customer_name": "Buyer One", "items": [{"product_id": 999}]},
            format="json",
        )
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["error"]["field"], "items[0].product_id")

    def test_order_detail_is_scoped_to_owner(self):
        order = _create_order(self.customer, OrderItemInput(product_id=self.product.id))

        response = self.client.get(f"/api/orders/{order.id}/")
        self.assertEqual(response.status_code, 200)
        data = response.json()["data"]
        self.assertEqual(data["order_number"], order.order_number)
        self.assertEqual(len(data["items"]), 1)
        self.assertEqual(data["history"][0]["status"], "pending")

        self.client.force_authenticate(user=self.other)
        self.assertEqual(self.client.get(f"/api/orders/{order.id}/").status_code, 404)
