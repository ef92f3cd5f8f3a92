from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.core import mail
from django.test import TestCase, override_settings
from django.utils import timezone
from rest_framework.test import APIClient

from apps.catalog.models import Product
from apps.fulfillment.application.use_cases.attach_order_files import (
    AttachOrderFilesCommand,
    AttachOrderFilesUseCase,
    UploadedFile,
)
from apps.fulfillment.application.use_cases.complete_payment import (
    CaptureDetails,
    CompletePaymentCommand,
    CompletePaymentUseCase,
)
from apps.fulfillment.models import DesignFile, DesignFileGrant
from apps.fulfillment.services.delivery_service import DeliveryService
from apps.orders.application.use_cases.create_order import (
    CreateOrderCommand,
    CreateOrderUseCase,
    OrderItemInput,
)
from apps.orders.models import Order, OrderItem


def _stock_file(product: Product, name: str, *, color_hex: str = "", **kwargs) -> DesignFile:
    return DesignFile.objects.create(
        product=product,
        file_name=name,
        file_url=f"/uploads/designs/{name}",
        file_type=name.rsplit(".", 1)[-1],
        file_size=1024,
        color_hex=color_hex,
        **kwargs,
    )


class FulfillmentTestMixin:
    def setUp(self) -> None:
        super().setUp()
        User = get_user_model()
        self.customer = User.objects.create_user(username="buyer", email="buyer@example.com")
        self.admin = User.objects.create_user(username="admin", email="admin@example.com", is_staff=True)
        self.poster = Product.objects.create(name="Poster", slug="poster", price=Decimal("49.99"))
        self.logo = Product.objects.create(
            name="Custom Logo", slug="custom-logo", price=Decimal("30.00"), enable_customizations=True
        )

    def _order(self, *items: OrderItemInput) -> Order:
        return CreateOrderUseCase.execute(
            CreateOrderCommand(
                customer_id=self.customer.id,
                customer_email=self.customer.email,
                customer_name="Buyer",
                items=tuple(items),
            )
        )

    def _pay(self, order: Order, transaction_id: str = "CAP-1"):
        with self.captureOnCommitCallbacks(execute=True):
            return CompletePaymentUseCase.execute(
                CompletePaymentCommand(order_id=order.id, capture=CaptureDetails(transaction_id=transaction_id))
            )


class CompletePaymentTests(FulfillmentTestMixin, TestCase):
    def test_standard_order_is_delivered_immediately(self):
        _stock_file(self.poster, "poster.pdf")
        order = self._order(OrderItemInput(product_id=self.poster.id))

        result = self._pay(order)

        order.refresh_from_db()
        self.assertTrue(result.auto_delivered)
        self.assertEqual(order.payment_status, Order.PAYMENT_PAID)
        self.assertEqual(order.order_status, Order.STATUS_COMPLETED)
        self.assertEqual(order.customization_status, Order.CUSTOMIZATION_NONE)
        self.assertEqual(order.provider_transaction_id, "CAP-1")
        self.assertIsNotNone(order.paid_at)
        self.assertIsNotNone(order.download_expiry)
        self.assertTrue(order.email_sent)

        grant = DesignFileGrant.objects.get(order=order)
        self.assertAlmostEqual(grant.expires_at, timezone.now() + timedelta(days=30), delta=timedelta(minutes=1))
        self.assertEqual(order.items.get().delivery_status, OrderItem.DELIVERY_DELIVERED)

        self.assertEqual(len(mail.outbox), 1)
        self.assertIn("ready", mail.outbox[0].subject)
        self.assertIn(f"/api/orders/{order.id}/files/{grant.design_file_id}/download/", mail.outbox[0].body)
        self.assertEqual(
            list(order.history.values_list("status", flat=True)), ["pending", "payment_completed", "completed"]
        )

    def test_second_completion_has_no_effects(self):
        _stock_file(self.poster, "poster.pdf")
        order = self._order(OrderItemInput(product_id=self.poster.id))
        self._pay(order)
        history_before = order.history.count()

        result = self._pay(order, transaction_id="CAP-2")

        order.refresh_from_db()
        self.assertTrue(result.already_paid)
        self.assertEqual(order.provider_transaction_id, "CAP-1")
        self.assertEqual(order.history.count(), history_before)
        self.assertEqual(DesignFileGrant.objects.filter(order=order).count(), 1)
        self.assertEqual(len(mail.outbox), 1)

    def test_customizable_order_is_held_without_grants(self):
        _stock_file(self.logo, "logo-template.ai")
        order = self._order(OrderItemInput(product_id=self.logo.id))

        result = self._pay(order)

        order.refresh_from_db()
        self.assertFalse(result.auto_delivered)
        self.assertEqual(order.payment_status, Order.PAYMENT_PAID)
        self.assertEqual(order.order_status, Order.STATUS_PROCESSING)
        self.assertEqual(order.customization_status, Order.CUSTOMIZATION_PENDING)
        self.assertFalse(DesignFileGrant.objects.filter(order=order).exists())
        self.assertEqual(order.items.get().delivery_status, OrderItem.DELIVERY_AWAITING_CUSTOMIZATION)
        self.assertEqual(len(mail.outbox), 1)
        self.assertIn("being prepared", mail.outbox[0].subject)
        self.assertIn("Custom Logo x1", mail.outbox[0].body)

    def test_one_grant_per_item_per_matching_file(self):
        _stock_file(self.poster, "poster.pdf")
        _stock_file(self.poster, "poster-red.png", color_hex="#FF0000")
        _stock_file(self.poster, "poster-blue.png", color_hex="#0000ff")
        _stock_file(self.poster, "retired.png", is_active=False)
        _stock_file(self.poster, "stale.png", expires_at=timezone.now() - timedelta(days=1))
        order = self._order(
            OrderItemInput(product_id=self.poster.id, customization_payload={"colors": [{"hex": "#ff0000"}]})
        )

        self._pay(order)

        granted = set(DesignFileGrant.objects.filter(order=order).values_list("design_file__file_name", flat=True))
        self.assertEqual(granted, {"poster.pdf", "poster-red.png"})

    def test_delivery_is_idempotent(self):
        _stock_file(self.poster, "poster.pdf")
        order = self._order(OrderItemInput(product_id=self.poster.id, quantity=2))
        self._pay(order)

        again = DeliveryService.deliver_items(order)

        self.assertEqual(again.grants_created, 0)
        self.assertEqual(again.items_delivered, 0)
        self.assertEqual(DesignFileGrant.objects.filter(order=order).count(), 1)

    def test_other_orders_bespoke_files_are_not_granted(self):
        other = self._order(OrderItemInput(product_id=self.poster.id))
        _stock_file(self.poster, "for-someone-else.psd", order=other, is_for_order=True)
        order = self._order(OrderItemInput(product_id=self.poster.id))

        self._pay(order)

        self.assertFalse(DesignFileGrant.objects.filter(order=order).exists())
        self.assertEqual(Order.objects.get(pk=order.pk).order_status, Order.STATUS_PROCESSING)

    def test_order_without_files_is_held_instead_of_completed(self):
        order = self._order(OrderItemInput(product_id=self.poster.id))

        result = self._pay(order)

        order.refresh_from_db()
        self.assertFalse(result.auto_delivered)
        self.assertEqual(order.payment_status, Order.PAYMENT_PAID)
        self.assertEqual(order.order_status, Order.STATUS_PROCESSING)
        self.assertEqual(order.customization_status, Order.CUSTOMIZATION_PENDING)
        self.assertIsNone(order.completed_at)
        self.assertEqual(order.items.get().delivery_status, OrderItem.DELIVERY_AWAITING_CUSTOMIZATION)
        self.assertEqual(
            list(order.history.values_list("status", flat=True)),
            ["pending", "payment_completed", "awaiting_customization"],
        )
        self.assertEqual(len(mail.outbox), 1)
        self.assertIn("being prepared", mail.outbox[0].subject)
        self.assertIn("Poster x1", mail.outbox[0].body)

    def test_mixed_order_waits_for_the_item_without_files(self):
        _stock_file(self.poster, "poster.pdf")
        flyer = Product.objects.create(name="Flyer", slug="flyer", price=Decimal("5.00"))
        order = self._order(OrderItemInput(product_id=self.poster.id), OrderItemInput(product_id=flyer.id))

        self._pay(order)

        order.refresh_from_db()
        self.assertEqual(order.order_status, Order.STATUS_PROCESSING)
        statuses = dict(order.items.values_list("product_slug", "delivery_status"))
        self.assertEqual(
            statuses,
            {"poster": OrderItem.DELIVERY_PENDING, "flyer": OrderItem.DELIVERY_AWAITING_CUSTOMIZATION},
        )
        self.assertFalse(DesignFileGrant.objects.filter(order=order).exists())

    def test_files_prepared_before_payment_keep_customization_moving_forward(self):
        order = self._order(OrderItemInput(product_id=self.logo.id))
        AttachOrderFilesUseCase.execute(
            AttachOrderFilesCommand(
                order_id=order.id,
                product_id=self.logo.id,
                files=(
                    UploadedFile(
                        file_name="logo.ai", file_url="/uploads/designs/logo.ai", file_type="ai", file_size=10
                    ),
                ),
                changed_by="admin",
            )
        )
        order.refresh_from_db()
        self.assertEqual(order.customization_status, Order.CUSTOMIZATION_PROCESSING)

        self._pay(order)

        order.refresh_from_db()
        self.assertEqual(order.customization_status, Order.CUSTOMIZATION_PROCESSING)
        self.assertEqual(order.order_status, Order.STATUS_PROCESSING)
        self.assertNotIn("awaiting_customization", list(order.history.values_list("status", flat=True)))


@override_settings(SITE_BASE_URL="https://shop.example.com")
class AdminFulfillmentApiTests(FulfillmentTestMixin, TestCase):
    def setUp(self) -> None:
        super().setUp()
        self.client = APIClient()
        self.client.force_authenticate(user=self.admin)
        self.order = self._order(OrderItemInput(product_id=self.logo.id, customization_payload={"text": "ACME"}))
        self._pay(self.order)
        mail.outbox.clear()

    def _upload(self, **overrides):
        data = {
            "product_id": self.logo.id,
            "color_name": "Navy",
            "color_hex": "#1F2A44",
            "files": [{"file_name": "acme-logo.psd", "file_url": "/uploads/designs/acme-logo.psd", "file_type": "PSD", "file_size": 2048}],
        }
        data.update(overrides)
        return self.client.post(f"/api/admin/orders/{self.order.id}/files/", data=data, format="json")

    def test_complete_without_files_is_rejected(self):
        response = self.client.post(f"/api/admin/orders/{self.order.id}/complete/", data={}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"]["code"], "precondition_failed")
        self.order.refresh_from_db()
        self.assertEqual(self.order.order_status, Order.STATUS_PROCESSING)
        self.assertEqual(self.order.customization_status, Order.CUSTOMIZATION_PENDING)

    def test_upload_then_complete(self):
        upload = self._upload()
        self.assertEqual(upload.status_code, 201)
        data = upload.json()["data"]
        self.assertEqual(data["customization_status"], "processing")
        self.assertEqual(data["grants_created"], 1)

        design_file = DesignFile.objects.get(pk=data["design_file_ids"][0])
        self.assertTrue(design_file.is_for_order)
        self.assertEqual(design_file.order_id, self.order.id)
        self.assertEqual(design_file.color_hex, "#1f2a44")
        self.assertEqual(design_file.mime_type, "image/vnd.adobe.photoshop")
        self.assertEqual(design_file.created_by_id, self.admin.id)

        with self.captureOnCommitCallbacks(execute=True):
            response = self.client.post(
                f"/api/admin/orders/{self.order.id}/complete/", data={"note": "Logo delivered"}, format="json"
            )
        self.assertEqual(response.status_code, 200)
        self.order.refresh_from_db()
        self.assertEqual(self.order.order_status, Order.STATUS_COMPLETED)
        self.assertEqual(self.order.customization_status, Order.CUSTOMIZATION_COMPLETED)
        self.assertEqual(self.order.processed_by, "admin")
        self.assertEqual(DesignFileGrant.objects.filter(order=self.order).count(), 1)
        self.assertEqual(self.order.items.get().delivery_status, OrderItem.DELIVERY_DELIVERED)

        self.assertEqual(len(mail.outbox), 1)
        self.assertIn(
            f"https://shop.example.com/api/orders/{self.order.id}/files/{design_file.id}/download/",
            mail.outbox[0].body,
        )
        last = self.order.history.last()
        self.assertEqual((last.status, last.note, last.changed_by), ("completed", "Logo delivered", "admin"))

        again = self.client.post(f"/api/admin/orders/{self.order.id}/complete/", data={}, format="json")
        self.assertEqual(again.status_code, 400)

    def test_unpaid_order_cannot_be_completed(self):
        unpaid = self._order(OrderItemInput(product_id=self.poster.id))
        _stock_file(self.poster, "poster.pdf")

        response = self.client.post(f"/api/admin/orders/{unpaid.id}/complete/", data={}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertIn("not been paid", response.json()["error"]["message"])

    def test_upload_rejects_product_outside_order(self):
        response = self._upload(product_id=self.poster.id)
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"]["field"], "product_id")

    def test_upload_rejects_unknown_file_type(self):
        response = self._upload(
            files=[{"file_name": "x.exe", "file_url": "/uploads/x.exe", "file_type": "exe", "file_size": 1}]
        )
        self.assertEqual(response.status_code, 400)
        self.assertFalse(DesignFile.objects.exists())

    def test_list_files_shows_active_grants(self):
        self._upload()
        response = self.client.get(f"/api/admin/orders/{self.order.id}/files/")

        self.assertEqual(response.status_code, 200)
        files = response.json()["data"]["files"]
        self.assertEqual(len(files), 1)
        self.assertEqual(files[0]["file_name"], "acme-logo.psd")
        self.assertTrue(files[0]["is_for_order"])

    def test_delete_design_file_cascades_grants(self):
        design_file_id = self._upload().json()["data"]["design_file_ids"][0]

        response = self.client.delete(f"/api/admin/design-files/{design_file_id}/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["data"]["grants_deleted"], 1)
        self.assertFalse(DesignFile.objects.filter(pk=design_file_id).exists())
        self.assertFalse(DesignFileGrant.objects.filter(order=self.order).exists())
        self.assertEqual(self.client.delete(f"/api/admin/design-files/{design_file_id}/").status_code, 404)

    def test_admin_endpoints_require_staff(self):
        self.client.force_authenticate(user=self.customer)
        self.assertEqual(self.client.get(f"/api/admin/orders/{self.order.id}/files/").status_code, 403)
        self.assertEqual(
            self.client.post(f"/api/admin/orders/{self.order.id}/complete/", data={}, format="json").status_code,
            403,
        )


class DownloadApiTests(FulfillmentTestMixin, TestCase):
    def setUp(self) -> None:
        super().setUp()
        self.client = APIClient()
        self.client.force_authenticate(user=self.customer)
        self.design_file = _stock_file(self.poster, "poster.pdf", max_downloads=2)
        self.order = self._order(OrderItemInput(product_id=self.poster.id))
        self._pay(self.order)
        self.url = f"/api/orders/{self.order.id}/files/{self.design_file.id}/download/"

    def test_download_counts_and_limit(self):
        first = self.client.get(self.url)
        self.assertEqual(first.status_code, 200)
        self.assertEqual(first.json()["data"]["file_url"], "/uploads/designs/poster.pdf")
        self.assertEqual(first.json()["data"]["download_count"], 1)

        self.assertEqual(self.client.get(self.url).status_code, 200)
        blocked = self.client.get(self.url)
        self.assertEqual(blocked.status_code, 403)
        self.assertEqual(blocked.json()["error"]["code"], "limit_reached")

        grant = DesignFileGrant.objects.get(order=self.order)
        self.assertEqual(grant.download_count, 2)
        self.assertIsNotNone(grant.first_downloaded_at)
        self.assertIsNotNone(grant.last_downloaded_at)

    def test_expired_grant_is_refused(self):
        DesignFileGrant.objects.filter(order=self.order).update(expires_at=timezone.now() - timedelta(seconds=1))

        response = self.client.get(self.url)

        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["error"]["code"], "expired")

    def test_other_customers_cannot_download(self):
        intruder = get_user_model().objects.create_user(username="intruder", email="intruder@example.com")
        self.client.force_authenticate(user=intruder)

        self.assertEqual(self.client.get(self.url).status_code, 404)
        self.assertEqual(DesignFileGrant.objects.get(order=self.order).download_count, 0)
