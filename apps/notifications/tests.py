from __future__ import annotations

from decimal import Decimal

from django.contrib.auth import get_user_model
from django.core import mail
from django.test import SimpleTestCase, TestCase, override_settings

from apps.catalog.models import Product
from apps.notifications.application.use_cases.notify_order_event import (
    NotifyOrderEventCommand,
    NotifyOrderEventUseCase,
)
from apps.notifications.domain.errors import EmailGatewayError
from apps.notifications.domain.types import NotificationKind
from apps.notifications.infrastructure.router import NotificationSenderRouter
from apps.notifications.infrastructure.templates import render
from apps.orders.application.use_cases.create_order import (
    CreateOrderCommand,
    CreateOrderUseCase,
    OrderItemInput,
)


class FailingSender:
    name = "failing"

    def send(self, *, to_email, kind, context):
        raise EmailGatewayError("SMTP connection refused")


class NotifyOrderEventTests(TestCase):
    def setUp(self) -> None:
        customer = get_user_model().objects.create_user(username="buyer", email="buyer@example.com")
        product = Product.objects.create(
            name="Wedding Invite", slug="wedding-invite", price=Decimal("12.00"), enable_customizations=True
        )
        self.order = CreateOrderUseCase.execute(
            CreateOrderCommand(
                customer_id=customer.id,
                customer_email="buyer@example.com",
                customer_name="Dana",
                items=(OrderItemInput(product_id=product.id, quantity=2),),
            )
        )

    def test_files_ready_is_sent_to_customer_and_flagged(self):
        links = [{"file_name": "invite.pdf", "url": "https://shop.example.com/api/orders/1/files/1/download/"}]

        result = NotifyOrderEventUseCase.execute(
            NotifyOrderEventCommand(
                order_id=self.order.id,
                kind=NotificationKind.FILES_READY,
                extra_context={"download_links": links, "download_expiry": "2026-12-01"},
            )
        )

        self.assertTrue(result.success)
        self.assertEqual(result.recipients, ("buyer@example.com",))
        self.assertEqual(len(mail.outbox), 1)
        message = mail.outbox[0]
        self.assertEqual(message.to, ["buyer@example.com"])
        self.assertEqual(message.extra_headers["X-Notification-Kind"], "files_ready")
        self.assertIn("Hi Dana", message.body)
        self.assertIn("invite.pdf: https://shop.example.com/api/orders/1/files/1/download/", message.body)
        self.assertIn("until 2026-12-01", message.body)
        self.order.refresh_from_db()
        self.assertTrue(self.order.email_sent)
        self.assertIsNotNone(self.order.email_sent_at)

    def test_customization_notice_lists_custom_items(self):
        NotifyOrderEventUseCase.execute(
            NotifyOrderEventCommand(order_id=self.order.id, kind=NotificationKind.CUSTOMIZATION_PROCESSING)
        )

        self.assertEqual(len(mail.outbox), 1)
        self.assertIn("- Wedding Invite x2", mail.outbox[0].body)
        self.order.refresh_from_db()
        self.assertFalse(self.order.email_sent)

    def test_send_failure_is_recorded_not_raised(self):
        result = NotifyOrderEventUseCase.execute(
            NotifyOrderEventCommand(order_id=self.order.id, kind=NotificationKind.FILES_READY),
            sender=FailingSender(),
        )

        self.assertFalse(result.success)
        self.assertIn("SMTP connection refused", result.error)
        entry = self.order.history.last()
        self.assertEqual(entry.status, "notification_failed")
        self.assertIn("files_ready", entry.note)
        self.order.refresh_from_db()
        self.assertFalse(self.order.email_sent)

    @override_settings(ADMIN_NOTIFICATION_EMAILS=["ops@example.com", "studio@example.com"])
    def test_order_created_goes_to_admins(self):
        result = NotifyOrderEventUseCase.execute(
            NotifyOrderEventCommand(order_id=self.order.id, kind=NotificationKind.ORDER_CREATED)
        )

        self.assertEqual(result.recipients, ("ops@example.com", "studio@example.com"))
        self.assertEqual(sorted(m.to[0] for m in mail.outbox), ["ops@example.com", "studio@example.com"])
        self.assertIn("Requires customization: yes", mail.outbox[0].body)

    @override_settings(ADMIN_NOTIFICATION_EMAILS=[])
    def test_order_created_without_admins_is_skipped(self):
        result = NotifyOrderEventUseCase.execute(
            NotifyOrderEventCommand(order_id=self.order.id, kind=NotificationKind.ORDER_CREATED)
        )

        self.assertTrue(result.skipped)
        self.assertEqual(len(mail.outbox), 0)

    def test_missing_order_is_reported(self):
        result = NotifyOrderEventUseCase.execute(
            NotifyOrderEventCommand(order_id=999999, kind=NotificationKind.FILES_READY)
        )

        self.assertFalse(result.success)
        self.assertEqual(len(mail.outbox), 0)

    @override_settings(NOTIFICATION_PROVIDER="carrier-pigeon")
    def test_unknown_provider_is_a_recorded_failure(self):
        result = NotifyOrderEventUseCase.execute(
            NotifyOrderEventCommand(order_id=self.order.id, kind=NotificationKind.PAYMENT_FAILED)
        )

        self.assertFalse(result.success)
        self.assertEqual(self.order.history.last().status, "notification_failed")


class NotificationRenderingTests(SimpleTestCase):
    def test_files_ready_without_links(self):
        message = render(NotificationKind.FILES_READY, {"order_number": "PD-2026-001", "customer_name": ""})

        self.assertEqual(message.subject, "Your files for order PD-2026-001 are ready")
        self.assertIn("Hi there", message.body)
        self.assertIn("appear in your account shortly", message.body)

    def test_payment_failed(self):
        message = render(NotificationKind.PAYMENT_FAILED, {"order_number": "PD-2026-002", "customer_name": "Lee"})

        self.assertIn("PD-2026-002", message.subject)
        self.assertIn("try again", message.body)

    def test_order_cancelled_mentions_refund(self):
        message = render(
            NotificationKind.ORDER_CANCELLED,
            {"order_number": "PD-2026-003", "customer_name": "Lee", "refund_status": "refunded", "refund_amount": "44.99"},
        )

        self.assertEqual(message.subject, "Your order PD-2026-003 has been cancelled")
        self.assertIn("Hi Lee", message.body)
        self.assertIn("A refund of 44.99 has been issued", message.body)

    def test_order_cancelled_after_failed_refund_asks_to_get_in_touch(self):
        message = render(
            NotificationKind.ORDER_CANCELLED,
            {"order_number": "PD-2026-004", "customer_name": "Lee", "refund_status": "refund_failed"},
        )

        self.assertIn("please contact us", message.body)

    @override_settings(NOTIFICATION_PROVIDER="Django_Mail")
    def test_router_resolves_django_mail(self):
        self.assertEqual(NotificationSenderRouter.resolve().name, "django_mail")
