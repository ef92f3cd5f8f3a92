from __future__ import annotations

from decimal import Decimal
from unittest.mock import Mock, patch

import requests
from django.contrib.auth import get_user_model
from django.core import mail
from django.db import IntegrityError
from django.test import SimpleTestCase, TestCase, override_settings
from rest_framework.test import APIClient

from apps.catalog.models import Product
from apps.fulfillment.models import DesignFile, DesignFileGrant
from apps.orders.application.use_cases.create_order import (
    CreateOrderCommand,
    CreateOrderUseCase,
    OrderItemInput,
)
from apps.orders.models import Order
from apps.payments.application.use_cases.handle_webhook_event import (
    HandleWebhookEventCommand,
    HandleWebhookEventUseCase,
)
from apps.payments.domain.errors import InvalidWebhookError, PaymentGatewayError
from apps.payments.domain.ports import CaptureResult
from apps.payments.domain.types import CaptureStatus, WebhookAction, WebhookEventKind
from apps.payments.infrastructure.gateways.dummy_gateway import DummyGateway
from apps.payments.infrastructure.gateways.paypal_gateway import PayPalGateway
from apps.payments.models import PaymentIntent, WebhookEvent
from apps.promotions.models import PromoCode, PromoCodeUsage

WEBHOOK_URL = "/api/webhooks/payment/?provider=dummy"


@override_settings(PAYMENT_PROVIDER="dummy")
class PaymentFlowTestCase(TestCase):
    def setUp(self) -> None:
        User = get_user_model()
        self.customer = User.objects.create_user(username="buyer", email="buyer@example.com")
        self.poster = Product.objects.create(name="Poster", slug="poster", price=Decimal("49.99"))
        DesignFile.objects.create(
            product=self.poster,
            file_name="poster.pdf",
            file_url="/uploads/designs/poster.pdf",
            file_type="pdf",
            file_size=4096,
        )
        self.client = APIClient()
        self.client.force_authenticate(user=self.customer)

    def _order(self, **item_kwargs) -> Order:
        return CreateOrderUseCase.execute(
            CreateOrderCommand(
                customer_id=self.customer.id,
                customer_email=self.customer.email,
                customer_name="Buyer",
                items=(OrderItemInput(product_id=self.poster.id, **item_kwargs),),
            )
        )

    def _intent(self, order: Order) -> str:
        response = self.client.post("/api/payments/intent/", data={"order_id": order.id}, format="json")
        self.assertEqual(response.status_code, 201)
        return response.json()["data"]["provider_order_id"]

    def _capture(self, order: Order, reference: str):
        with self.captureOnCommitCallbacks(execute=True):
            return self.client.post(
                "/api/payments/capture/",
                data={"order_id": order.id, "provider_order_id": reference},
                format="json",
            )

    def _webhook(self, event_id: str, event_type: str, **fields):
        payload = {"event_id": event_id, "event_type": event_type, **fields}
        with self.captureOnCommitCallbacks(execute=True):
            return APIClient().post(WEBHOOK_URL, data=payload, format="json", HTTP_X_SIGNATURE="dummy-secret")

    def _history(self, order: Order) -> list[str]:
        return list(order.history.values_list("status", flat=True))


class PaymentIntentApiTests(PaymentFlowTestCase):
    def test_intent_is_stored_and_returned(self):
        order = self._order()

        response = self.client.post("/api/payments/intent/", data={"order_id": order.id}, format="json")

        self.assertEqual(response.status_code, 201)
        data = response.json()["data"]
        self.assertTrue(data["provider_order_id"].startswith("DUMMY-"))
        intent = PaymentIntent.objects.get(provider_reference=data["provider_order_id"])
        self.assertEqual(intent.order_id, order.id)
        self.assertEqual(intent.amount, Decimal("49.99"))
        self.assertEqual(intent.status, PaymentIntent.STATUS_CREATED)
        self.assertIn("payment_intent_created", self._history(order))

    def test_paid_order_cannot_open_another_intent(self):
        order = self._order()
        self._capture(order, self._intent(order))

        response = self.client.post("/api/payments/intent/", data={"order_id": order.id}, format="json")

        self.assertEqual(response.status_code, 409)

    def test_other_customers_order_is_not_found(self):
        order = self._order()
        other = get_user_model().objects.create_user(username="other", email="other@example.com")
        self.client.force_authenticate(user=other)

        response = self.client.post("/api/payments/intent/", data={"order_id": order.id}, format="json")

        self.assertEqual(response.status_code, 404)


class PaymentCaptureApiTests(PaymentFlowTestCase):
    def test_capture_completes_and_delivers_standard_order(self):
        order = self._order()
        reference = self._intent(order)

        response = self._capture(order, reference)

        self.assertEqual(response.status_code, 200)
        data = response.json()["data"]
        self.assertEqual(data["capture_status"], "COMPLETED")
        self.assertEqual(data["transaction_id"], f"DUMMYCAP-{reference}")
        self.assertTrue(data["auto_fulfilled"])

        order.refresh_from_db()
        self.assertEqual(order.payment_status, Order.PAYMENT_PAID)
        self.assertEqual(order.order_status, Order.STATUS_COMPLETED)
        self.assertEqual(order.provider_order_id, reference)
        self.assertEqual(DesignFileGrant.objects.filter(order=order).count(), 1)
        self.assertEqual(PaymentIntent.objects.get(provider_reference=reference).status, PaymentIntent.STATUS_CAPTURED)
        self.assertEqual(len(mail.outbox), 1)
        self.assertEqual(mail.outbox[0].to, ["buyer@example.com"])

    def test_second_capture_reports_already_paid(self):
        order = self._order()
        reference = self._intent(order)
        self._capture(order, reference)

        response = self._capture(order, reference)

        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.json()["data"]["already_paid"])
        self.assertEqual(len(mail.outbox), 1)

    def test_gateway_failure_marks_payment_failed(self):
        order = self._order()
        reference = self._intent(order)

        with patch.object(DummyGateway, "capture", side_effect=PaymentGatewayError("Read timed out.")):
            response = self._capture(order, reference)

        self.assertEqual(response.status_code, 502)
        self.assertEqual(response.json()["error"]["code"], "payment_gateway_error")
        order.refresh_from_db()
        self.assertEqual(order.payment_status, Order.PAYMENT_FAILED)
        self.assertEqual(order.order_status, Order.STATUS_PENDING)
        self.assertEqual(self._history(order)[-1], "payment_capture_failed")
        self.assertEqual(len(mail.outbox), 1)
        self.assertIn("not completed", mail.outbox[0].subject)

    def test_failed_payment_can_be_retried(self):
        order = self._order()
        reference = self._intent(order)
        with patch.object(DummyGateway, "capture", side_effect=PaymentGatewayError("Read timed out.")):
            self._capture(order, reference)

        response = self._capture(order, reference)

        self.assertEqual(response.status_code, 200)
        order.refresh_from_db()
        self.assertEqual(order.payment_status, Order.PAYMENT_PAID)

    def test_declined_capture(self):
        order = self._order()
        reference = self._intent(order)
        declined = CaptureResult(transaction_id="CAP-X", status=CaptureStatus.DECLINED)

        with patch.object(DummyGateway, "capture", return_value=declined):
            response = self._capture(order, reference)

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"]["code"], "payment_declined")
        order.refresh_from_db()
        self.assertEqual(order.payment_status, Order.PAYMENT_FAILED)
        self.assertEqual(self._history(order)[-1], "payment_declined")

    def test_pending_capture(self):
        order = self._order()
        reference = self._intent(order)
        pending = CaptureResult(transaction_id="CAP-P", status=CaptureStatus.PENDING, status_reason="PENDING_REVIEW")

        with patch.object(DummyGateway, "capture", return_value=pending):
            response = self._capture(order, reference)

        self.assertEqual(response.status_code, 202)
        order.refresh_from_db()
        self.assertEqual(order.payment_status, Order.PAYMENT_PENDING)
        self.assertEqual(order.provider_transaction_id, "CAP-P")
        self.assertFalse(DesignFileGrant.objects.filter(order=order).exists())
        self.assertEqual(len(mail.outbox), 0)

    def test_reference_from_another_order_is_rejected(self):
        first = self._order()
        second = self._order()
        reference = self._intent(first)

        response = self._capture(second, reference)

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"]["field"], "provider_order_id")


class PaymentWebhookApiTests(PaymentFlowTestCase):
    def test_completed_event_settles_and_delivers(self):
        order = self._order()
        reference = self._intent(order)

        response = self._webhook("EV-1", "payment.completed", provider_order_id=reference, capture_id="CAP-9")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["data"]["action"], "completed")
        self.assertEqual(response.json()["data"]["order_number"], order.order_number)
        order.refresh_from_db()
        self.assertEqual(order.payment_status, Order.PAYMENT_PAID)
        self.assertEqual(order.order_status, Order.STATUS_COMPLETED)
        self.assertEqual(order.provider_transaction_id, "CAP-9")
        self.assertEqual(self._history(order)[-1], "webhook_payment_completed")
        self.assertTrue(WebhookEvent.objects.get(event_id="EV-1").processed)
        self.assertEqual(len(mail.outbox), 1)

    def test_redelivered_event_is_a_duplicate(self):
        order = self._order()
        reference = self._intent(order)
        self._webhook("EV-1", "payment.completed", provider_order_id=reference, capture_id="CAP-9")
        history_before = order.history.count()

        response = self._webhook("EV-1", "payment.completed", provider_order_id=reference, capture_id="CAP-9")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["data"]["action"], "duplicate")
        self.assertEqual(order.history.count(), history_before)
        self.assertEqual(WebhookEvent.objects.filter(event_id="EV-1").count(), 1)
        self.assertEqual(DesignFileGrant.objects.filter(order=order).count(), 1)
        self.assertEqual(len(mail.outbox), 1)

    def test_completed_event_for_captured_order_changes_nothing(self):
        order = self._order()
        reference = self._intent(order)
        self._capture(order, reference)
        order.refresh_from_db()
        history_before = order.history.count()

        response = self._webhook(
            "EV-2", "payment.completed", provider_order_id=reference, capture_id=order.provider_transaction_id
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["data"]["action"], "duplicate")
        self.assertEqual(order.history.count(), history_before)
        self.assertEqual(len(mail.outbox), 1)

    def test_unknown_order_is_acknowledged(self):
        response = self._webhook("EV-3", "payment.completed", provider_order_id="DUMMY-NOPE", capture_id="CAP-0")

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertFalse(body["success"])
        self.assertEqual(body["error"]["code"], "order_not_found")
        self.assertFalse(WebhookEvent.objects.exists())

    def test_invalid_signature_is_rejected(self):
        response = APIClient().post(
            WEBHOOK_URL,
            data={"event_id": "EV-4", "event_type": "payment.completed"},
            format="json",
            HTTP_X_SIGNATURE="wrong",
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"]["code"], "invalid_webhook")

    def test_unknown_provider_is_rejected(self):
        response = APIClient().post(
            "/api/webhooks/payment/?provider=stripe",
            data={"event_id": "EV-5", "event_type": "payment.completed"},
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"]["code"], "unknown_provider")

    def test_pending_event_records_hold(self):
        order = self._order()
        reference = self._intent(order)

        response = self._webhook(
            "EV-6", "payment.pending", provider_order_id=reference, capture_id="CAP-H", reason="PENDING_REVIEW"
        )

        self.assertEqual(response.json()["data"]["action"], "updated")
        order.refresh_from_db()
        self.assertEqual(order.payment_status, Order.PAYMENT_PENDING)
        self.assertEqual(order.provider_transaction_id, "CAP-H")
        self.assertEqual(self._history(order)[-1], "webhook_payment_pending")

    def test_denied_event_cancels_unpaid_order(self):
        order = self._order()
        reference = self._intent(order)

        response = self._webhook("EV-7", "payment.denied", provider_order_id=reference, reason="DECLINED")

        self.assertEqual(response.json()["data"]["action"], "failed")
        order.refresh_from_db()
        self.assertEqual(order.payment_status, Order.PAYMENT_FAILED)
        self.assertEqual(order.order_status, Order.STATUS_CANCELLED)
        self.assertEqual(self._history(order)[-1], "webhook_payment_denied")
        self.assertEqual(len(mail.outbox), 1)

    def test_denied_event_after_payment_is_only_recorded(self):
        order = self._order()
        reference = self._intent(order)
        self._capture(order, reference)

        response = self._webhook("EV-8", "payment.denied", provider_order_id=reference)

        self.assertEqual(response.json()["data"]["action"], "updated")
        order.refresh_from_db()
        self.assertEqual(order.payment_status, Order.PAYMENT_PAID)
        self.assertEqual(order.order_status, Order.STATUS_COMPLETED)
        self.assertEqual(self._history(order)[-1], "webhook_payment_denied_ignored")

    def test_refund_revokes_access_and_releases_promo(self):
        promo = PromoCode.objects.create(
            code="SAVE10",
            discount_type=PromoCode.TYPE_PERCENTAGE,
            discount_value=Decimal("10"),
            apply_to_all_products=True,
        )
        order = self._order(promo_code="SAVE10")
        reference = self._intent(order)
        self._webhook("EV-9", "payment.completed", provider_order_id=reference, capture_id="CAP-R")
        promo.refresh_from_db()
        self.assertEqual(promo.usage_count, 1)

        response = self._webhook("EV-10", "payment.refunded", capture_id="CAP-R")

        self.assertEqual(response.json()["data"]["action"], "updated")
        order.refresh_from_db()
        promo.refresh_from_db()
        self.assertEqual(order.payment_status, Order.PAYMENT_REFUNDED)
        self.assertEqual(order.order_status, Order.STATUS_CANCELLED)
        self.assertFalse(DesignFileGrant.objects.filter(order=order, is_active=True).exists())
        self.assertFalse(PromoCodeUsage.objects.get(order=order).is_active)
        self.assertEqual(promo.usage_count, 0)

    def test_other_event_types_are_recorded(self):
        order = self._order()
        reference = self._intent(order)

        response = self._webhook("EV-11", "checkout.order.approved", provider_order_id=reference)

        self.assertEqual(response.json()["data"]["action"], "updated")
        order.refresh_from_db()
        self.assertEqual(order.payment_status, Order.PAYMENT_PENDING)
        self.assertEqual(self._history(order)[-1], "webhook_event")

    def test_processing_error_is_recorded_and_event_left_unprocessed(self):
        order = self._order()
        reference = self._intent(order)

        with patch(
            "apps.payments.application.use_cases.handle_webhook_event.CompletePaymentUseCase.execute",
            side_effect=RuntimeError("disk full"),
        ):
            response = self._webhook("EV-12", "payment.completed", provider_order_id=reference, capture_id="CAP-E")

        self.assertEqual(response.status_code, 500)
        order.refresh_from_db()
        self.assertEqual(order.payment_status, Order.PAYMENT_PENDING)
        self.assertEqual(self._history(order)[-1], "webhook_error")
        self.assertFalse(WebhookEvent.objects.get(event_id="EV-12").processed)
        self.assertEqual(len(mail.outbox), 0)

    def test_failed_event_runs_again_when_redelivered(self):
        order = self._order()
        reference = self._intent(order)
        with patch(
            "apps.payments.application.use_cases.handle_webhook_event.CompletePaymentUseCase.execute",
            side_effect=RuntimeError("disk full"),
        ):
            self._webhook("EV-15", "payment.completed", provider_order_id=reference, capture_id="CAP-F")

        response = self._webhook("EV-15", "payment.completed", provider_order_id=reference, capture_id="CAP-F")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["data"]["action"], "completed")
        order.refresh_from_db()
        self.assertEqual(order.payment_status, Order.PAYMENT_PAID)
        self.assertEqual(order.provider_transaction_id, "CAP-F")
        self.assertEqual(WebhookEvent.objects.filter(event_id="EV-15").count(), 1)
        self.assertTrue(WebhookEvent.objects.get(event_id="EV-15").processed)
        self.assertEqual(len(mail.outbox), 1)

        again = self._webhook("EV-15", "payment.completed", provider_order_id=reference, capture_id="CAP-F")

        self.assertEqual(again.json()["data"]["action"], "duplicate")
        self.assertEqual(len(mail.outbox), 1)

    def test_admin_can_inspect_webhook_events(self):
        order = self._order()
        reference = self._intent(order)
        self._webhook("EV-13", "payment.pending", provider_order_id=reference)
        self._webhook("EV-14", "payment.completed", provider_order_id=reference, capture_id="CAP-S")
        admin = get_user_model().objects.create_user(username="admin", email="admin@example.com", is_staff=True)
        self.client.force_authenticate(user=admin)

        response = self.client.get(f"/api/admin/orders/{order.id}/webhooks/")

        self.assertEqual(response.status_code, 200)
        data = response.json()["data"]
        self.assertEqual(data["total_events"], 2)
        self.assertEqual(data["processed_events"], 2)
        self.assertEqual([event["event_id"] for event in data["events"]], ["EV-13", "EV-14"])


class HandleWebhookEventUseCaseTests(PaymentFlowTestCase):
    def test_concurrent_insert_is_treated_as_duplicate(self):
        order = self._order()
        reference = self._intent(order)

        with patch.object(WebhookEvent.objects, "create", side_effect=IntegrityError("duplicate key")):
            result = HandleWebhookEventUseCase.execute(
                HandleWebhookEventCommand(
                    provider_code="dummy",
                    headers={"X-Signature": "dummy-secret"},
                    payload={"event_id": "EV-R", "event_type": "payment.completed", "provider_order_id": reference},
                )
            )

        self.assertEqual(result.action, WebhookAction.DUPLICATE)
        order.refresh_from_db()
        self.assertEqual(order.payment_status, Order.PAYMENT_PENDING)

    def test_order_is_matched_by_capture_id(self):
        order = self._order()
        Order.objects.filter(pk=order.pk).update(provider_transaction_id="CAP-ONLY")

        result = HandleWebhookEventUseCase.execute(
            HandleWebhookEventCommand(
                provider_code="dummy",
                headers={"X-Signature": "dummy-secret"},
                payload={"event_id": "EV-C", "event_type": "payment.pending", "capture_id": "CAP-ONLY"},
            )
        )

        self.assertTrue(result.success)
        self.assertEqual(result.order_id, order.id)


class AdminOrderCancelApiTests(PaymentFlowTestCase):
    def setUp(self) -> None:
        super().setUp()
        admin = get_user_model().objects.create_user(username="admin", email="admin@example.com", is_staff=True)
        self.admin_client = APIClient()
        self.admin_client.force_authenticate(user=admin)

    def _cancel(self, order: Order, **data):
        with self.captureOnCommitCallbacks(execute=True):
            return self.admin_client.post(f"/api/admin/orders/{order.id}/cancel/", data=data, format="json")

    def _paid_order(self, **item_kwargs) -> tuple[Order, str]:
        order = self._order(**item_kwargs)
        reference = self._intent(order)
        self._capture(order, reference)
        mail.outbox = []
        return order, reference

    def test_paid_order_is_refunded_and_cancelled(self):
        promo = PromoCode.objects.create(
            code="SAVE10",
            discount_type=PromoCode.TYPE_PERCENTAGE,
            discount_value=Decimal("10"),
            apply_to_all_products=True,
        )
        order, reference = self._paid_order(promo_code="SAVE10")

        response = self._cancel(order, reason="Customer asked")

        self.assertEqual(response.status_code, 200)
        data = response.json()["data"]
        self.assertEqual(data["refund_status"], "refunded")
        self.assertEqual(data["refund_id"], f"DUMMYREF-DUMMYCAP-{reference}")
        self.assertEqual(data["order_status"], Order.STATUS_CANCELLED)
        self.assertEqual(data["payment_status"], Order.PAYMENT_REFUNDED)

        order.refresh_from_db()
        promo.refresh_from_db()
        self.assertEqual(self._history(order)[-2:], ["refund_processed", "cancelled"])
        self.assertIn(data["refund_id"], order.history.get(status="refund_processed").note)
        self.assertIn("Customer asked", order.history.get(status="cancelled").note)
        self.assertFalse(DesignFileGrant.objects.filter(order=order, is_active=True).exists())
        self.assertFalse(PromoCodeUsage.objects.get(order=order).is_active)
        self.assertEqual(promo.usage_count, 0)
        self.assertEqual(len(mail.outbox), 1)
        self.assertEqual(mail.outbox[0].to, ["buyer@example.com"])
        self.assertEqual(mail.outbox[0].subject, f"Your order {order.order_number} has been cancelled")
        self.assertIn("A refund of", mail.outbox[0].body)

    def test_failed_refund_still_cancels_the_order(self):
        order, _ = self._paid_order()

        with patch.object(
            DummyGateway, "refund", side_effect=PaymentGatewayError("Refund window closed.", provider_code="dummy")
        ):
            response = self._cancel(order)

        self.assertEqual(response.status_code, 200)
        data = response.json()["data"]
        self.assertEqual(data["refund_status"], "refund_failed")
        self.assertEqual(data["refund_error"], "Refund window closed.")
        order.refresh_from_db()
        self.assertEqual(order.payment_status, Order.PAYMENT_PAID)
        self.assertEqual(order.order_status, Order.STATUS_CANCELLED)
        self.assertEqual(self._history(order)[-2:], ["refund_failed", "cancelled"])
        self.assertFalse(DesignFileGrant.objects.filter(order=order, is_active=True).exists())
        self.assertIn("contact us", mail.outbox[0].body)

    def test_free_order_is_cancelled_without_refund(self):
        freebie = Product.objects.create(name="Freebie", slug="freebie", price=Decimal("0.00"))
        order = CreateOrderUseCase.execute(
            CreateOrderCommand(
                customer_id=self.customer.id,
                customer_email=self.customer.email,
                customer_name="Buyer",
                items=(OrderItemInput(product_id=freebie.id),),
            )
        )

        with patch.object(DummyGateway, "refund") as refund:
            response = self._cancel(order)

        refund.assert_not_called()
        data = response.json()["data"]
        self.assertEqual(data["refund_status"], "not_required")
        self.assertEqual(data["refund_id"], "")
        self.assertEqual(data["payment_status"], Order.PAYMENT_FREE)
        self.assertEqual(data["order_status"], Order.STATUS_CANCELLED)
        self.assertNotIn("refund_processed", self._history(order))
        self.assertIn("No payment was taken", mail.outbox[0].body)

    def test_unpaid_order_is_cancelled_without_refund(self):
        order = self._order()

        with patch.object(DummyGateway, "refund") as refund:
            response = self._cancel(order)

        refund.assert_not_called()
        self.assertEqual(response.json()["data"]["refund_status"], "not_required")
        order.refresh_from_db()
        self.assertEqual(order.payment_status, Order.PAYMENT_PENDING)
        self.assertEqual(order.order_status, Order.STATUS_CANCELLED)

    def test_cancelling_twice_is_a_conflict(self):
        order, _ = self._paid_order()
        self._cancel(order)

        with patch.object(DummyGateway, "refund") as refund:
            response = self._cancel(order)

        self.assertEqual(response.status_code, 409)
        refund.assert_not_called()

    def test_unknown_order_is_not_found(self):
        response = self.admin_client.post("/api/admin/orders/999999/cancel/", data={}, format="json")

        self.assertEqual(response.status_code, 404)

    def test_customers_cannot_cancel(self):
        order = self._order()

        response = self.client.post(f"/api/admin/orders/{order.id}/cancel/", data={}, format="json")

        self.assertEqual(response.status_code, 403)
        order.refresh_from_db()
        self.assertEqual(order.order_status, Order.STATUS_PENDING)


def _response(payload: dict) -> Mock:
    response = Mock()
    response.content = b"{}"
    response.json.return_value = payload
    response.raise_for_status.return_value = None
    return response


@override_settings(
    PAYPAL_CLIENT_ID="client",
    PAYPAL_CLIENT_SECRET="secret",
    PAYPAL_BASE_URL="https://paypal.test",
    PAYPAL_TIMEOUT_SECONDS=5,
    PAYPAL_WEBHOOK_ID="",
)
@patch("apps.payments.infrastructure.gateways.paypal_gateway.requests.post")
class PayPalGatewayTests(SimpleTestCase):
    def setUp(self) -> None:
        self.gateway = PayPalGateway()

    def test_capture_parses_first_capture(self, post):
        post.return_value = _response({"access_token": "token", "expires_in": 3600})
        body = {
            "id": "5O190127TN364715T",
            "status": "COMPLETED",
            "payer": {"email_address": "payer@example.com"},
            "purchase_units": [
                {
                    "payments": {
                        "captures": [
                            {"id": "3C679366HH908993F", "status": "COMPLETED", "amount": {"currency_code": "USD", "value": "49.99"}}
                        ]
                    }
                }
            ],
        }
        with patch(
            "apps.payments.infrastructure.gateways.paypal_gateway.requests.request", return_value=_response(body)
        ) as request:
            result = self.gateway.capture(reference="5O190127TN364715T")

        self.assertEqual(result.transaction_id, "3C679366HH908993F")
        self.assertEqual(result.status, "COMPLETED")
        self.assertEqual(result.payer_email, "payer@example.com")
        self.assertEqual(result.amount, Decimal("49.99"))
        self.assertEqual(result.currency, "USD")
        method, url = request.call_args.args
        self.assertEqual((method, url), ("POST", "https://paypal.test/v2/checkout/orders/5O190127TN364715T/capture"))
        self.assertEqual(request.call_args.kwargs["timeout"], 5.0)
        self.assertEqual(request.call_args.kwargs["headers"]["Authorization"], "Bearer token")

    def test_token_is_reused(self, post):
        post.return_value = _response({"access_token": "token", "expires_in": 3600})
        with patch(
            "apps.payments.infrastructure.gateways.paypal_gateway.requests.request",
            return_value=_response({"id": "X"}),
        ):
            self.gateway.get_details(reference="X")
            self.gateway.get_details(reference="X")

        self.assertEqual(post.call_count, 1)

    def test_timeout_raises_gateway_error(self, post):
        post.return_value = _response({"access_token": "token", "expires_in": 3600})
        with patch(
            "apps.payments.infrastructure.gateways.paypal_gateway.requests.request",
            side_effect=requests.exceptions.Timeout("read timed out"),
        ):
            with self.assertRaises(PaymentGatewayError):
                self.gateway.capture(reference="X")

    def test_missing_capture_raises_gateway_error(self, post):
        post.return_value = _response({"access_token": "token", "expires_in": 3600})
        with patch(
            "apps.payments.infrastructure.gateways.paypal_gateway.requests.request",
            return_value=_response({"id": "X", "purchase_units": [{}]}),
        ):
            with self.assertRaises(PaymentGatewayError):
                self.gateway.capture(reference="X")

    @override_settings(PAYPAL_CLIENT_ID="")
    def test_missing_credentials_raise_gateway_error(self, post):
        with self.assertRaises(PaymentGatewayError):
            self.gateway.capture(reference="X")
        post.assert_not_called()

    def test_create_intent_reads_approve_link(self, post):
        post.return_value = _response({"access_token": "token", "expires_in": 3600})
        order = Mock(order_number="PD-2026-001", id=7, subtotal=Decimal("49.99"), total_promo_discount=Decimal("0"))
        order.items.all.return_value = []
        body = {
            "id": "ORDER-1",
            "status": "CREATED",
            "links": [
                {"rel": "self", "href": "https://paypal.test/v2/checkout/orders/ORDER-1"},
                {"rel": "approve", "href": "https://paypal.test/checkoutnow?token=ORDER-1"},
            ],
        }
        with patch(
            "apps.payments.infrastructure.gateways.paypal_gateway.requests.request", return_value=_response(body)
        ) as request:
            redirect = self.gateway.create_intent(order=order, amount=Decimal("49.99"), currency="USD")

        self.assertEqual(redirect.provider_reference, "ORDER-1")
        self.assertEqual(redirect.approval_url, "https://paypal.test/checkoutnow?token=ORDER-1")
        unit = request.call_args.kwargs["json"]["purchase_units"][0]
        self.assertEqual(unit["amount"]["value"], "49.99")
        self.assertEqual(unit["reference_id"], "PD-2026-001")

    def test_capture_completed_event_is_normalized(self, post):
        event = self.gateway.verify_event(
            payload={
                "id": "WH-1",
                "event_type": "PAYMENT.CAPTURE.COMPLETED",
                "resource": {
                    "id": "CAP-1",
                    "amount": {"currency_code": "USD", "value": "49.99"},
                    "supplementary_data": {"related_ids": {"order_id": "ORDER-1"}},
                },
            },
            headers={},
        )

        self.assertEqual(event.kind, WebhookEventKind.PAYMENT_COMPLETED)
        self.assertEqual(event.provider_order_id, "ORDER-1")
        self.assertEqual(event.capture_id, "CAP-1")
        self.assertEqual(event.amount, Decimal("49.99"))
        post.assert_not_called()

    def test_refund_event_points_at_original_capture(self, post):
        event = self.gateway.verify_event(
            payload={
                "id": "WH-2",
                "event_type": "PAYMENT.CAPTURE.REFUNDED",
                "resource": {
                    "id": "REFUND-1",
                    "links": [{"rel": "up", "href": "https://paypal.test/v2/payments/captures/CAP-1"}],
                },
            },
            headers={},
        )

        self.assertEqual(event.kind, WebhookEventKind.PAYMENT_REFUNDED)
        self.assertEqual(event.capture_id, "CAP-1")

    def test_checkout_order_completed_event_reads_nested_capture(self, post):
        event = self.gateway.verify_event(
            payload={
                "id": "WH-6",
                "event_type": "CHECKOUT.ORDER.COMPLETED",
                "resource": {
                    "id": "ORDER-2",
                    "purchase_units": [
                        {
                            "payments": {
                                "captures": [
                                    {"id": "CAP-2", "amount": {"currency_code": "USD", "value": "30.00"}}
                                ]
                            }
                        }
                    ],
                },
            },
            headers={},
        )

        self.assertEqual(event.kind, WebhookEventKind.PAYMENT_COMPLETED)
        self.assertEqual(event.provider_order_id, "ORDER-2")
        self.assertEqual(event.capture_id, "CAP-2")
        self.assertEqual(event.amount, Decimal("30.00"))
        self.assertEqual(event.currency, "USD")

    def test_refund_posts_amount_against_capture(self, post):
        post.return_value = _response({"access_token": "token", "expires_in": 3600})
        body = {"id": "REF-1", "status": "completed", "amount": {"currency_code": "USD", "value": "49.99"}}
        with patch(
            "apps.payments.infrastructure.gateways.paypal_gateway.requests.request", return_value=_response(body)
        ) as request:
            result = self.gateway.refund(
                capture_id="CAP-1", amount=Decimal("49.99"), currency="USD", note="Order PD-1 cancelled."
            )

        self.assertEqual(result.refund_id, "REF-1")
        self.assertEqual(result.status, "COMPLETED")
        self.assertEqual(result.amount, Decimal("49.99"))
        method, url = request.call_args.args
        self.assertEqual((method, url), ("POST", "https://paypal.test/v2/payments/captures/CAP-1/refund"))
        self.assertEqual(
            request.call_args.kwargs["json"],
            {"amount": {"currency_code": "USD", "value": "49.99"}, "note_to_payer": "Order PD-1 cancelled."},
        )

    def test_refund_without_id_raises_gateway_error(self, post):
        post.return_value = _response({"access_token": "token", "expires_in": 3600})
        with patch(
            "apps.payments.infrastructure.gateways.paypal_gateway.requests.request",
            return_value=_response({"status": "FAILED"}),
        ):
            with self.assertRaises(PaymentGatewayError):
                self.gateway.refund(capture_id="CAP-1", amount=Decimal("49.99"), currency="USD")

    def test_unmapped_event_type_is_other(self, post):
        event = self.gateway.verify_event(
            payload={"id": "WH-3", "event_type": "CUSTOMER.DISPUTE.CREATED", "resource": {}},
            headers={},
        )
        self.assertEqual(event.kind, WebhookEventKind.OTHER)

    @override_settings(PAYPAL_WEBHOOK_ID="WH-ID")
    def test_signature_headers_are_required_when_webhook_id_set(self, post):
        with self.assertRaises(InvalidWebhookError):
            self.gateway.verify_event(payload={"id": "WH-4", "event_type": "PAYMENT.CAPTURE.COMPLETED"}, headers={})

    @override_settings(PAYPAL_WEBHOOK_ID="WH-ID")
    def test_failed_signature_verification_is_rejected(self, post):
        post.return_value = _response({"access_token": "token", "expires_in": 3600})
        headers = {
            "Paypal-Auth-Algo": "SHA256withRSA",
            "Paypal-Cert-Url": "https://api.paypal.com/cert",
            "Paypal-Transmission-Id": "tx-1",
            "Paypal-Transmission-Sig": "sig",
            "Paypal-Transmission-Time": "2026-01-01T00:00:00Z",
        }
        with patch(
            "apps.payments.infrastructure.gateways.paypal_gateway.requests.request",
            return_value=_response({"verification_status": "FAILURE"}),
        ):
            with self.assertRaises(InvalidWebhookError):
                self.gateway.verify_event(
                    payload={"id": "WH-5", "event_type": "PAYMENT.CAPTURE.COMPLETED"}, headers=headers
                )
