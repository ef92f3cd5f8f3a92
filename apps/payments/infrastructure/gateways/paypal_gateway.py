from __future__ import annotations

import logging
import time
from decimal import Decimal, InvalidOperation

import requests
from django.conf import settings

from apps.payments.domain.errors import InvalidWebhookError, PaymentGatewayError
from apps.payments.domain.ports import CaptureResult, PaymentRedirect, RefundResult, VerifiedEvent
from apps.payments.domain.types import WebhookEventKind

logger = logging.getLogger("storefront.payments")

EVENT_KINDS = {
    "PAYMENT.CAPTURE.COMPLETED": WebhookEventKind.PAYMENT_COMPLETED,
    "CHECKOUT.ORDER.COMPLETED": WebhookEventKind.PAYMENT_COMPLETED,
    "PAYMENT.CAPTURE.PENDING": WebhookEventKind.PAYMENT_PENDING,
    "PAYMENT.CAPTURE.DENIED": WebhookEventKind.PAYMENT_DENIED,
    "PAYMENT.CAPTURE.DECLINED": WebhookEventKind.PAYMENT_DENIED,
    "PAYMENT.CAPTURE.REFUNDED": WebhookEventKind.PAYMENT_REFUNDED,
    "PAYMENT.CAPTURE.REVERSED": WebhookEventKind.PAYMENT_REFUNDED,
}

_SIGNATURE_HEADERS = {
    "auth_algo": "PAYPAL-AUTH-ALGO",
    "cert_url": "PAYPAL-CERT-URL",
    "transmission_id": "PAYPAL-TRANSMISSION-ID",
    "transmission_sig": "PAYPAL-TRANSMISSION-SIG",
    "transmission_time": "PAYPAL-TRANSMISSION-TIME",
}


def _decimal_or_none(value) -> Decimal | None:
    if value in (None, ""):
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


def _first_capture(order: dict) -> dict:
    units = order.get("purchase_units") or [{}]
    captures = ((units[0].get("payments") or {}).get("captures")) or []
    return captures[0] if captures else {}


def _link(resource: dict, rel: str) -> str:
    for link in resource.get("links") or []:
        if link.get("rel") == rel:
            return link.get("href") or ""
    return ""


class PayPalGateway:
    """
    PayPal Orders v2 over plain HTTPS.

    Every call carries `PAYPAL_TIMEOUT_SECONDS`; nothing is retried here.
    Webhook signatures are checked against PayPal only when
    `PAYPAL_WEBHOOK_ID` is configured.
    """

    code = "paypal"
    name = "PayPal"

    def __init__(self) -> None:
        self._token = ""
        self._token_expires_at = 0.0

    @property
    def _base_url(self) -> str:
        return getattr(settings, "PAYPAL_BASE_URL", "https://api-m.sandbox.paypal.com").rstrip("/")

    @property
    def _timeout(self) -> float:
        return float(getattr(settings, "PAYPAL_TIMEOUT_SECONDS", 15))

    def _access_token(self) -> str:
        if self._token and time.monotonic() < self._token_expires_at:
            return self._token

        client_id = getattr(settings, "PAYPAL_CLIENT_ID", "")
        client_secret = getattr(settings, "PAYPAL_CLIENT_SECRET", "")
        if not client_id or not client_secret:
            raise PaymentGatewayError("PayPal credentials are not configured.", provider_code=self.code)

        try:
            response = requests.post(
                f"{self._base_url}/v1/oauth2/token",
                auth=(client_id, client_secret),
                data={"grant_type": "client_credentials"},
                headers={"Accept": "application/json"},
                timeout=self._timeout,
            )
            response.raise_for_status()
            payload = response.json()
        except requests.exceptions.RequestException as exc:
            raise PaymentGatewayError(
                f"PayPal authentication failed: {exc}",
                status_code=getattr(exc.response, "status_code", None),
                provider_code=self.code,
            ) from exc
        except ValueError as exc:
            raise PaymentGatewayError("PayPal returned an invalid token response.", provider_code=self.code) from exc

        self._token = payload.get("access_token") or ""
        if not self._token:
            raise PaymentGatewayError("PayPal returned no access token.", provider_code=self.code)
        # Refresh a minute early.
        self._token_expires_at = time.monotonic() + max(0, int(payload.get("expires_in") or 0) - 60)
        return self._token

    def _request(self, method: str, path: str, *, json: dict | None = None) -> dict:
        headers = {
            "Authorization": f"Bearer {self._access_token()}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        try:
            response = requests.request(
                method,
                f"{self._base_url}{path}",
                json=json,
                headers=headers,
                timeout=self._timeout,
            )
            response.raise_for_status()
            return response.json() if response.content else {}
        except requests.exceptions.RequestException as exc:
            status_code = getattr(exc.response, "status_code", None)
            logger.warning(
                "paypal_request_failed",
                extra={"method": method, "path": path, "status_code": status_code},
            )
            raise PaymentGatewayError(
                f"PayPal request failed: {exc}",
                status_code=status_code,
                provider_code=self.code,
            ) from exc
        except ValueError as exc:
            raise PaymentGatewayError("PayPal returned invalid JSON.", provider_code=self.code) from exc

    def create_intent(self, *, order, amount: Decimal, currency: str) -> PaymentRedirect:
        items = [
            {
                "name": item.product_name[:127],
                "quantity": str(item.quantity),
                "category": "DIGITAL_GOODS",
                "unit_amount": {"currency_code": currency, "value": f"{item.original_price:.2f}"},
            }
            for item in order.items.all()
        ]
        breakdown = {"item_total": {"currency_code": currency, "value": f"{order.subtotal:.2f}"}}
        if order.total_promo_discount:
            breakdown["discount"] = {"currency_code": currency, "value": f"{order.total_promo_discount:.2f}"}

        body = {
            "intent": "CAPTURE",
            "purchase_units": [
                {
                    "reference_id": order.order_number,
                    "custom_id": str(order.id),
                    "description": f"Order {order.order_number}",
                    "amount": {"currency_code": currency, "value": f"{amount:.2f}", "breakdown": breakdown},
                    "items": items,
                }
            ],
            "application_context": {
                "shipping_preference": "NO_SHIPPING",
                "user_action": "PAY_NOW",
                "return_url": getattr(settings, "PAYPAL_RETURN_URL", ""),
                "cancel_url": getattr(settings, "PAYPAL_CANCEL_URL", ""),
            },
        }
        payload = self._request("POST", "/v2/checkout/orders", json=body)
        reference = payload.get("id") or ""
        if not reference:
            raise PaymentGatewayError("PayPal returned no order id.", provider_code=self.code)
        approval_url = _link(payload, "approve") or _link(payload, "payer-action")
        return PaymentRedirect(provider_reference=reference, approval_url=approval_url, status=payload.get("status", ""))

    def capture(self, *, reference: str) -> CaptureResult:
        payload = self._request("POST", f"/v2/checkout/orders/{reference}/capture", json={})
        capture = _first_capture(payload)
        if not capture:
            raise PaymentGatewayError("PayPal capture response contained no capture.", provider_code=self.code)
        amount = capture.get("amount") or {}
        return CaptureResult(
            transaction_id=capture.get("id") or "",
            status=(capture.get("status") or "").upper(),
            payer_email=(payload.get("payer") or {}).get("email_address") or "",
            amount=_decimal_or_none(amount.get("value")),
            currency=amount.get("currency_code") or "",
            status_reason=(capture.get("status_details") or {}).get("reason") or "",
        )

    def get_details(self, *, reference: str) -> dict:
        return self._request("GET", f"/v2/checkout/orders/{reference}")

    def refund(self, *, capture_id: str, amount: Decimal, currency: str, note: str = "") -> RefundResult:
        body = {"amount": {"currency_code": currency, "value": f"{amount:.2f}"}}
        if note:
            body["note_to_payer"] = note[:255]
        payload = self._request("POST", f"/v2/payments/captures/{capture_id}/refund", json=body)
        refund_id = payload.get("id") or ""
        if not refund_id:
            raise PaymentGatewayError("PayPal refund response contained no refund id.", provider_code=self.code)
        refunded = payload.get("amount") or {}
        return RefundResult(
            refund_id=refund_id,
            status=(payload.get("status") or "").upper(),
            amount=_decimal_or_none(refunded.get("value")),
            currency=refunded.get("currency_code") or "",
        )

    def verify_event(self, *, payload: dict, headers: dict) -> VerifiedEvent:
        webhook_id = getattr(settings, "PAYPAL_WEBHOOK_ID", "")
        if webhook_id:
            self._verify_signature(payload=payload, headers=headers, webhook_id=webhook_id)

        event_id = payload.get("id") or ""
        event_type = payload.get("event_type") or ""
        if not event_id or not event_type:
            raise InvalidWebhookError("Webhook payload is missing id or event_type.")

        resource = payload.get("resource") or {}
        kind = EVENT_KINDS.get(event_type, WebhookEventKind.OTHER)
        related = (resource.get("supplementary_data") or {}).get("related_ids") or {}
        provider_order_id = related.get("order_id") or ""
        if event_type.startswith("CHECKOUT.ORDER."):
            provider_order_id = provider_order_id or resource.get("id") or ""
            capture = _first_capture(resource)
            capture_id = capture.get("id") or ""
            amount = resource.get("amount") or capture.get("amount") or {}
        elif kind == WebhookEventKind.PAYMENT_REFUNDED:
            up = _link(resource, "up")
            capture_id = related.get("capture_id") or (up.rstrip("/").rsplit("/", 1)[-1] if up else "")
            amount = resource.get("amount") or {}
        else:
            capture_id = resource.get("id") or ""
            amount = resource.get("amount") or {}

        return VerifiedEvent(
            event_id=event_id,
            event_type=event_type,
            kind=kind,
            provider_order_id=provider_order_id,
            capture_id=capture_id,
            reason=(resource.get("status_details") or {}).get("reason") or "",
            payer_email=(resource.get("payer") or {}).get("email_address") or "",
            amount=_decimal_or_none(amount.get("value")),
            currency=amount.get("currency_code") or "",
            resource=resource,
        )

    def _verify_signature(self, *, payload: dict, headers: dict, webhook_id: str) -> None:
        normalized = {str(key).upper(): value for key, value in headers.items()}
        body = {name: normalized.get(header, "") for name, header in _SIGNATURE_HEADERS.items()}
        if not all(body.values()):
            raise InvalidWebhookError("Missing PayPal signature headers.")
        body["webhook_id"] = webhook_id
        body["webhook_event"] = payload

        result = self._request("POST", "/v1/notifications/verify-webhook-signature", json=body)
        if result.get("verification_status") != "SUCCESS":
            raise InvalidWebhookError("Invalid webhook signature.")
