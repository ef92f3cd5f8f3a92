from __future__ import annotations

from decimal import Decimal
from uuid import uuid4

from django.conf import settings

from apps.payments.domain.errors import InvalidWebhookError
from apps.payments.domain.ports import CaptureResult, PaymentRedirect, RefundResult, VerifiedEvent
from apps.payments.domain.types import CaptureStatus, WebhookEventKind


class DummyGateway:
    """
    Offline gateway for development and tests. Captures always complete;
    webhook payloads use the normalized shape directly.
    """

    code = "dummy"
    name = "Dummy Gateway"
    _signature = "dummy-secret"

    def create_intent(self, *, order, amount: Decimal, currency: str) -> PaymentRedirect:
        reference = f"DUMMY-{uuid4().hex[:12].upper()}"
        base = getattr(settings, "SITE_BASE_URL", "").rstrip("/")
        return PaymentRedirect(
            provider_reference=reference,
            approval_url=f"{base}/checkout/dummy?token={reference}",
            status="CREATED",
        )

    def capture(self, *, reference: str) -> CaptureResult:
        return CaptureResult(
            transaction_id=f"DUMMYCAP-{reference}",
            status=CaptureStatus.COMPLETED,
        )

    def get_details(self, *, reference: str) -> dict:
        return {"id": reference, "status": "APPROVED"}

    def refund(self, *, capture_id: str, amount: Decimal, currency: str, note: str = "") -> RefundResult:
        return RefundResult(
            refund_id=f"DUMMYREF-{capture_id}",
            status="COMPLETED",
            amount=amount,
            currency=currency,
        )

    def verify_event(self, *, payload: dict, headers: dict) -> VerifiedEvent:
        if headers.get("X-Signature") != self._signature:
            raise InvalidWebhookError("Invalid signature.")
        event_id = payload.get("event_id") or ""
        event_type = payload.get("event_type") or ""
        if not event_id or not event_type:
            raise InvalidWebhookError("Invalid payload.")
        try:
            kind = WebhookEventKind(event_type)
        except ValueError:
            kind = WebhookEventKind.OTHER
        return VerifiedEvent(
            event_id=event_id,
            event_type=event_type,
            kind=kind,
            provider_order_id=payload.get("provider_order_id") or "",
            capture_id=payload.get("capture_id") or "",
            reason=payload.get("reason") or "",
            resource=payload.get("resource") or {},
        )
