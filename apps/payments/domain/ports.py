from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Protocol

from .types import WebhookEventKind


@dataclass(frozen=True)
class PaymentRedirect:
    provider_reference: str
    approval_url: str
    status: str = ""


@dataclass(frozen=True)
class CaptureResult:
    transaction_id: str
    status: str
    payer_email: str = ""
    amount: Decimal | None = None
    currency: str = ""
    status_reason: str = ""


@dataclass(frozen=True)
class VerifiedEvent:
    event_id: str
    event_type: str
    kind: WebhookEventKind
    provider_order_id: str = ""
    capture_id: str = ""
    reason: str = ""
    payer_email: str = ""
    amount: Decimal | None = None
    currency: str = ""
    resource: dict = field(default_factory=dict)


@dataclass(frozen=True)
class RefundResult:
    refund_id: str
    status: str
    amount: Decimal | None = None
    currency: str = ""


class PaymentGatewayPort(Protocol):
    code: str
    name: str

    def create_intent(self, *, order, amount: Decimal, currency: str) -> PaymentRedirect:
        ...

    def capture(self, *, reference: str) -> CaptureResult:
        ...

    def get_details(self, *, reference: str) -> dict:
        ...

    def refund(self, *, capture_id: str, amount: Decimal, currency: str, note: str = "") -> RefundResult:
        ...

    def verify_event(self, *, payload: dict, headers: dict) -> VerifiedEvent:
        ...
