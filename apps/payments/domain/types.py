from __future__ import annotations

from enum import StrEnum


class WebhookEventKind(StrEnum):
    PAYMENT_COMPLETED = "payment.completed"
    PAYMENT_PENDING = "payment.pending"
    PAYMENT_DENIED = "payment.denied"
    PAYMENT_REFUNDED = "payment.refunded"
    OTHER = "other"


class CaptureStatus(StrEnum):
    COMPLETED = "COMPLETED"
    PENDING = "PENDING"
    DECLINED = "DECLINED"
    FAILED = "FAILED"


class WebhookAction(StrEnum):
    DUPLICATE = "duplicate"
    UPDATED = "updated"
    COMPLETED = "completed"
    FAILED = "failed"
    IGNORED = "ignored"
