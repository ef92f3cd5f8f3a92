from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum


class NotificationKind(StrEnum):
    ORDER_CREATED = "order_created"
    CUSTOMIZATION_PROCESSING = "customization_processing"
    FILES_READY = "files_ready"
    PAYMENT_FAILED = "payment_failed"
    ORDER_CANCELLED = "order_cancelled"


ADMIN_KINDS = frozenset({NotificationKind.ORDER_CREATED})


@dataclass(frozen=True)
class RenderedMessage:
    subject: str
    body: str


@dataclass(frozen=True)
class SendResult:
    success: bool
    error: str = ""
    skipped: bool = False
    recipients: tuple[str, ...] = field(default_factory=tuple)
