from __future__ import annotations

from typing import Protocol

from .types import NotificationKind, SendResult


class NotificationSender(Protocol):
    name: str

    def send(self, *, to_email: str, kind: NotificationKind, context: dict) -> SendResult:
        ...
