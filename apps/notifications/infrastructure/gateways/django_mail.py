from __future__ import annotations

from django.conf import settings
from django.core.mail import EmailMessage

from apps.notifications.domain.errors import EmailGatewayError
from apps.notifications.domain.ports import NotificationSender
from apps.notifications.domain.types import NotificationKind, SendResult
from apps.notifications.infrastructure.templates import render


class DjangoMailSender(NotificationSender):
    name = "django_mail"

    def __init__(self, *, from_email: str | None = None) -> None:
        self._from_email = from_email or settings.DEFAULT_FROM_EMAIL

    def send(self, *, to_email: str, kind: NotificationKind, context: dict) -> SendResult:
        message = render(kind, context)
        try:
            email = EmailMessage(
                subject=message.subject,
                body=message.body,
                from_email=self._from_email,
                to=[to_email],
                headers={"X-Notification-Kind": str(kind)},
            )
            email.send(fail_silently=False)
        except Exception as exc:  # pragma: no cover - transport errors vary
            raise EmailGatewayError(str(exc)) from exc
        return SendResult(success=True, recipients=(to_email,))
