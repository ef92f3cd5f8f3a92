from __future__ import annotations

from django.conf import settings

from apps.notifications.domain.errors import EmailGatewayError
from apps.notifications.domain.ports import NotificationSender
from apps.notifications.infrastructure.gateways.django_mail import DjangoMailSender


class NotificationSenderRouter:
    @staticmethod
    def resolve() -> NotificationSender:
        provider_name = (getattr(settings, "NOTIFICATION_PROVIDER", "") or "django_mail").strip().lower()

        if provider_name == DjangoMailSender.name:
            return DjangoMailSender(from_email=settings.DEFAULT_FROM_EMAIL)

        raise EmailGatewayError(f"Unknown notification provider: {provider_name}")
