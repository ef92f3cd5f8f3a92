from __future__ import annotations

from django.conf import settings

from apps.payments.domain.ports import PaymentGatewayPort
from apps.payments.infrastructure.gateways.dummy_gateway import DummyGateway
from apps.payments.infrastructure.gateways.paypal_gateway import PayPalGateway


class PaymentGatewayFacade:
    _registry: dict[str, PaymentGatewayPort] = {
        DummyGateway.code: DummyGateway(),
        PayPalGateway.code: PayPalGateway(),
    }

    @classmethod
    def get(cls, provider_code: str | None = None) -> PaymentGatewayPort:
        key = (provider_code or getattr(settings, "PAYMENT_PROVIDER", "paypal")).strip().lower()
        if key not in cls._registry:
            raise ValueError(f"Unknown payment provider: {key}")
        return cls._registry[key]
