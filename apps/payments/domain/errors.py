from __future__ import annotations


class PaymentDomainError(ValueError):
    pass


class PaymentGatewayError(PaymentDomainError):
    """Any failure talking to the payment provider (network, HTTP, malformed response)."""

    def __init__(self, message: str, *, status_code: int | None = None, provider_code: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.provider_code = provider_code


class InvalidWebhookError(PaymentDomainError):
    """Signature or payload of an incoming event could not be verified."""


class WebhookProcessingError(PaymentDomainError):
    def __init__(self, message: str, *, event_id: str = "", order_id: int | None = None):
        super().__init__(message)
        self.event_id = event_id
        self.order_id = order_id


class PaymentStateError(PaymentDomainError):
    def __init__(self, message: str, *, field: str | None = None):
        super().__init__(message)
        self.field = field
