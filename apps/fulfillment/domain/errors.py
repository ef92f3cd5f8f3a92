from __future__ import annotations


class FulfillmentDomainError(ValueError):
    pass


class FulfillmentPreconditionError(FulfillmentDomainError):
    """The order is not in a state that allows this fulfillment action."""

    def __init__(self, message: str, *, field: str | None = None):
        super().__init__(message)
        self.field = field


class DesignFileNotFoundError(FulfillmentDomainError):
    pass


class DownloadNotAllowedError(FulfillmentDomainError):
    def __init__(self, message: str, *, reason: str):
        super().__init__(message)
        self.reason = reason
