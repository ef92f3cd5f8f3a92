from __future__ import annotations


class OrderDomainError(ValueError):
    pass


class OrderValidationError(OrderDomainError):
    def __init__(self, message: str, *, field: str | None = None):
        super().__init__(message)
        self.field = field


class OrderNotFoundError(OrderDomainError):
    pass


class ProductNotFoundError(OrderDomainError):
    def __init__(self, message: str = "Product not found.", *, field: str | None = None):
        super().__init__(message)
        self.field = field


class OrderNumberExhaustedError(OrderDomainError):
    pass
