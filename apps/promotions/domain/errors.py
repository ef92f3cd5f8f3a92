from __future__ import annotations


class PromotionDomainError(ValueError):
    pass


class PromoCodeRejectedError(PromotionDomainError):
    REASON_NOT_FOUND = "not_found"
    REASON_INACTIVE = "inactive"
    REASON_NOT_STARTED = "not_started"
    REASON_EXPIRED = "expired"
    REASON_BELOW_MINIMUM = "below_minimum"
    REASON_EXHAUSTED = "exhausted"
    REASON_USER_LIMIT_REACHED = "user_limit_reached"
    REASON_NOT_APPLICABLE = "not_applicable"

    def __init__(self, message: str, *, reason: str, code: str = "", field: str | None = "promo_code"):
        super().__init__(message)
        self.reason = reason
        self.code = code
        self.field = field
