# app/core/errors.py
from __future__ import annotations


class PromotionsError(Exception):
    """Base for every per-request failure raised by the promotion and voucher services."""

    status_code = 400


class ValidationError(PromotionsError):
    status_code = 400

    def __init__(self, message: str, *, code: str = "invalid", field: str | None = None):
        super().__init__(message)
        self.code = code
        self.field = field


class OwnershipError(PromotionsError):
    status_code = 403


class TierLimitError(PromotionsError):
    status_code = 403

    def __init__(self, message: str, *, limit: str):
        super().__init__(message)
        self.limit = limit  # "promotion_count" | "products_per_promotion"


class NotFoundError(PromotionsError):
    status_code = 404


class TokenError(PromotionsError):
    status_code = 401


class StateError(PromotionsError):
    status_code = 409

    def __init__(self, message: str, *, current: str | None = None, expected: str | None = None):
        super().__init__(message)
        self.current = current
        self.expected = expected


class ExpiredError(PromotionsError):
    status_code = 410
