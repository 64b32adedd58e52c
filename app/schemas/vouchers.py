# app/schemas/vouchers.py
from __future__ import annotations

from datetime import datetime
from pydantic import BaseModel, Field


class VoucherTokenRequest(BaseModel):
    promotion_id: int = Field(..., ge=1)
    store_id: int = Field(..., ge=1)
    product_id: int = Field(..., ge=1)


class VoucherTokenIn(BaseModel):
    token: str = Field(..., min_length=1)


class VoucherRejectIn(VoucherTokenIn):
    reason: str | None = None


class VoucherSummary(BaseModel):
    redemption_id: int
    status: str

    consumer_id: int
    consumer_name: str

    promotion_id: int
    promotion_title: str
    voucher_value: float

    store_id: int
    store_name: str
    product_id: int
    product_name: str

    issued_at: datetime
    expires_at: datetime


class VoucherTokenOut(BaseModel):
    token: str
    summary: VoucherSummary


class VoucherDetailsOut(VoucherSummary):
    valid: bool = True
    subscription_tier: str
    verified_at: datetime | None


class VoucherConfirmOut(BaseModel):
    confirmed: bool
    redemption_id: int
    status: str
    confirmed_at: datetime


class VoucherRejectOut(BaseModel):
    redemption_id: int
    status: str
    rejection_reason: str | None
