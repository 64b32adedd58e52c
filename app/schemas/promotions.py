# app/schemas/promotions.py
from __future__ import annotations

from datetime import datetime
from pydantic import BaseModel, Field

Amount = int | float


class PromotionCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: str = ""
    deal_type: str

    starts_at: datetime | None = None  # defaults to now
    ends_at: datetime | None = None  # open-ended when omitted
    active: bool = True

    # Deal fields: only those of deal_type may be set
    percentage_off: Amount | None = None
    fixed_amount_off: Amount | None = None
    buy_quantity: Amount | None = None
    get_quantity: Amount | None = None
    bundle_price: Amount | None = None
    min_quantity: Amount | None = None
    quantity_discount: Amount | None = None
    voucher_value: Amount | None = None

    voucher_quantity: int | None = Field(default=None, ge=1)

    product_ids: list[int] = Field(..., min_length=1)


class PromotionAddProducts(BaseModel):
    product_ids: list[int] = Field(..., min_length=1)


class PromotionStatusUpdate(BaseModel):
    active: bool


class PromotionOut(BaseModel):
    id: int
    title: str
    description: str
    deal_type: str

    starts_at: datetime
    ends_at: datetime | None
    active: bool

    percentage_off: float | None
    fixed_amount_off: float | None
    buy_quantity: int | None
    get_quantity: int | None
    bundle_price: float | None
    min_quantity: int | None
    quantity_discount: float | None
    voucher_value: float | None
    voucher_quantity: int | None

    product_ids: list[int]
    created_by_user_id: int | None
    created_at: datetime | None
