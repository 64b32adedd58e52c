# app/services/deals.py
"""
Deal configuration variants and their validator.

A promotion carries exactly one deal. Each variant is its own frozen
dataclass holding only the fields that variant needs, so a config can never
mix fields from two deal types once constructed. `validate_deal` is the
single entry point that turns untrusted input into one of those variants.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, fields as dc_fields
from enum import Enum
from typing import Any, ClassVar, Mapping, Sequence, Union


class DealType(str, Enum):
    PERCENTAGE_DISCOUNT = "PERCENTAGE_DISCOUNT"
    FIXED_DISCOUNT = "FIXED_DISCOUNT"
    BOGO = "BOGO"
    BUNDLE = "BUNDLE"
    QUANTITY_DISCOUNT = "QUANTITY_DISCOUNT"
    VOUCHER = "VOUCHER"


# Every deal column a promotion row can carry
DEAL_FIELDS = (
    "percentage_off",
    "fixed_amount_off",
    "buy_quantity",
    "get_quantity",
    "bundle_price",
    "min_quantity",
    "quantity_discount",
    "voucher_value",
)


class _Deal:
    deal_type: ClassVar[DealType]

    def columns(self) -> dict[str, Any]:
        """Persistence mapping: own fields set, every other deal column NULL."""
        out: dict[str, Any] = {name: None for name in DEAL_FIELDS}
        for f in dc_fields(self):
            out[f.name] = getattr(self, f.name)
        out["deal_type"] = self.deal_type.value
        return out


@dataclass(frozen=True)
class PercentageDiscount(_Deal):
    deal_type: ClassVar[DealType] = DealType.PERCENTAGE_DISCOUNT
    percentage_off: float


@dataclass(frozen=True)
class FixedDiscount(_Deal):
    deal_type: ClassVar[DealType] = DealType.FIXED_DISCOUNT
    fixed_amount_off: float


@dataclass(frozen=True)
class Bogo(_Deal):
    deal_type: ClassVar[DealType] = DealType.BOGO
    buy_quantity: int
    get_quantity: int


@dataclass(frozen=True)
class Bundle(_Deal):
    deal_type: ClassVar[DealType] = DealType.BUNDLE
    bundle_price: float


@dataclass(frozen=True)
class QuantityDiscount(_Deal):
    deal_type: ClassVar[DealType] = DealType.QUANTITY_DISCOUNT
    min_quantity: int
    quantity_discount: float


@dataclass(frozen=True)
class Voucher(_Deal):
    deal_type: ClassVar[DealType] = DealType.VOUCHER
    voucher_value: float


DealConfig = Union[PercentageDiscount, FixedDiscount, Bogo, Bundle, QuantityDiscount, Voucher]

VARIANTS: dict[DealType, type] = {
    DealType.PERCENTAGE_DISCOUNT: PercentageDiscount,
    DealType.FIXED_DISCOUNT: FixedDiscount,
    DealType.BOGO: Bogo,
    DealType.BUNDLE: Bundle,
    DealType.QUANTITY_DISCOUNT: QuantityDiscount,
    DealType.VOUCHER: Voucher,
}

BUNDLE_MIN_PRODUCTS = 2

# Stable error codes
INVALID_DEAL_TYPE = "invalid_deal_type"
MISSING_FIELD = "missing_field"
INVALID_TYPE = "invalid_type"
OUT_OF_RANGE = "out_of_range"
UNEXPECTED_FIELD = "unexpected_field"
INSUFFICIENT_PRODUCTS = "insufficient_products"


@dataclass(frozen=True)
class DealError:
    code: str
    message: str
    field: str | None = None


def _missing(deal_type: DealType, name: str) -> DealError:
    return DealError(MISSING_FIELD, f"{name} is required for {deal_type.value} deal type", name)


def _number(
    deal_type: DealType, values: Mapping[str, Any], name: str, *, integer: bool = False
) -> float | int | DealError:
    value = values.get(name)
    if value is None:
        return _missing(deal_type, name)
    # bool is an int subclass but never a valid amount
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return DealError(INVALID_TYPE, f"{name} must be a number", name)
    if not math.isfinite(value):
        return DealError(INVALID_TYPE, f"{name} must be a finite number", name)
    if integer:
        if isinstance(value, float) and not value.is_integer():
            return DealError(INVALID_TYPE, f"{name} must be a whole number", name)
        return int(value)
    return value


def _validate_percentage(values: Mapping[str, Any], product_ids) -> DealConfig | DealError:
    pct = _number(DealType.PERCENTAGE_DISCOUNT, values, "percentage_off")
    if isinstance(pct, DealError):
        return pct
    if not 0 < pct <= 100:
        return DealError(
            OUT_OF_RANGE, "percentage_off must be greater than 0 and less than or equal to 100", "percentage_off"
        )
    return PercentageDiscount(percentage_off=pct)


def _validate_fixed(values: Mapping[str, Any], product_ids) -> DealConfig | DealError:
    amount = _number(DealType.FIXED_DISCOUNT, values, "fixed_amount_off")
    if isinstance(amount, DealError):
        return amount
    if amount <= 0:
        return DealError(OUT_OF_RANGE, "fixed_amount_off must be greater than 0", "fixed_amount_off")
    return FixedDiscount(fixed_amount_off=amount)


def _validate_bogo(values: Mapping[str, Any], product_ids) -> DealConfig | DealError:
    buy = _number(DealType.BOGO, values, "buy_quantity", integer=True)
    if isinstance(buy, DealError):
        return buy
    get = _number(DealType.BOGO, values, "get_quantity", integer=True)
    if isinstance(get, DealError):
        return get
    if buy <= 0:
        return DealError(OUT_OF_RANGE, "buy_quantity must be greater than 0", "buy_quantity")
    if get <= 0:
        return DealError(OUT_OF_RANGE, "get_quantity must be greater than 0", "get_quantity")
    return Bogo(buy_quantity=buy, get_quantity=get)


def _validate_bundle(values: Mapping[str, Any], product_ids) -> DealConfig | DealError:
    price = _number(DealType.BUNDLE, values, "bundle_price")
    if isinstance(price, DealError):
        return price
    if price <= 0:
        return DealError(OUT_OF_RANGE, "bundle_price must be greater than 0", "bundle_price")
    if product_ids is not None:
        try:
            distinct = len(set(product_ids))
        except TypeError:
            return DealError(INVALID_TYPE, "product_ids must be a list of ids", "product_ids")
        if distinct < BUNDLE_MIN_PRODUCTS:
            return DealError(INSUFFICIENT_PRODUCTS, "Bundle deal must include at least 2 products", "product_ids")
    return Bundle(bundle_price=price)


def _validate_quantity(values: Mapping[str, Any], product_ids) -> DealConfig | DealError:
    min_qty = _number(DealType.QUANTITY_DISCOUNT, values, "min_quantity", integer=True)
    if isinstance(min_qty, DealError):
        return min_qty
    discount = _number(DealType.QUANTITY_DISCOUNT, values, "quantity_discount")
    if isinstance(discount, DealError):
        return discount
    if min_qty <= 1:
        return DealError(
            OUT_OF_RANGE, "min_quantity must be greater than 1 for quantity-based discounts", "min_quantity"
        )
    if not 0 < discount <= 100:
        return DealError(
            OUT_OF_RANGE,
            "quantity_discount must be greater than 0 and less than or equal to 100",
            "quantity_discount",
        )
    return QuantityDiscount(min_quantity=min_qty, quantity_discount=discount)


def _validate_voucher(values: Mapping[str, Any], product_ids) -> DealConfig | DealError:
    value = _number(DealType.VOUCHER, values, "voucher_value")
    if isinstance(value, DealError):
        return value
    if value <= 0:
        return DealError(OUT_OF_RANGE, "voucher_value must be greater than 0", "voucher_value")
    return Voucher(voucher_value=value)


_VALIDATORS = {
    DealType.PERCENTAGE_DISCOUNT: _validate_percentage,
    DealType.FIXED_DISCOUNT: _validate_fixed,
    DealType.BOGO: _validate_bogo,
    DealType.BUNDLE: _validate_bundle,
    DealType.QUANTITY_DISCOUNT: _validate_quantity,
    DealType.VOUCHER: _validate_voucher,
}


def parse_deal_type(value: Any) -> DealType | None:
    if isinstance(value, DealType):
        return value
    if not isinstance(value, str):
        return None
    try:
        return DealType(value.strip().upper())
    except ValueError:
        return None


def validate_deal(
    deal_type: Any,
    values: Any,
    product_ids: Sequence[int] | None = None,
) -> DealConfig | DealError:
    """
    Check a proposed deal and build its variant.

    Returns the variant on success, or a DealError describing the first
    problem found. Never raises: malformed input is reported as a DealError.
    `product_ids` is only consulted for BUNDLE (at least two distinct ids);
    pass None to skip that check.
    """
    dt = parse_deal_type(deal_type)
    if dt is None:
        return DealError(INVALID_DEAL_TYPE, "Invalid deal type specified", "deal_type")

    if not isinstance(values, Mapping):
        return DealError(INVALID_TYPE, "Deal fields must be an object", None)

    own = {f.name for f in dc_fields(VARIANTS[dt])}
    for name in DEAL_FIELDS:
        if name not in own and values.get(name) is not None:
            return DealError(UNEXPECTED_FIELD, f"{name} is not allowed for {dt.value} deal type", name)

    return _VALIDATORS[dt](values, product_ids)


def deal_config_from_promotion(promotion) -> DealConfig:
    """Rebuild the stored variant of a promotion row."""
    cls = VARIANTS[DealType(promotion.deal_type)]
    return cls(**{f.name: getattr(promotion, f.name) for f in dc_fields(cls)})
