# app/services/pricing_checks.py
"""
Heuristics that flag a price or discount for manual review.

Nothing here blocks a promotion. A questionable result only makes the
promotion service escalate to administrators.
"""
from __future__ import annotations

from typing import Sequence

from app.services.deals import Bogo, Bundle, DealConfig, FixedDiscount, PercentageDiscount, QuantityDiscount, Voucher

MIN_PRICE = 0.01
MAX_PRICE = 1_000_000
MAX_DISCOUNT_PERCENT = 90
DISCOUNT_TOLERANCE_POINTS = 5


def is_questionable_product_price(price: float) -> bool:
    return price < MIN_PRICE or price > MAX_PRICE


def is_questionable_discount(
    discount_percent: float,
    original_price: float | None = None,
    discounted_price: float | None = None,
) -> bool:
    if discount_percent > MAX_DISCOUNT_PERCENT or discount_percent < 0:
        return True

    if original_price is not None and discounted_price is not None:
        if original_price <= 0:
            return True

        actual = (original_price - discounted_price) / original_price * 100
        if abs(actual - discount_percent) > DISCOUNT_TOLERANCE_POINTS:
            return True

        if discounted_price < MIN_PRICE:
            return True

    return False


def _unit_discount(config: DealConfig, price: float) -> tuple[float, float | None, float | None] | None:
    """(discount %, original, discounted) for a single-product deal, or None if undefined."""
    if isinstance(config, PercentageDiscount):
        pct = config.percentage_off
        return pct, price, price * (1 - pct / 100)
    if isinstance(config, QuantityDiscount):
        pct = config.quantity_discount
        return pct, price, price * (1 - pct / 100)
    if isinstance(config, Bogo):
        pct = config.get_quantity / (config.buy_quantity + config.get_quantity) * 100
        return pct, None, None
    if price <= 0:
        return None
    if isinstance(config, FixedDiscount):
        discounted = price - config.fixed_amount_off
        return (price - discounted) / price * 100, price, discounted
    if isinstance(config, Voucher):
        discounted = price - config.voucher_value
        return (price - discounted) / price * 100, price, discounted
    return None


def review_deal_pricing(config: DealConfig, prices: Sequence[float]) -> list[str]:
    """Reasons the deal looks wrong over the given product prices; empty if it looks fine."""
    reasons: list[str] = []

    for price in prices:
        if is_questionable_product_price(price):
            reasons.append(f"product price {price:.2f} is outside the expected range")

    if isinstance(config, Bundle):
        total = sum(prices)
        if total > 0:
            pct = (total - config.bundle_price) / total * 100
            if is_questionable_discount(pct, total, config.bundle_price):
                reasons.append(
                    f"bundle price {config.bundle_price:.2f} against list total {total:.2f} ({pct:.1f}% off)"
                )
        return reasons

    for price in prices:
        unit = _unit_discount(config, price)
        if unit is None:
            continue
        pct, original, discounted = unit
        if is_questionable_discount(pct, original, discounted):
            reasons.append(f"{config.deal_type.value} gives {pct:.1f}% off a {price:.2f} product")

    return reasons
