# app/services/tier_policy.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from app.core.config import settings

BASIC = "BASIC"
PRO = "PRO"

PROMOTION_COUNT = "promotion_count"
PRODUCTS_PER_PROMOTION = "products_per_promotion"


@dataclass(frozen=True)
class TierLimits:
    # None = unbounded
    max_active_promotions: int | None
    max_products_per_promotion: int | None


@dataclass(frozen=True)
class TierLimit:
    limit: str
    maximum: int
    message: str


def limits_for_tier(tier: str | None) -> TierLimits:
    if (tier or BASIC).upper() == PRO:
        return TierLimits(max_active_promotions=None, max_products_per_promotion=None)
    return TierLimits(
        max_active_promotions=settings.BASIC_MAX_ACTIVE_PROMOTIONS,
        max_products_per_promotion=settings.BASIC_MAX_PRODUCTS_PER_PROMOTION,
    )


def check_limits(
    tier: str | None,
    *,
    active_promotions: int | None,
    product_count: int,
) -> TierLimit | None:
    """
    Return the first limit the request would break, or None.

    `active_promotions` is the merchant's current active promotion count when
    a new promotion is being created; pass None when only products are added.
    `product_count` is the distinct product total the promotion would hold.
    """
    limits = limits_for_tier(tier)

    if (
        active_promotions is not None
        and limits.max_active_promotions is not None
        and active_promotions >= limits.max_active_promotions
    ):
        return TierLimit(
            limit=PROMOTION_COUNT,
            maximum=limits.max_active_promotions,
            message=(
                f"BASIC tier allows a maximum of {limits.max_active_promotions} promotions. "
                "Upgrade to PRO for unlimited promotions."
            ),
        )

    if limits.max_products_per_promotion is not None and product_count > limits.max_products_per_promotion:
        return TierLimit(
            limit=PRODUCTS_PER_PROMOTION,
            maximum=limits.max_products_per_promotion,
            message=(
                f"BASIC tier allows a maximum of {limits.max_products_per_promotion} products per promotion. "
                "Upgrade to PRO for unlimited products per promotion."
            ),
        )

    return None


def merged_product_ids(existing: Iterable[int], requested: Iterable[int]) -> list[int]:
    """Distinct union, existing ids first; ids already present are not counted twice."""
    out: list[int] = []
    seen: set[int] = set()
    for pid in list(existing) + list(requested):
        pid = int(pid)
        if pid not in seen:
            seen.add(pid)
            out.append(pid)
    return out
