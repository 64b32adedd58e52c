from app.services.tier_policy import (
    PRODUCTS_PER_PROMOTION,
    PROMOTION_COUNT,
    check_limits,
    limits_for_tier,
    merged_product_ids,
)


def test_basic_limits():
    limits = limits_for_tier("BASIC")
    assert limits.max_active_promotions == 5
    assert limits.max_products_per_promotion == 10


def test_pro_is_unbounded():
    limits = limits_for_tier("PRO")
    assert limits.max_active_promotions is None
    assert limits.max_products_per_promotion is None
    assert check_limits("PRO", active_promotions=500, product_count=500) is None


def test_missing_tier_treated_as_basic():
    assert check_limits(None, active_promotions=5, product_count=1).limit == PROMOTION_COUNT


def test_basic_promotion_count():
    assert check_limits("BASIC", active_promotions=4, product_count=1) is None
    hit = check_limits("BASIC", active_promotions=5, product_count=1)
    assert hit.limit == PROMOTION_COUNT
    assert "5 promotions" in hit.message


def test_basic_products_per_promotion():
    assert check_limits("BASIC", active_promotions=0, product_count=10) is None
    hit = check_limits("BASIC", active_promotions=0, product_count=11)
    assert hit.limit == PRODUCTS_PER_PROMOTION
    assert hit.maximum == 10


def test_add_products_skips_promotion_count():
    assert check_limits("BASIC", active_promotions=None, product_count=10) is None


def test_merged_ids_dedupe():
    assert merged_product_ids([1, 2, 3], [3, 4, 4, 2, 5]) == [1, 2, 3, 4, 5]
    assert merged_product_ids([], [9, 9]) == [9]
