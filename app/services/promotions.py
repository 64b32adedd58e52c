# app/services/promotions.py
from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import distinct, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import NotFoundError, OwnershipError, TierLimitError, ValidationError
from app.models.promotion import Promotion, PromotionProduct
from app.models.store import Product, Store
from app.models.user import User
from app.schemas.promotions import PromotionCreate
from app.services.deals import DEAL_FIELDS, DealError, DealType, Voucher, deal_config_from_promotion, validate_deal
from app.services.notifications import NotificationDispatcher, notify_promotion_created, notify_questionable_pricing
from app.services.pricing_checks import review_deal_pricing
from app.services.tier_policy import check_limits, merged_product_ids

logger = logging.getLogger(__name__)

PROMOTION_FIELDS = (
    "id",
    "title",
    "description",
    "deal_type",
    "starts_at",
    "ends_at",
    "active",
    *DEAL_FIELDS,
    "voucher_quantity",
    "created_by_user_id",
    "created_at",
)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _aware(dt: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; everything is stored as UTC
    if dt is not None and dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def serialize_promotion(promotion: Promotion, product_ids: list[int]) -> dict:
    out = {name: getattr(promotion, name) for name in PROMOTION_FIELDS}
    out["starts_at"] = _aware(promotion.starts_at)
    out["ends_at"] = _aware(promotion.ends_at)
    out["product_ids"] = [int(x) for x in product_ids]
    return out


def is_promotion_live(promotion: Promotion, now: datetime) -> bool:
    if not promotion.active:
        return False
    if _aware(promotion.starts_at) > now:
        return False
    ends_at = _aware(promotion.ends_at)
    return ends_at is None or ends_at >= now


def _deal_error(err: DealError) -> ValidationError:
    return ValidationError(err.message, code=err.code, field=err.field)


async def _get_merchant(db: AsyncSession, merchant_id: int) -> User:
    merchant = await db.get(User, merchant_id)
    if merchant is None:
        raise NotFoundError("User not found")
    return merchant


async def _load_owned_products(db: AsyncSession, merchant_id: int, product_ids: list[int]) -> list[Product]:
    """Products in request order, each verified to sit in one of the merchant's stores."""
    res = await db.execute(
        select(Product, Store.owner_id).join(Store, Store.id == Product.store_id).where(Product.id.in_(product_ids))
    )
    rows = {int(p.id): (p, owner_id) for p, owner_id in res.all()}

    missing = [pid for pid in product_ids if pid not in rows]
    if missing:
        raise NotFoundError("One or more products not found")

    if any(int(owner_id) != int(merchant_id) for _, owner_id in rows.values()):
        raise OwnershipError("You can only create promotions for products in your own stores")

    return [rows[pid][0] for pid in product_ids]


async def _promotion_product_ids(db: AsyncSession, promotion_id: int) -> list[int]:
    res = await db.execute(
        select(PromotionProduct.product_id)
        .where(PromotionProduct.promotion_id == promotion_id)
        .order_by(PromotionProduct.id.asc())
    )
    return [int(x) for x in res.scalars().all()]


async def _promotion_owner_ids(db: AsyncSession, promotion_id: int) -> set[int]:
    res = await db.execute(
        select(Store.owner_id)
        .select_from(PromotionProduct)
        .join(Product, Product.id == PromotionProduct.product_id)
        .join(Store, Store.id == Product.store_id)
        .where(PromotionProduct.promotion_id == promotion_id)
        .distinct()
    )
    return {int(x) for x in res.scalars().all()}


async def _get_owned_promotion(db: AsyncSession, merchant_id: int, promotion_id: int) -> Promotion:
    promotion = await db.get(Promotion, promotion_id, populate_existing=True)
    if promotion is None:
        raise NotFoundError("Promotion not found")

    owners = await _promotion_owner_ids(db, promotion_id)
    if owners != {int(merchant_id)}:
        raise OwnershipError("You can only manage promotions for products in your own stores")
    return promotion


async def count_active_promotions(db: AsyncSession, merchant_id: int, now: datetime | None = None) -> int:
    """
    Active promotions of a merchant that have not ended, resolved through
    products -> stores -> owner. Scheduled promotions (future starts_at) count.
    """
    now = now or _now_utc()
    res = await db.execute(
        select(func.count(distinct(Promotion.id)))
        .select_from(Promotion)
        .join(PromotionProduct, PromotionProduct.promotion_id == Promotion.id)
        .join(Product, Product.id == PromotionProduct.product_id)
        .join(Store, Store.id == Product.store_id)
        .where(
            Store.owner_id == merchant_id,
            Promotion.active.is_(True),
            or_(Promotion.ends_at.is_(None), Promotion.ends_at >= now),
        )
    )
    return int(res.scalar_one() or 0)


def _raise_for_tier(tier: str, *, active_promotions: int | None, product_count: int) -> None:
    hit = check_limits(tier, active_promotions=active_promotions, product_count=product_count)
    if hit is not None:
        raise TierLimitError(hit.message, limit=hit.limit)


async def _escalate_pricing(
    db: AsyncSession,
    notifier: NotificationDispatcher,
    promotion: Promotion,
    products: list[Product],
) -> None:
    reasons = review_deal_pricing(deal_config_from_promotion(promotion), [float(p.price) for p in products])
    if not reasons:
        return
    logger.warning("Questionable pricing on promotion=%s: %s", promotion.id, "; ".join(reasons))
    await notify_questionable_pricing(db, notifier, promotion_id=int(promotion.id), title=promotion.title, reasons=reasons)


async def create_promotion(
    db: AsyncSession,
    *,
    merchant_id: int,
    data: PromotionCreate,
    notifier: NotificationDispatcher,
) -> dict:
    """
    Create a promotion for products in the merchant's own stores.

    Order of checks: deal fields, window, ownership, tier limits. Pricing
    review and the bookmark fan-out run after the commit and never fail the
    call.
    """
    product_ids = merged_product_ids([], data.product_ids)

    result = validate_deal(data.deal_type, data.model_dump(include=set(DEAL_FIELDS)), product_ids)
    if isinstance(result, DealError):
        raise _deal_error(result)
    config = result

    if data.voucher_quantity is not None and not isinstance(config, Voucher):
        raise ValidationError(
            f"voucher_quantity is not allowed for {config.deal_type.value} deal type",
            code="unexpected_field",
            field="voucher_quantity",
        )

    starts_at = _aware(data.starts_at) or _now_utc()
    ends_at = _aware(data.ends_at)
    if ends_at is not None and ends_at <= starts_at:
        raise ValidationError("ends_at must be after starts_at", code="invalid_window", field="ends_at")

    merchant = await _get_merchant(db, merchant_id)
    products = await _load_owned_products(db, merchant_id, product_ids)

    active_count = await count_active_promotions(db, merchant_id) if data.active else None
    _raise_for_tier(merchant.subscription_tier, active_promotions=active_count, product_count=len(product_ids))

    promotion = Promotion(
        title=data.title,
        description=data.description,
        starts_at=starts_at,
        ends_at=ends_at,
        active=data.active,
        voucher_quantity=data.voucher_quantity,
        created_by_user_id=merchant_id,
        **config.columns(),
    )

    try:
        db.add(promotion)
        await db.flush()
        for pid in product_ids:
            db.add(PromotionProduct(promotion_id=promotion.id, product_id=pid))
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        raise ValidationError("Promotion could not be saved", code="constraint_violation") from e

    await db.refresh(promotion)
    logger.info(
        "Promotion created id=%s merchant=%s deal=%s products=%d",
        promotion.id,
        merchant_id,
        promotion.deal_type,
        len(product_ids),
    )

    await _escalate_pricing(db, notifier, promotion, products)
    await notify_promotion_created(
        db,
        notifier,
        promotion_id=int(promotion.id),
        title=promotion.title,
        description=promotion.description,
        product_ids=product_ids,
    )

    return serialize_promotion(promotion, product_ids)


async def add_products_to_promotion(
    db: AsyncSession,
    *,
    merchant_id: int,
    promotion_id: int,
    product_ids: list[int],
    notifier: NotificationDispatcher,
) -> dict:
    merchant = await _get_merchant(db, merchant_id)
    promotion = await _get_owned_promotion(db, merchant_id, promotion_id)

    existing = await _promotion_product_ids(db, promotion_id)
    merged = merged_product_ids(existing, product_ids)
    new_ids = merged[len(existing):]

    # Re-adding ids already on the promotion is a no-op
    if not new_ids:
        return serialize_promotion(promotion, existing)

    await _load_owned_products(db, merchant_id, new_ids)
    _raise_for_tier(merchant.subscription_tier, active_promotions=None, product_count=len(merged))

    try:
        for pid in new_ids:
            db.add(PromotionProduct(promotion_id=promotion.id, product_id=pid))
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        raise ValidationError("Products could not be added", code="constraint_violation") from e

    await db.refresh(promotion)
    logger.info("Added %d products to promotion=%s (total=%d)", len(new_ids), promotion_id, len(merged))

    # Review the deal against every product it now covers
    res = await db.execute(select(Product).where(Product.id.in_(merged)))
    await _escalate_pricing(db, notifier, promotion, list(res.scalars().all()))
    await notify_promotion_created(
        db,
        notifier,
        promotion_id=int(promotion.id),
        title=promotion.title,
        description=promotion.description,
        product_ids=new_ids,
    )

    return serialize_promotion(promotion, merged)


async def set_promotion_active(
    db: AsyncSession,
    *,
    merchant_id: int,
    promotion_id: int,
    active: bool,
) -> dict:
    merchant = await _get_merchant(db, merchant_id)
    promotion = await _get_owned_promotion(db, merchant_id, promotion_id)
    product_ids = await _promotion_product_ids(db, promotion_id)

    if active and not promotion.active:
        active_count = await count_active_promotions(db, merchant_id)
        _raise_for_tier(merchant.subscription_tier, active_promotions=active_count, product_count=len(product_ids))

    promotion.active = active
    await db.commit()
    await db.refresh(promotion)

    logger.info("Promotion id=%s active=%s by merchant=%s", promotion_id, active, merchant_id)
    return serialize_promotion(promotion, product_ids)


async def get_promotion(db: AsyncSession, *, promotion_id: int) -> dict:
    promotion = await db.get(Promotion, promotion_id, populate_existing=True)
    if promotion is None:
        raise NotFoundError("Promotion not found")
    return serialize_promotion(promotion, await _promotion_product_ids(db, promotion_id))


async def list_merchant_promotions(
    db: AsyncSession,
    *,
    merchant_id: int,
    active_only: bool = False,
    limit: int = 50,
    offset: int = 0,
) -> list[dict]:
    owned = (
        select(PromotionProduct.promotion_id)
        .join(Product, Product.id == PromotionProduct.product_id)
        .join(Store, Store.id == Product.store_id)
        .where(Store.owner_id == merchant_id)
    )
    stmt = select(Promotion).where(Promotion.id.in_(owned))
    if active_only:
        stmt = stmt.where(Promotion.active.is_(True))
    stmt = stmt.order_by(Promotion.id.desc()).limit(limit).offset(offset)

    res = await db.execute(stmt)
    promotions = list(res.scalars().all())
    return [serialize_promotion(p, await _promotion_product_ids(db, int(p.id))) for p in promotions]


async def list_active_promotions(
    db: AsyncSession,
    *,
    deal_type: DealType | None = None,
    now: datetime | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[dict]:
    now = now or _now_utc()
    stmt = select(Promotion).where(
        Promotion.active.is_(True),
        Promotion.starts_at <= now,
        or_(Promotion.ends_at.is_(None), Promotion.ends_at >= now),
    )
    if deal_type is not None:
        stmt = stmt.where(Promotion.deal_type == deal_type.value)
    stmt = stmt.order_by(Promotion.id.asc()).limit(limit).offset(offset)

    res = await db.execute(stmt)
    promotions = list(res.scalars().all())
    return [serialize_promotion(p, await _promotion_product_ids(db, int(p.id))) for p in promotions]


async def deactivate_ended_promotions(db: AsyncSession, *, now: datetime | None = None) -> int:
    now = now or _now_utc()
    res = await db.execute(
        update(Promotion)
        .where(Promotion.active.is_(True), Promotion.ends_at.is_not(None), Promotion.ends_at < now)
        .values(active=False)
        .execution_options(synchronize_session=False)
    )
    await db.commit()

    count = int(res.rowcount or 0)
    if count:
        logger.info("Deactivated %d ended promotions", count)
    return count
