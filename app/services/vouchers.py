# app/services/vouchers.py
"""
Voucher redemption lifecycle.

    PENDING --verify--> VERIFIED --confirm--> CONFIRMED
       |                   |
       +--(past expiry)--> EXPIRED
                           +--reject--> REJECTED

Every transition is a conditional UPDATE on the current status, so two
racing requests can never both move the same redemption.
"""
from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.errors import ExpiredError, NotFoundError, OwnershipError, StateError, TokenError, ValidationError
from app.core.security import create_voucher_token, decode_voucher_token
from app.models.promotion import Promotion, PromotionProduct
from app.models.store import Product, Store
from app.models.user import User
from app.models.voucher import VoucherEvent, VoucherRedemption
from app.services.deals import DealType
from app.services.promotions import is_promotion_live

logger = logging.getLogger(__name__)

PENDING = "PENDING"
VERIFIED = "VERIFIED"
CONFIRMED = "CONFIRMED"
EXPIRED = "EXPIRED"
REJECTED = "REJECTED"


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _aware(dt: datetime | None) -> datetime | None:
    if dt is not None and dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def _token_ttl() -> timedelta:
    return timedelta(minutes=settings.VOUCHER_TOKEN_MINUTES)


def _log_event(
    db: AsyncSession,
    *,
    redemption_id: int,
    actor_user_id: int | None,
    event_type: str,
    meta: dict | None = None,
) -> None:
    db.add(
        VoucherEvent(
            redemption_id=redemption_id,
            actor_user_id=actor_user_id,
            event_type=event_type,
            meta=meta or {},
        )
    )


async def _transition(
    db: AsyncSession,
    redemption_id: int,
    *,
    expected: str,
    target: str,
    **values,
) -> bool:
    """Compare-and-set the status; True if this call made the move."""
    res = await db.execute(
        update(VoucherRedemption)
        .where(VoucherRedemption.id == redemption_id, VoucherRedemption.status == expected)
        .values(status=target, **values)
        .execution_options(synchronize_session=False)
    )
    return res.rowcount == 1


async def _claim_unit(db: AsyncSession, promotion_id: int) -> bool:
    """Take one unit of a voucher promotion; False when a limited voucher is used up."""
    res = await db.execute(
        update(Promotion)
        .where(
            Promotion.id == promotion_id,
            or_(Promotion.voucher_quantity.is_(None), Promotion.vouchers_issued < Promotion.voucher_quantity),
        )
        .values(vouchers_issued=Promotion.vouchers_issued + 1)
        .execution_options(synchronize_session=False)
    )
    return res.rowcount == 1


async def _release_unit(db: AsyncSession, promotion_id: int) -> None:
    await db.execute(
        update(Promotion)
        .where(Promotion.id == promotion_id, Promotion.vouchers_issued > 0)
        .values(vouchers_issued=Promotion.vouchers_issued - 1)
        .execution_options(synchronize_session=False)
    )


def _state_error(redemption: VoucherRedemption, expected: str) -> StateError:
    current = redemption.status
    if current == CONFIRMED:
        message = "Voucher already confirmed"
    elif current == REJECTED:
        message = "Voucher was rejected"
    elif current == EXPIRED:
        message = "Voucher has expired"
    elif current == PENDING and expected == VERIFIED:
        message = "Voucher not yet verified"
    else:
        message = f"Voucher is {current}, expected {expected}"
    return StateError(message, current=current, expected=expected)


async def _redemption_from_token(db: AsyncSession, token: str) -> tuple[VoucherRedemption, dict]:
    claims = decode_voucher_token(token)

    try:
        redemption_id = int(claims["rid"])
    except (KeyError, TypeError, ValueError):
        raise TokenError("Malformed voucher token")

    redemption = await db.get(VoucherRedemption, redemption_id)
    if redemption is None:
        raise TokenError("Invalid voucher token")

    # The signed claims must describe this exact row
    try:
        bound = (
            int(claims["pid"]) == int(redemption.promotion_id)
            and int(claims["sid"]) == int(redemption.store_id)
            and int(claims["prd"]) == int(redemption.product_id)
            and int(claims["sub"]) == int(redemption.user_id)
            and claims["nonce"] == redemption.token_nonce
        )
    except (KeyError, TypeError, ValueError):
        raise TokenError("Malformed voucher token")
    if not bound:
        raise TokenError("Invalid voucher token")

    await db.refresh(redemption)
    return redemption, claims


async def _check_store_owner(db: AsyncSession, redemption: VoucherRedemption, merchant_id: int | None) -> None:
    if merchant_id is None:
        return
    owner_id = (await db.execute(select(Store.owner_id).where(Store.id == redemption.store_id))).scalar_one_or_none()
    if owner_id is None or int(owner_id) != int(merchant_id):
        raise OwnershipError("This voucher belongs to another store")


async def _summary(db: AsyncSession, redemption: VoucherRedemption) -> dict:
    res = await db.execute(
        select(User, Promotion, Store, Product)
        .select_from(VoucherRedemption)
        .join(User, User.id == VoucherRedemption.user_id)
        .join(Promotion, Promotion.id == VoucherRedemption.promotion_id)
        .join(Store, Store.id == VoucherRedemption.store_id)
        .join(Product, Product.id == VoucherRedemption.product_id)
        .where(VoucherRedemption.id == redemption.id)
    )
    consumer, promotion, store, product = res.one()

    return {
        "redemption_id": int(redemption.id),
        "status": redemption.status,
        "consumer_id": int(consumer.id),
        "consumer_name": consumer.display_name,
        "subscription_tier": consumer.subscription_tier,
        "promotion_id": int(promotion.id),
        "promotion_title": promotion.title,
        "voucher_value": float(promotion.voucher_value or 0),
        "store_id": int(store.id),
        "store_name": store.name,
        "product_id": int(product.id),
        "product_name": product.name,
        "issued_at": _aware(redemption.issued_at),
        "expires_at": _aware(redemption.expires_at),
        "verified_at": _aware(redemption.verified_at),
    }


async def generate_voucher_token(
    db: AsyncSession,
    *,
    consumer_id: int,
    promotion_id: int,
    store_id: int,
    product_id: int,
    now: datetime | None = None,
) -> dict:
    """Open a PENDING redemption and mint the signed token the consumer shows at the till."""
    now = now or _now_utc()

    consumer = await db.get(User, consumer_id)
    if consumer is None:
        raise NotFoundError("User not found")

    promotion = await db.get(Promotion, promotion_id, populate_existing=True)
    if promotion is None:
        raise NotFoundError("Promotion not found")
    if promotion.deal_type != DealType.VOUCHER.value:
        raise ValidationError("Promotion is not a voucher", code="invalid_deal_type", field="promotion_id")
    if not is_promotion_live(promotion, now):
        raise StateError("Promotion is not active", current="inactive", expected="active")

    res = await db.execute(
        select(Product)
        .join(PromotionProduct, PromotionProduct.product_id == Product.id)
        .where(PromotionProduct.promotion_id == promotion_id, Product.id == product_id)
    )
    product = res.scalar_one_or_none()
    if product is None:
        raise NotFoundError("Product is not part of this promotion")
    if int(product.store_id) != int(store_id):
        raise ValidationError("Product is not sold by this store", code="store_mismatch", field="store_id")

    nonce = secrets.token_urlsafe(16)
    # JWT timestamps are whole seconds; keep the row in step with the token
    issued_at = now.replace(microsecond=0)
    expires_at = issued_at + _token_ttl()

    try:
        # Conditional on the remaining quantity, so concurrent requests cannot oversell
        if not await _claim_unit(db, promotion_id):
            raise StateError("No vouchers left for this promotion", current="sold_out", expected="available")

        redemption = VoucherRedemption(
            promotion_id=promotion_id,
            store_id=store_id,
            product_id=product_id,
            user_id=consumer_id,
            status=PENDING,
            token_nonce=nonce,
            issued_at=issued_at,
            expires_at=expires_at,
        )
        db.add(redemption)
        await db.flush()

        token = create_voucher_token(
            {
                "rid": int(redemption.id),
                "pid": int(promotion_id),
                "sid": int(store_id),
                "prd": int(product_id),
                "sub": str(consumer_id),
                "nonce": nonce,
            },
            issued_at=issued_at,
            ttl=_token_ttl(),
        )

        _log_event(
            db,
            redemption_id=int(redemption.id),
            actor_user_id=consumer_id,
            event_type="issued",
            meta={"promotion_id": promotion_id, "store_id": store_id, "product_id": product_id},
        )
        await db.commit()

    except Exception:
        await db.rollback()
        raise

    logger.info("Voucher issued redemption=%s promotion=%s consumer=%s", redemption.id, promotion_id, consumer_id)

    summary = await _summary(db, redemption)
    summary.pop("subscription_tier")
    summary.pop("verified_at")
    return {"token": token, "summary": summary}


async def verify_voucher_token(
    db: AsyncSession,
    *,
    token: str,
    merchant_id: int | None = None,
    now: datetime | None = None,
) -> dict:
    """
    Check a presented token and move PENDING -> VERIFIED.

    Read-only from the voucher's point of view: nothing is consumed. A token
    that is already VERIFIED returns the same details again. A token past its
    expiry moves the redemption to EXPIRED and raises ExpiredError.
    """
    now = now or _now_utc()

    redemption, claims = await _redemption_from_token(db, token)
    await _check_store_owner(db, redemption, merchant_id)

    if redemption.status == VERIFIED:
        return await _summary(db, redemption)
    if redemption.status == EXPIRED:
        raise ExpiredError("Voucher has expired")
    if redemption.status != PENDING:
        raise _state_error(redemption, PENDING)

    if now.timestamp() >= int(claims["exp"]):
        try:
            if await _transition(db, redemption.id, expected=PENDING, target=EXPIRED, expired_at=now):
                await _release_unit(db, int(redemption.promotion_id))
                _log_event(db, redemption_id=int(redemption.id), actor_user_id=merchant_id, event_type="expired")
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        logger.info("Voucher expired at verification redemption=%s", redemption.id)
        raise ExpiredError("Voucher has expired")

    try:
        moved = await _transition(
            db,
            redemption.id,
            expected=PENDING,
            target=VERIFIED,
            verified_at=now,
            verified_by_user_id=merchant_id,
        )
        if moved:
            _log_event(db, redemption_id=int(redemption.id), actor_user_id=merchant_id, event_type="verified")
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    await db.refresh(redemption)
    if not moved and redemption.status != VERIFIED:
        # Lost a race against another transition
        raise _state_error(redemption, PENDING)

    logger.info("Voucher verified redemption=%s merchant=%s", redemption.id, merchant_id)
    return await _summary(db, redemption)


async def confirm_voucher_redemption(
    db: AsyncSession,
    *,
    token: str,
    merchant_id: int | None = None,
    now: datetime | None = None,
) -> dict:
    """VERIFIED -> CONFIRMED, exactly once. The voucher's value counts as delivered after this."""
    now = now or _now_utc()

    redemption, _ = await _redemption_from_token(db, token)
    await _check_store_owner(db, redemption, merchant_id)

    try:
        moved = await _transition(
            db,
            redemption.id,
            expected=VERIFIED,
            target=CONFIRMED,
            confirmed_at=now,
            confirmed_by_user_id=merchant_id,
        )
        if moved:
            _log_event(db, redemption_id=int(redemption.id), actor_user_id=merchant_id, event_type="confirmed")
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    await db.refresh(redemption)
    if not moved:
        logger.warning(
            "Voucher confirmation refused redemption=%s status=%s merchant=%s",
            redemption.id,
            redemption.status,
            merchant_id,
        )
        raise _state_error(redemption, VERIFIED)

    logger.info("Voucher confirmed redemption=%s merchant=%s", redemption.id, merchant_id)
    return {
        "confirmed": True,
        "redemption_id": int(redemption.id),
        "status": redemption.status,
        "confirmed_at": _aware(redemption.confirmed_at),
    }


async def reject_voucher_redemption(
    db: AsyncSession,
    *,
    token: str,
    merchant_id: int | None = None,
    reason: str | None = None,
    now: datetime | None = None,
) -> dict:
    """Merchant declines a verified voucher at the till: VERIFIED -> REJECTED."""
    now = now or _now_utc()

    redemption, _ = await _redemption_from_token(db, token)
    await _check_store_owner(db, redemption, merchant_id)

    try:
        moved = await _transition(
            db,
            redemption.id,
            expected=VERIFIED,
            target=REJECTED,
            rejected_at=now,
            rejection_reason=reason,
        )
        if moved:
            await _release_unit(db, int(redemption.promotion_id))
            _log_event(
                db,
                redemption_id=int(redemption.id),
                actor_user_id=merchant_id,
                event_type="rejected",
                meta={"reason": reason},
            )
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    await db.refresh(redemption)
    if not moved:
        raise _state_error(redemption, VERIFIED)

    logger.info("Voucher rejected redemption=%s merchant=%s", redemption.id, merchant_id)
    return {
        "redemption_id": int(redemption.id),
        "status": redemption.status,
        "rejection_reason": redemption.rejection_reason,
    }


async def expire_stale_vouchers(db: AsyncSession, *, now: datetime | None = None) -> int:
    """Sweep PENDING redemptions past their expiry to EXPIRED so reports stay consistent."""
    now = now or _now_utc()

    res = await db.execute(
        select(VoucherRedemption.id, VoucherRedemption.promotion_id).where(
            VoucherRedemption.status == PENDING,
            VoucherRedemption.expires_at <= now,
        )
    )
    stale = [(int(rid), int(pid)) for rid, pid in res.all()]

    count = 0
    try:
        for rid, promotion_id in stale:
            if await _transition(db, rid, expected=PENDING, target=EXPIRED, expired_at=now):
                await _release_unit(db, promotion_id)
                _log_event(db, redemption_id=rid, actor_user_id=None, event_type="expired", meta={"sweep": True})
                count += 1
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    if count:
        logger.info("Expired %d stale vouchers", count)
    return count
