import asyncio
from datetime import datetime, timedelta, timezone

import jwt
import pytest
from sqlalchemy import func, select

from app.core.config import settings
from app.core.errors import ExpiredError, NotFoundError, OwnershipError, StateError, TokenError, ValidationError
from app.core.security import create_access_token, decode_token
from app.models.voucher import VoucherEvent, VoucherRedemption
from app.services.promotions import create_promotion, set_promotion_active
from app.services.vouchers import (
    confirm_voucher_redemption,
    expire_stale_vouchers,
    generate_voucher_token,
    reject_voucher_redemption,
    verify_voucher_token,
)


@pytest.fixture
async def voucher(db, world, notifier, make_payload):
    return await create_promotion(
        db,
        merchant_id=world.merchant.id,
        data=make_payload([world.products[0].id, world.products[1].id], "VOUCHER", voucher_value=5),
        notifier=notifier,
    )


async def issue(db, world, promotion, product=None):
    product = product or world.products[0]
    return await generate_voucher_token(
        db,
        consumer_id=world.consumer.id,
        promotion_id=promotion["id"],
        store_id=world.store.id,
        product_id=product.id,
    )


async def status_of(session_factory, redemption_id):
    async with session_factory() as s:
        return (await s.get(VoucherRedemption, redemption_id)).status


def after_expiry():
    return datetime.now(timezone.utc) + timedelta(minutes=settings.VOUCHER_TOKEN_MINUTES, seconds=5)


async def test_generate_issues_pending_redemption(db, world, voucher, session_factory):
    out = await issue(db, world, voucher)

    summary = out["summary"]
    assert summary["status"] == "PENDING"
    assert summary["consumer_name"] == "Jane Doe"
    assert summary["promotion_id"] == voucher["id"]
    assert summary["product_id"] == world.products[0].id
    assert summary["voucher_value"] == 5
    assert summary["expires_at"] - summary["issued_at"] == timedelta(minutes=settings.VOUCHER_TOKEN_MINUTES)

    assert await status_of(session_factory, summary["redemption_id"]) == "PENDING"


async def test_token_is_signed_and_bound(db, world, voucher):
    out = await issue(db, world, voucher)
    claims = jwt.decode(
        out["token"],
        settings.JWT_SECRET,
        algorithms=[settings.JWT_ALG],
        audience=settings.VOUCHER_TOKEN_AUDIENCE,
    )
    assert claims["type"] == "voucher"
    assert claims["rid"] == out["summary"]["redemption_id"]
    assert claims["sid"] == world.store.id
    assert claims["prd"] == world.products[0].id
    assert claims["sub"] == str(world.consumer.id)
    assert claims["nonce"]


async def test_generate_preconditions(db, world, notifier, make_payload, voucher):
    percent = await create_promotion(
        db, merchant_id=world.merchant.id, data=make_payload([world.products[2].id]), notifier=notifier
    )
    with pytest.raises(ValidationError):
        await issue(db, world, percent, world.products[2])

    with pytest.raises(NotFoundError):
        await issue(db, world, {"id": 999_999})

    # product not in the promotion
    with pytest.raises(NotFoundError):
        await issue(db, world, voucher, world.products[5])

    with pytest.raises(ValidationError):
        await generate_voucher_token(
            db,
            consumer_id=world.consumer.id,
            promotion_id=voucher["id"],
            store_id=world.rival_store.id,
            product_id=world.products[0].id,
        )

    await set_promotion_active(db, merchant_id=world.merchant.id, promotion_id=voucher["id"], active=False)
    with pytest.raises(StateError):
        await issue(db, world, voucher)


async def test_voucher_quantity_runs_out(db, world, notifier, make_payload):
    limited = await create_promotion(
        db,
        merchant_id=world.merchant.id,
        data=make_payload([world.products[3].id], "VOUCHER", voucher_value=2, voucher_quantity=2),
        notifier=notifier,
    )
    await issue(db, world, limited, world.products[3])
    await issue(db, world, limited, world.products[3])
    with pytest.raises(StateError):
        await issue(db, world, limited, world.products[3])


async def test_full_lifecycle(db, world, voucher, session_factory):
    out = await issue(db, world, voucher)
    token = out["token"]
    rid = out["summary"]["redemption_id"]

    details = await verify_voucher_token(db, token=token, merchant_id=world.merchant.id)
    assert details["status"] == "VERIFIED"
    assert details["consumer_id"] == world.consumer.id
    assert details["store_id"] == world.store.id
    assert details["voucher_value"] == 5
    assert details["subscription_tier"] == "BASIC"
    assert await status_of(session_factory, rid) == "VERIFIED"

    # verifying again changes nothing
    again = await verify_voucher_token(db, token=token, merchant_id=world.merchant.id)
    assert again["status"] == "VERIFIED"
    assert again["verified_at"] == details["verified_at"]

    confirmed = await confirm_voucher_redemption(db, token=token, merchant_id=world.merchant.id)
    assert confirmed["confirmed"] is True
    assert await status_of(session_factory, rid) == "CONFIRMED"

    with pytest.raises(StateError) as exc:
        await confirm_voucher_redemption(db, token=token, merchant_id=world.merchant.id)
    assert str(exc.value) == "Voucher already confirmed"
    assert exc.value.current == "CONFIRMED"
    assert await status_of(session_factory, rid) == "CONFIRMED"

    events = (
        await db.execute(
            select(VoucherEvent.event_type).where(VoucherEvent.redemption_id == rid).order_by(VoucherEvent.id)
        )
    ).scalars().all()
    assert events == ["issued", "verified", "confirmed"]

    with pytest.raises(StateError):
        await verify_voucher_token(db, token=token, merchant_id=world.merchant.id)


async def test_confirm_before_verify(db, world, voucher, session_factory):
    out = await issue(db, world, voucher)
    with pytest.raises(StateError) as exc:
        await confirm_voucher_redemption(db, token=out["token"])
    assert str(exc.value) == "Voucher not yet verified"
    assert await status_of(session_factory, out["summary"]["redemption_id"]) == "PENDING"


async def test_expired_token(db, world, voucher, session_factory):
    out = await issue(db, world, voucher)
    rid = out["summary"]["redemption_id"]

    with pytest.raises(ExpiredError):
        await verify_voucher_token(db, token=out["token"], now=after_expiry())
    assert await status_of(session_factory, rid) == "EXPIRED"

    with pytest.raises(StateError):
        await confirm_voucher_redemption(db, token=out["token"])

    with pytest.raises(ExpiredError):
        await verify_voucher_token(db, token=out["token"])


async def test_tampered_token(db, world, voucher, session_factory):
    out = await issue(db, world, voucher)
    header, payload, signature = out["token"].split(".")
    i = len(payload) // 2
    swapped = "A" if payload[i] != "A" else "B"
    tampered = ".".join([header, payload[:i] + swapped + payload[i + 1:], signature])

    with pytest.raises(TokenError):
        await verify_voucher_token(db, token=tampered)
    with pytest.raises(TokenError):
        await confirm_voucher_redemption(db, token=tampered)

    assert await status_of(session_factory, out["summary"]["redemption_id"]) == "PENDING"


async def test_forged_claims(db, world, voucher):
    out = await issue(db, world, voucher)
    claims = jwt.decode(
        out["token"],
        settings.JWT_SECRET,
        algorithms=[settings.JWT_ALG],
        audience=settings.VOUCHER_TOKEN_AUDIENCE,
    )

    # right structure, wrong key
    forged = jwt.encode({**claims, "prd": world.products[1].id}, "guessed-secret", algorithm="HS256")
    with pytest.raises(TokenError):
        await verify_voucher_token(db, token=forged)

    # right key, claims no longer match the row
    rebound = jwt.encode({**claims, "prd": world.products[1].id}, settings.JWT_SECRET, algorithm=settings.JWT_ALG)
    with pytest.raises(TokenError):
        await verify_voucher_token(db, token=rebound)

    with pytest.raises(TokenError):
        await verify_voucher_token(db, token="not-a-token")


async def test_session_and_voucher_tokens_do_not_mix(db, world, voucher):
    access = create_access_token(user_id=world.consumer.id, role="consumer")
    with pytest.raises(TokenError):
        await verify_voucher_token(db, token=access)

    out = await issue(db, world, voucher)
    with pytest.raises(TokenError):
        decode_token(out["token"])


async def test_other_merchant_cannot_redeem(db, world, voucher, session_factory):
    out = await issue(db, world, voucher)
    with pytest.raises(OwnershipError):
        await verify_voucher_token(db, token=out["token"], merchant_id=world.rival.id)
    assert await status_of(session_factory, out["summary"]["redemption_id"]) == "PENDING"


async def test_reject_verified_voucher(db, world, voucher, session_factory):
    out = await issue(db, world, voucher)
    with pytest.raises(StateError):
        await reject_voucher_redemption(db, token=out["token"], merchant_id=world.merchant.id)

    await verify_voucher_token(db, token=out["token"], merchant_id=world.merchant.id)
    rejected = await reject_voucher_redemption(
        db, token=out["token"], merchant_id=world.merchant.id, reason="ID did not match"
    )
    assert rejected["status"] == "REJECTED"
    assert rejected["rejection_reason"] == "ID did not match"

    with pytest.raises(StateError) as exc:
        await confirm_voucher_redemption(db, token=out["token"], merchant_id=world.merchant.id)
    assert exc.value.current == "REJECTED"


async def test_concurrent_confirmations(db, world, voucher, session_factory):
    out = await issue(db, world, voucher)
    await verify_voucher_token(db, token=out["token"], merchant_id=world.merchant.id)

    async def attempt():
        async with session_factory() as s:
            return await confirm_voucher_redemption(s, token=out["token"], merchant_id=world.merchant.id)

    results = await asyncio.gather(attempt(), attempt(), return_exceptions=True)

    successes = [r for r in results if isinstance(r, dict)]
    failures = [r for r in results if isinstance(r, StateError)]
    assert len(successes) == 1
    assert len(failures) == 1
    assert successes[0]["confirmed"] is True

    rid = out["summary"]["redemption_id"]
    assert await status_of(session_factory, rid) == "CONFIRMED"
    confirmed_events = (
        await db.execute(
            select(func.count(VoucherEvent.id)).where(
                VoucherEvent.redemption_id == rid, VoucherEvent.event_type == "confirmed"
            )
        )
    ).scalar_one()
    assert confirmed_events == 1


async def test_sweep_expires_stale_pending(db, world, voucher, session_factory):
    stale = await issue(db, world, voucher)
    verified = await issue(db, world, voucher, world.products[1])
    await verify_voucher_token(db, token=verified["token"])

    assert await expire_stale_vouchers(db, now=after_expiry()) == 1
    assert await status_of(session_factory, stale["summary"]["redemption_id"]) == "EXPIRED"
    # verified vouchers are not swept
    assert await status_of(session_factory, verified["summary"]["redemption_id"]) == "VERIFIED"
    assert await expire_stale_vouchers(db, now=after_expiry()) == 0


async def test_concurrent_issues_respect_quantity(db, world, notifier, make_payload, session_factory):
    limited = await create_promotion(
        db,
        merchant_id=world.merchant.id,
        data=make_payload([world.products[4].id], "VOUCHER", voucher_value=2, voucher_quantity=1),
        notifier=notifier,
    )

    async def attempt():
        async with session_factory() as s:
            return await issue(s, world, limited, world.products[4])

    results = await asyncio.gather(*(attempt() for _ in range(5)), return_exceptions=True)

    assert len([r for r in results if isinstance(r, dict)]) == 1
    assert len([r for r in results if isinstance(r, StateError)]) == 4

    issued = (
        await db.execute(
            select(func.count(VoucherRedemption.id)).where(VoucherRedemption.promotion_id == limited["id"])
        )
    ).scalar_one()
    assert issued == 1


async def test_rejected_and_expired_vouchers_free_their_unit(db, world, notifier, make_payload):
    limited = await create_promotion(
        db,
        merchant_id=world.merchant.id,
        data=make_payload([world.products[4].id], "VOUCHER", voucher_value=2, voucher_quantity=1),
        notifier=notifier,
    )

    first = await issue(db, world, limited, world.products[4])
    with pytest.raises(StateError):
        await issue(db, world, limited, world.products[4])

    await verify_voucher_token(db, token=first["token"], merchant_id=world.merchant.id)
    await reject_voucher_redemption(db, token=first["token"], merchant_id=world.merchant.id)

    second = await issue(db, world, limited, world.products[4])
    assert await expire_stale_vouchers(db, now=after_expiry()) == 1

    third = await issue(db, world, limited, world.products[4])
    assert third["summary"]["redemption_id"] != second["summary"]["redemption_id"]
    with pytest.raises(StateError):
        await issue(db, world, limited, world.products[4])
