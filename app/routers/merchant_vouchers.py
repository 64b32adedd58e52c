from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_db
from app.core.deps import require_merchant
from app.core.errors import PromotionsError
from app.models.user import User
from app.schemas.vouchers import (
    VoucherConfirmOut,
    VoucherDetailsOut,
    VoucherRejectIn,
    VoucherRejectOut,
    VoucherTokenIn,
)
from app.services.vouchers import confirm_voucher_redemption, reject_voucher_redemption, verify_voucher_token

router = APIRouter(prefix="/merchant/vouchers", tags=["Merchant - Vouchers"])


@router.post("/verify", response_model=VoucherDetailsOut)
async def verify(
    body: VoucherTokenIn,
    db: AsyncSession = Depends(get_db),
    merchant: User = Depends(require_merchant),
):
    try:
        return await verify_voucher_token(db, token=body.token, merchant_id=int(merchant.id))
    except PromotionsError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))


@router.post("/confirm", response_model=VoucherConfirmOut)
async def confirm(
    body: VoucherTokenIn,
    db: AsyncSession = Depends(get_db),
    merchant: User = Depends(require_merchant),
):
    try:
        return await confirm_voucher_redemption(db, token=body.token, merchant_id=int(merchant.id))
    except PromotionsError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))


@router.post("/reject", response_model=VoucherRejectOut)
async def reject(
    body: VoucherRejectIn,
    db: AsyncSession = Depends(get_db),
    merchant: User = Depends(require_merchant),
):
    try:
        return await reject_voucher_redemption(
            db, token=body.token, merchant_id=int(merchant.id), reason=body.reason
        )
    except PromotionsError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
