from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_db
from app.core.deps import require_consumer
from app.core.errors import PromotionsError
from app.models.user import User
from app.schemas.vouchers import VoucherTokenOut, VoucherTokenRequest
from app.services.vouchers import generate_voucher_token

router = APIRouter(prefix="/vouchers", tags=["Vouchers"])


@router.post("/token", response_model=VoucherTokenOut, status_code=status.HTTP_201_CREATED)
async def request_token(
    body: VoucherTokenRequest,
    db: AsyncSession = Depends(get_db),
    consumer: User = Depends(require_consumer),
):
    try:
        return await generate_voucher_token(
            db,
            consumer_id=int(consumer.id),
            promotion_id=body.promotion_id,
            store_id=body.store_id,
            product_id=body.product_id,
        )
    except PromotionsError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
