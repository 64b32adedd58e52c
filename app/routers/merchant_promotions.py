from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_db
from app.core.deps import require_merchant
from app.core.errors import PromotionsError
from app.models.user import User
from app.schemas.promotions import PromotionAddProducts, PromotionCreate, PromotionOut, PromotionStatusUpdate
from app.services.notifications import dispatcher
from app.services.promotions import (
    add_products_to_promotion,
    create_promotion,
    list_merchant_promotions,
    set_promotion_active,
)

router = APIRouter(prefix="/merchant/promotions", tags=["Merchant - Promotions"])


@router.post("", response_model=PromotionOut, status_code=status.HTTP_201_CREATED)
async def create(
    body: PromotionCreate,
    db: AsyncSession = Depends(get_db),
    merchant: User = Depends(require_merchant),
):
    try:
        return await create_promotion(db, merchant_id=int(merchant.id), data=body, notifier=dispatcher)
    except PromotionsError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))


@router.post("/{promotion_id}/products", response_model=PromotionOut)
async def add_products(
    promotion_id: int,
    body: PromotionAddProducts,
    db: AsyncSession = Depends(get_db),
    merchant: User = Depends(require_merchant),
):
    try:
        return await add_products_to_promotion(
            db,
            merchant_id=int(merchant.id),
            promotion_id=promotion_id,
            product_ids=body.product_ids,
            notifier=dispatcher,
        )
    except PromotionsError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))


@router.patch("/{promotion_id}/status", response_model=PromotionOut)
async def update_status(
    promotion_id: int,
    body: PromotionStatusUpdate,
    db: AsyncSession = Depends(get_db),
    merchant: User = Depends(require_merchant),
):
    try:
        return await set_promotion_active(
            db, merchant_id=int(merchant.id), promotion_id=promotion_id, active=body.active
        )
    except PromotionsError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))


@router.get("", response_model=list[PromotionOut])
async def list_promotions(
    active_only: bool = Query(default=False),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_db),
    merchant: User = Depends(require_merchant),
):
    return await list_merchant_promotions(
        db,
        merchant_id=int(merchant.id),
        active_only=active_only,
        limit=int(limit),
        offset=int(offset),
    )
