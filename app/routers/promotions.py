from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_db
from app.core.errors import PromotionsError
from app.schemas.promotions import PromotionOut
from app.services.deals import parse_deal_type
from app.services.promotions import get_promotion, list_active_promotions

router = APIRouter(prefix="/promotions", tags=["Promotions"])


@router.get("/active", response_model=list[PromotionOut])
async def active_promotions(
    deal_type: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_db),
):
    dt = None
    if deal_type:
        dt = parse_deal_type(deal_type)
        if dt is None:
            raise HTTPException(status_code=400, detail="Invalid deal type specified")
    return await list_active_promotions(db, deal_type=dt, limit=int(limit), offset=int(offset))


@router.get("/{promotion_id}", response_model=PromotionOut)
async def promotion_detail(promotion_id: int, db: AsyncSession = Depends(get_db)):
    try:
        return await get_promotion(db, promotion_id=promotion_id)
    except PromotionsError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
