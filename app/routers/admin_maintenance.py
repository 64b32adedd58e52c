from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_db
from app.core.deps import require_admin
from app.models.user import User
from app.schemas.maintenance import SweepOut
from app.services.promotions import deactivate_ended_promotions
from app.services.vouchers import expire_stale_vouchers

router = APIRouter(prefix="/admin/maintenance", tags=["Admin - Maintenance"])


@router.post("/sweep", response_model=SweepOut)
async def sweep(
    db: AsyncSession = Depends(get_db),
    admin_user: User = Depends(require_admin),
):
    expired = await expire_stale_vouchers(db)
    deactivated = await deactivate_ended_promotions(db)
    return SweepOut(expired_vouchers=expired, deactivated_promotions=deactivated)
