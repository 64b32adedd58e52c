# app/services/notifications.py
"""
Fire-and-forget notification delivery.

`dispatch` schedules delivery on the running event loop and returns at once.
Delivery failures are logged and dropped, and pending deliveries are lost if
the process dies.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models.notification import Notification, ProductBookmark, StoreBookmark
from app.models.store import Product
from app.models.user import User

logger = logging.getLogger(__name__)

PROMOTION_CREATED = "PROMOTION_CREATED"
QUESTIONABLE_PRICING = "QUESTIONABLE_PRICING"


class NotificationDispatcher:
    def __init__(self, session_factory: async_sessionmaker | None = None):
        self._session_factory = session_factory
        self._tasks: set[asyncio.Task] = set()

    def _sessions(self) -> async_sessionmaker:
        if self._session_factory is None:
            from app.core.db import SessionLocal

            self._session_factory = SessionLocal
        return self._session_factory

    def dispatch(
        self,
        target_user_ids: Iterable[int],
        kind: str,
        title: str,
        message: str,
        related: dict | None = None,
    ) -> None:
        user_ids = sorted({int(u) for u in target_user_ids})
        if not user_ids:
            return

        task = asyncio.get_running_loop().create_task(
            self._deliver(user_ids, kind, title, message, related or {})
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _deliver(self, user_ids: list[int], kind: str, title: str, message: str, related: dict) -> None:
        try:
            await self.deliver(user_ids, kind, title, message, related)
        except Exception:
            logger.exception("Notification delivery failed kind=%s targets=%d", kind, len(user_ids))

    async def deliver(self, user_ids: list[int], kind: str, title: str, message: str, related: dict) -> None:
        async with self._sessions()() as db:
            for uid in user_ids:
                db.add(
                    Notification(
                        user_id=uid,
                        kind=kind,
                        title=title,
                        message=message,
                        promotion_id=related.get("promotion_id"),
                        product_id=related.get("product_id"),
                        store_id=related.get("store_id"),
                    )
                )
            await db.commit()
        logger.info("Delivered %s notification to %d users", kind, len(user_ids))

    async def drain(self) -> None:
        """Wait for in-flight deliveries (shutdown and tests)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


dispatcher = NotificationDispatcher()


async def _admin_ids(db: AsyncSession) -> list[int]:
    res = await db.execute(select(User.id).where(User.role == "admin", User.is_active.is_(True)))
    return [int(x) for x in res.scalars().all()]


async def _bookmarker_ids(db: AsyncSession, product_ids: list[int]) -> list[int]:
    res_p = await db.execute(select(ProductBookmark.user_id).where(ProductBookmark.product_id.in_(product_ids)))
    store_ids = select(Product.store_id).where(Product.id.in_(product_ids))
    res_s = await db.execute(select(StoreBookmark.user_id).where(StoreBookmark.store_id.in_(store_ids)))
    return sorted({int(x) for x in res_p.scalars().all()} | {int(x) for x in res_s.scalars().all()})


async def notify_questionable_pricing(
    db: AsyncSession,
    notifier: NotificationDispatcher,
    *,
    promotion_id: int,
    title: str,
    reasons: list[str],
) -> None:
    """Escalate a promotion to every admin. Lookup failures are logged, never raised."""
    try:
        admin_ids = await _admin_ids(db)
        if not admin_ids:
            logger.warning("No admins to review pricing on promotion=%s", promotion_id)
            return
        notifier.dispatch(
            admin_ids,
            QUESTIONABLE_PRICING,
            f"Pricing review: {title}",
            "; ".join(reasons),
            {"promotion_id": promotion_id},
        )
    except Exception:
        logger.exception("Could not schedule pricing escalation for promotion=%s", promotion_id)


async def notify_promotion_created(
    db: AsyncSession,
    notifier: NotificationDispatcher,
    *,
    promotion_id: int,
    title: str,
    description: str,
    product_ids: list[int],
) -> None:
    """Tell users who bookmarked an affected product or its store."""
    try:
        user_ids = await _bookmarker_ids(db, product_ids)
        if not user_ids:
            return
        notifier.dispatch(
            user_ids,
            PROMOTION_CREATED,
            f"New promotion: {title}",
            description,
            {"promotion_id": promotion_id, "product_id": product_ids[0] if len(product_ids) == 1 else None},
        )
    except Exception:
        logger.exception("Could not schedule promotion-created fan-out for promotion=%s", promotion_id)
