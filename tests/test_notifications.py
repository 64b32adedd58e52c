import logging

from sqlalchemy import select

from app.models.notification import Notification
from app.services.notifications import PROMOTION_CREATED, NotificationDispatcher


async def test_dispatch_persists_notifications(db, world, session_factory):
    dispatcher = NotificationDispatcher(session_factory)

    dispatcher.dispatch(
        [world.consumer.id, world.rival.id, world.consumer.id],
        PROMOTION_CREATED,
        "New promotion: Spring Sale",
        "Fresh deals",
        {"promotion_id": 7},
    )
    await dispatcher.drain()

    rows = (await db.execute(select(Notification).order_by(Notification.user_id))).scalars().all()
    assert [r.user_id for r in rows] == sorted([world.consumer.id, world.rival.id])
    assert all(r.kind == PROMOTION_CREATED and r.promotion_id == 7 for r in rows)
    assert all(r.is_read is False for r in rows)


async def test_dispatch_without_targets_is_noop(session_factory):
    dispatcher = NotificationDispatcher(session_factory)
    dispatcher.dispatch([], PROMOTION_CREATED, "t", "m")
    await dispatcher.drain()


async def test_delivery_failure_is_logged_not_raised(session_factory, caplog):
    class Broken(NotificationDispatcher):
        async def deliver(self, *args, **kwargs):
            raise RuntimeError("smtp down")

    dispatcher = Broken(session_factory)
    with caplog.at_level(logging.ERROR, logger="app.services.notifications"):
        dispatcher.dispatch([1], PROMOTION_CREATED, "t", "m")
        await dispatcher.drain()

    assert "Notification delivery failed" in caplog.text
