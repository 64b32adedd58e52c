# app/models/notification.py
from __future__ import annotations

from sqlalchemy import BigInteger, Boolean, Column, DateTime, ForeignKey, Text, UniqueConstraint, false, func

from app.core.db import Base, BigIntPK


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(BigIntPK, primary_key=True)
    user_id = Column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    kind = Column(Text, nullable=False)  # e.g. PROMOTION_CREATED, QUESTIONABLE_PRICING
    title = Column(Text, nullable=False)
    message = Column(Text, nullable=False)

    promotion_id = Column(BigInteger, nullable=True)
    product_id = Column(BigInteger, nullable=True)
    store_id = Column(BigInteger, nullable=True)

    is_read = Column(Boolean, nullable=False, default=False, server_default=false())
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class ProductBookmark(Base):
    __tablename__ = "product_bookmarks"
    __table_args__ = (UniqueConstraint("user_id", "product_id", name="product_bookmarks_pair_key"),)

    id = Column(BigIntPK, primary_key=True)
    user_id = Column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(BigInteger, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)


class StoreBookmark(Base):
    __tablename__ = "store_bookmarks"
    __table_args__ = (UniqueConstraint("user_id", "store_id", name="store_bookmarks_pair_key"),)

    id = Column(BigIntPK, primary_key=True)
    user_id = Column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    store_id = Column(BigInteger, ForeignKey("stores.id", ondelete="CASCADE"), nullable=False, index=True)
