# app/models/voucher.py
from __future__ import annotations

from sqlalchemy import JSON, BigInteger, CheckConstraint, Column, DateTime, ForeignKey, Text, func
from sqlalchemy.dialects.postgresql import JSONB

from app.core.db import Base, BigIntPK

REDEMPTION_STATUSES = ("PENDING", "VERIFIED", "CONFIRMED", "EXPIRED", "REJECTED")


class VoucherRedemption(Base):
    __tablename__ = "voucher_redemptions"
    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING','VERIFIED','CONFIRMED','EXPIRED','REJECTED')",
            name="voucher_redemptions_status_check",
        ),
    )

    id = Column(BigIntPK, primary_key=True)

    promotion_id = Column(BigInteger, ForeignKey("promotions.id", ondelete="CASCADE"), nullable=False, index=True)
    store_id = Column(BigInteger, ForeignKey("stores.id"), nullable=False, index=True)
    product_id = Column(BigInteger, ForeignKey("products.id"), nullable=False)
    user_id = Column(BigInteger, ForeignKey("users.id"), nullable=False, index=True)

    status = Column(Text, nullable=False, default="PENDING", index=True)
    token_nonce = Column(Text, nullable=False)

    issued_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)

    verified_at = Column(DateTime(timezone=True), nullable=True)
    verified_by_user_id = Column(BigInteger, ForeignKey("users.id"), nullable=True)

    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    confirmed_by_user_id = Column(BigInteger, ForeignKey("users.id"), nullable=True)

    rejected_at = Column(DateTime(timezone=True), nullable=True)
    rejection_reason = Column(Text, nullable=True)

    expired_at = Column(DateTime(timezone=True), nullable=True)


class VoucherEvent(Base):
    __tablename__ = "voucher_events"

    id = Column(BigIntPK, primary_key=True, index=True)
    redemption_id = Column(
        BigInteger, ForeignKey("voucher_redemptions.id", ondelete="CASCADE"), nullable=False, index=True
    )

    actor_user_id = Column(BigInteger, ForeignKey("users.id"), nullable=True)

    event_type = Column(Text, nullable=False)  # issued, verified, confirmed, expired, rejected
    meta = Column(JSON().with_variant(JSONB, "postgresql"), nullable=False, default=dict)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
