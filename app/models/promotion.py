# app/models/promotion.py
from __future__ import annotations

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    Text,
    UniqueConstraint,
    func,
    true,
)

from app.core.db import Base, BigIntPK


class Promotion(Base):
    __tablename__ = "promotions"
    __table_args__ = (
        CheckConstraint(
            "deal_type IN ('PERCENTAGE_DISCOUNT','FIXED_DISCOUNT','BOGO','BUNDLE','QUANTITY_DISCOUNT','VOUCHER')",
            name="promotions_deal_type_check",
        ),
        CheckConstraint("ends_at IS NULL OR ends_at > starts_at", name="promotions_window_check"),
        CheckConstraint("voucher_quantity IS NULL OR voucher_quantity > 0", name="promotions_voucher_quantity_check"),
        CheckConstraint("vouchers_issued >= 0", name="promotions_vouchers_issued_check"),
    )

    id = Column(BigIntPK, primary_key=True)

    title = Column(Text, nullable=False)
    description = Column(Text, nullable=False, default="")

    starts_at = Column(DateTime(timezone=True), nullable=False)
    ends_at = Column(DateTime(timezone=True), nullable=True)
    active = Column(Boolean, nullable=False, default=True, server_default=true())

    deal_type = Column(Text, nullable=False)

    # Exactly the columns of deal_type are populated, the rest stay NULL
    percentage_off = Column(Float, nullable=True)
    fixed_amount_off = Column(Float, nullable=True)
    buy_quantity = Column(Integer, nullable=True)
    get_quantity = Column(Integer, nullable=True)
    bundle_price = Column(Float, nullable=True)
    min_quantity = Column(Integer, nullable=True)
    quantity_discount = Column(Float, nullable=True)
    voucher_value = Column(Float, nullable=True)

    # NULL = unlimited; VOUCHER only
    voucher_quantity = Column(Integer, nullable=True)
    # Redemptions currently holding a unit (PENDING, VERIFIED, CONFIRMED)
    vouchers_issued = Column(Integer, nullable=False, default=0, server_default="0")

    created_by_user_id = Column(BigInteger, ForeignKey("users.id"), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=func.now())


class PromotionProduct(Base):
    __tablename__ = "promotion_products"
    __table_args__ = (
        UniqueConstraint("promotion_id", "product_id", name="promotion_products_pair_key"),
    )

    id = Column(BigIntPK, primary_key=True)
    promotion_id = Column(BigInteger, ForeignKey("promotions.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(BigInteger, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
