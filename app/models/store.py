# app/models/store.py
from __future__ import annotations

from sqlalchemy import BigInteger, Boolean, Column, DateTime, Float, ForeignKey, Text, func, true

from app.core.db import Base, BigIntPK


class Store(Base):
    __tablename__ = "stores"

    id = Column(BigIntPK, primary_key=True)
    owner_id = Column(BigInteger, ForeignKey("users.id"), nullable=False, index=True)
    name = Column(Text, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True, server_default=true())

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Product(Base):
    __tablename__ = "products"

    id = Column(BigIntPK, primary_key=True)
    store_id = Column(BigInteger, ForeignKey("stores.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(Text, nullable=False)
    price = Column(Float, nullable=False)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
