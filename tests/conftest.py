"""
Shared fixtures.

Every test gets a fresh SQLite file database (aiosqlite) with all tables
created, plus a small marketplace: an admin, a BASIC merchant with a store
and twelve products, a PRO merchant, a rival merchant and a consumer.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test_promotions.db")
os.environ.setdefault("JWT_SECRET", "test-secret")

from dataclasses import dataclass, field

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import app.models  # noqa: F401
from app.core.db import Base
from app.models.store import Product, Store
from app.models.user import User
from app.schemas.promotions import PromotionCreate


class RecordingNotifier:
    """Stands in for NotificationDispatcher and keeps every dispatch."""

    def __init__(self):
        self.calls = []

    def dispatch(self, target_user_ids, kind, title, message, related=None):
        self.calls.append(
            {
                "targets": sorted(target_user_ids),
                "kind": kind,
                "title": title,
                "message": message,
                "related": related or {},
            }
        )

    def kinds(self):
        return [c["kind"] for c in self.calls]


@dataclass
class World:
    admin: User
    merchant: User
    pro_merchant: User
    rival: User
    consumer: User
    store: Store
    pro_store: Store
    rival_store: Store
    products: list = field(default_factory=list)
    pro_products: list = field(default_factory=list)
    rival_product: Product | None = None


@pytest.fixture
async def engine(tmp_path):
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def notifier():
    return RecordingNotifier()


def _user(username, role, tier="BASIC", full_name=None):
    return User(
        username=username,
        password_hash="not-a-real-hash",
        role=role,
        subscription_tier=tier,
        full_name=full_name,
    )


@pytest.fixture
async def world(db) -> World:
    admin = _user("admin", "admin")
    merchant = _user("basic-shop", "merchant", "BASIC", "Basic Shop")
    pro_merchant = _user("pro-shop", "merchant", "PRO", "Pro Shop")
    rival = _user("rival-shop", "merchant", "BASIC")
    consumer = _user("jane", "consumer", full_name="Jane Doe")
    db.add_all([admin, merchant, pro_merchant, rival, consumer])
    await db.flush()

    store = Store(owner_id=merchant.id, name="Corner Store")
    pro_store = Store(owner_id=pro_merchant.id, name="Mega Mart")
    rival_store = Store(owner_id=rival.id, name="Across the Street")
    db.add_all([store, pro_store, rival_store])
    await db.flush()

    products = [Product(store_id=store.id, name=f"Item {i}", price=10.0 + i) for i in range(12)]
    pro_products = [Product(store_id=pro_store.id, name=f"Pro item {i}", price=20.0) for i in range(12)]
    rival_product = Product(store_id=rival_store.id, name="Rival item", price=15.0)
    db.add_all(products + pro_products + [rival_product])
    await db.commit()

    return World(
        admin=admin,
        merchant=merchant,
        pro_merchant=pro_merchant,
        rival=rival,
        consumer=consumer,
        store=store,
        pro_store=pro_store,
        rival_store=rival_store,
        products=products,
        pro_products=pro_products,
        rival_product=rival_product,
    )


def promotion_payload(product_ids, deal_type="PERCENTAGE_DISCOUNT", **fields):
    if deal_type == "PERCENTAGE_DISCOUNT" and not fields:
        fields = {"percentage_off": 20}
    return PromotionCreate(
        title="Spring Sale",
        description="Fresh deals",
        deal_type=deal_type,
        product_ids=list(product_ids),
        **fields,
    )


@pytest.fixture
def make_payload():
    return promotion_payload
