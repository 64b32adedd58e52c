# app/models/__init__.py
# Import all models here so SQLAlchemy registers them into Base.metadata.

from app.models.user import User  # noqa: F401
from app.models.store import Product, Store  # noqa: F401

from app.models.promotion import Promotion, PromotionProduct  # noqa: F401
from app.models.voucher import VoucherEvent, VoucherRedemption  # noqa: F401

from app.models.notification import Notification, ProductBookmark, StoreBookmark  # noqa: F401
