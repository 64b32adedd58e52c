from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# IMPORTANT:
# This imports ALL models so SQLAlchemy registers tables + FKs correctly
import app.models  # noqa: F401

from app.core.config import settings
from app.core.logging import configure_logging
from app.services.notifications import dispatcher

# Routers
from app.routers.auth import router as auth_router
from app.routers.promotions import router as promotions_router
from app.routers.merchant_promotions import router as merchant_promotions_router
from app.routers.vouchers import router as vouchers_router
from app.routers.merchant_vouchers import router as merchant_vouchers_router
from app.routers.admin_maintenance import router as admin_maintenance_router

configure_logging("promotions-engine")


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # Let scheduled notifications finish before the loop goes away
    await dispatcher.drain()


app = FastAPI(title="Promotions Engine", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Auth
app.include_router(auth_router)

# Promotions
app.include_router(promotions_router)
app.include_router(merchant_promotions_router)

# Vouchers
app.include_router(vouchers_router)
app.include_router(merchant_vouchers_router)

# Maintenance
app.include_router(admin_maintenance_router)
