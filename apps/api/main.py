"""
Restaurant Loyalty API - FastAPI Backend
Main application entry point: lifespan, middleware and API routing.
"""

import asyncio
import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from config import settings, validate_security_settings
from database import engine, Base
import models  # noqa: F401
from routers import (
    health,
    auth,
    client_balance,
    restaurant_packages,
    restaurant_groups,
    subscriptions,
    notifications,
    restaurant_info,
    account,
    admin_directory,
)
from routers.envelope import register_exception_handlers
from services.subscriptions import run_subscription_sweep_service

logger = logging.getLogger(__name__)


async def _run_subscription_sweep() -> None:
    try:
        result = await run_subscription_sweep_service()
        print(
            f"🧾 Subscription sweep: reminders={result.get('reminders', 0)} "
            f"expired={result.get('expired', 0)} restaurants={result.get('restaurants', 0)}"
        )
    except Exception as exc:
        logger.exception("Subscription sweep failed")
        print(f"⚠️ Subscription sweep failed: {exc}")


async def _periodic_subscription_sweep() -> None:
    interval_minutes = max(int(settings.SUBSCRIPTION_CHECK_INTERVAL_MINUTES), 0)
    if interval_minutes <= 0:
        return
    while True:
        await asyncio.sleep(interval_minutes * 60)
        await _run_subscription_sweep()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    # Startup
    print("🚀 Starting Restaurant Loyalty API...")
    validate_security_settings()
    if settings.AUTO_CREATE_DB_SCHEMA:
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            print("🗄️ Database schema verified.")
        except Exception as e:
            print(f"⚠️ Database bootstrap skipped: {e}")
    await _run_subscription_sweep()
    sweep_task = None
    if int(settings.SUBSCRIPTION_CHECK_INTERVAL_MINUTES) > 0:
        sweep_task = asyncio.create_task(_periodic_subscription_sweep())
        print(
            "📅 Subscription sweep loop enabled "
            f"(every {int(settings.SUBSCRIPTION_CHECK_INTERVAL_MINUTES)} min)."
        )
    yield
    # Shutdown
    if sweep_task is not None:
        sweep_task.cancel()
        try:
            await sweep_task
        except asyncio.CancelledError:
            pass
    print("👋 Shutting down API...")


app = FastAPI(
    title="Restaurant Loyalty API",
    description="Multi-tenant restaurant loyalty balances, stars, gifts and subscriptions",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(auth.router, prefix="/api/auth", tags=["Authentication"])
app.include_router(auth.admin_router, prefix="/api/admin/auth", tags=["Admin"])
app.include_router(client_balance.router, prefix="/api/client/balance", tags=["Client Balance"])
app.include_router(account.router, prefix="/api/client/account", tags=["Client Account"])
app.include_router(restaurant_packages.router, prefix="/api/restaurant", tags=["Restaurant"])
app.include_router(restaurant_info.router, prefix="/api/restaurant", tags=["Restaurant"])
app.include_router(restaurant_groups.router, prefix="/api/restaurant/groups", tags=["Restaurant Groups"])
app.include_router(
    subscriptions.restaurant_router,
    prefix="/api/restaurant/subscriptions",
    tags=["Restaurant Subscriptions"],
)
app.include_router(subscriptions.plans_router, prefix="/api/plans", tags=["Plans"])
app.include_router(subscriptions.admin_plans_router, prefix="/api/admin/plans", tags=["Admin"])
app.include_router(subscriptions.admin_subscriptions_router, prefix="/api/admin/subscriptions", tags=["Admin"])
app.include_router(admin_directory.router, prefix="/api/admin", tags=["Admin"])
app.include_router(notifications.router, prefix="/api/notifications", tags=["Notifications"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "success": True,
        "message": "Restaurant Loyalty API is running",
        "data": {"name": "Restaurant Loyalty API", "version": "0.1.0"},
    }
