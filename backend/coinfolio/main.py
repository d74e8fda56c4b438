"""
FastAPI application entry point.
"""
import logging

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from coinfolio.api import alerts, auth, coins, health, portfolio, settings
from coinfolio.core.config import get_settings
from coinfolio.core.database import init_db
from coinfolio.core.errors import register_exception_handlers
from coinfolio.core.logging_config import setup_logging
from coinfolio.core.rate_limit import api_rate_limit
from coinfolio.core.security import warn_if_default_secret
from coinfolio.services.market_data import close_market_data_gateway, get_market_data_gateway
from coinfolio.services.scheduler import start_scheduler, stop_scheduler

logger = logging.getLogger(__name__)

app_settings = get_settings()

app = FastAPI(
    title=app_settings.app_title,
    description="Crypto portfolio tracking API",
    version=app_settings.app_version,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=app_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

# Include routers
rate_limited = [Depends(api_rate_limit)]
app.include_router(health.router, prefix="/api", tags=["health"], dependencies=rate_limited)
app.include_router(auth.router, prefix="/api/auth", tags=["auth"], dependencies=rate_limited)
app.include_router(portfolio.router, prefix="/api/portfolio", tags=["portfolio"], dependencies=rate_limited)
app.include_router(coins.router, prefix="/api/coins", tags=["coins"], dependencies=rate_limited)
app.include_router(alerts.router, prefix="/api/alerts", tags=["alerts"], dependencies=rate_limited)
app.include_router(settings.router, prefix="/api/settings", tags=["settings"], dependencies=rate_limited)


@app.on_event("startup")
async def startup_event():
    """Initialize services on startup."""
    setup_logging(app_settings.log_level)
    warn_if_default_secret()
    init_db()

    if app_settings.enable_scheduler:
        start_scheduler(get_market_data_gateway())
    else:
        logger.info("Scheduler disabled")
    logger.info(f"{app_settings.app_title} {app_settings.app_version} started")


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup on shutdown."""
    stop_scheduler()
    await close_market_data_gateway()
