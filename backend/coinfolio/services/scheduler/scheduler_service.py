"""
Background jobs: periodic price refresh and expired session cleanup, run by APScheduler.
"""
import logging
from decimal import Decimal
from typing import Callable, Dict, Optional, Set

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from coinfolio.core.auth import cleanup_expired_sessions
from coinfolio.core.config import PRICE_REFRESH_INTERVAL_MINUTES, SESSION_CLEANUP_INTERVAL_MINUTES
from coinfolio.core.database import SessionLocal
from coinfolio.services.alerts import alerted_coin_ids, evaluate_alerts
from coinfolio.services.market_data.gateway import MarketDataGateway
from coinfolio.services.portfolio import held_coin_ids, refresh_all_holdings

logger = logging.getLogger(__name__)

REFRESH_PRICES_JOB_ID = "refresh_prices"
CLEANUP_SESSIONS_JOB_ID = "cleanup_sessions"

# Global scheduler instance
_scheduler: Optional[AsyncIOScheduler] = None


def get_scheduler() -> AsyncIOScheduler:
    """Get or create the global scheduler instance."""
    global _scheduler
    if _scheduler is None:
        _scheduler = AsyncIOScheduler(job_defaults={"coalesce": True, "max_instances": 1})
    return _scheduler


def _tracked_coin_ids(session_factory: Callable[[], Session]) -> Set[str]:
    db = session_factory()
    try:
        return held_coin_ids(db) | alerted_coin_ids(db)
    finally:
        db.close()


def _apply_fresh_prices(session_factory: Callable[[], Session], prices: Dict[str, Decimal]) -> int:
    db = session_factory()
    try:
        updated = refresh_all_holdings(db, prices)
        evaluate_alerts(db, prices)
        return updated
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


async def refresh_prices(gateway: MarketDataGateway,
                         session_factory: Callable[[], Session] = SessionLocal) -> int:
    """
    Fetch current prices for every held or alerted coin, write them back to
    holdings and evaluate price alerts.

    Returns:
        Number of holdings updated
    """
    coin_ids = await run_in_threadpool(_tracked_coin_ids, session_factory)
    if not coin_ids:
        logger.debug("No tracked coins, skipping price refresh")
        return 0

    prices = await gateway.get_current_prices(coin_ids)
    return await run_in_threadpool(_apply_fresh_prices, session_factory, prices)


def cleanup_sessions(session_factory: Callable[[], Session] = SessionLocal) -> int:
    """Delete expired session rows."""
    db = session_factory()
    try:
        deleted = cleanup_expired_sessions(db)
        if deleted:
            logger.info(f"Cleaned up {deleted} expired session(s)")
        return deleted
    finally:
        db.close()


def start_scheduler(gateway: MarketDataGateway):
    """Register the background jobs and start the scheduler."""
    scheduler = get_scheduler()
    if scheduler.running:
        logger.debug("Scheduler already running")
        return

    scheduler.add_job(
        refresh_prices,
        trigger=IntervalTrigger(minutes=PRICE_REFRESH_INTERVAL_MINUTES),
        args=[gateway],
        id=REFRESH_PRICES_JOB_ID,
        name="Refresh holding prices and evaluate alerts",
        replace_existing=True,
    )
    scheduler.add_job(
        cleanup_sessions,
        trigger=IntervalTrigger(minutes=SESSION_CLEANUP_INTERVAL_MINUTES),
        id=CLEANUP_SESSIONS_JOB_ID,
        name="Delete expired sessions",
        replace_existing=True,
    )
    scheduler.start()
    logger.info(
        f"Scheduler started (prices every {PRICE_REFRESH_INTERVAL_MINUTES}m, "
        f"session cleanup every {SESSION_CLEANUP_INTERVAL_MINUTES}m)"
    )


def stop_scheduler():
    """Stop the scheduler."""
    global _scheduler
    if _scheduler and _scheduler.running:
        _scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
    _scheduler = None
