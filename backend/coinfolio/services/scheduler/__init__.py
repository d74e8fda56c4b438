"""
Scheduler service for periodic background jobs.
"""
from coinfolio.services.scheduler.scheduler_service import (
    get_scheduler,
    start_scheduler,
    stop_scheduler,
    refresh_prices,
    cleanup_sessions,
)

__all__ = [
    "get_scheduler",
    "start_scheduler",
    "stop_scheduler",
    "refresh_prices",
    "cleanup_sessions",
]
