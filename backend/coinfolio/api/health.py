"""
Health check endpoint.
"""
from datetime import datetime, timezone

from fastapi import APIRouter

from coinfolio.core.config import APP_VERSION

router = APIRouter()


@router.get("/health")
def health():
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": "coinfolio",
        "version": APP_VERSION,
    }
