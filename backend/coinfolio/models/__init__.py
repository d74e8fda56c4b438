"""
Database models.
"""
from coinfolio.models.user import User
from coinfolio.models.user_session import UserSession
from coinfolio.models.holding import PortfolioHolding
from coinfolio.models.coin import Coin
from coinfolio.models.alert import AlertType, PriceAlert
from coinfolio.models.user_settings import UserSettings
from coinfolio.models.activity_log import ActivityLog

__all__ = [
    "User",
    "UserSession",
    "PortfolioHolding",
    "Coin",
    "AlertType",
    "PriceAlert",
    "UserSettings",
    "ActivityLog",
]
