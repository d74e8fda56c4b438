"""
Price alert model.
"""
import enum

from sqlalchemy import Column, Integer, String, Numeric, Boolean, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from coinfolio.core.database import Base


class AlertType(str, enum.Enum):
    PRICE_ABOVE = "price_above"
    PRICE_BELOW = "price_below"


class PriceAlert(Base):
    __tablename__ = "price_alerts"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    coin_id = Column(String(100), nullable=False, index=True)
    name = Column(String(200), nullable=True)
    alert_type = Column(String(20), nullable=False)  # AlertType value
    target_price = Column(Numeric(20, 8), nullable=False)
    notification_enabled = Column(Boolean, default=True, nullable=False)
    email_alert_enabled = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False, index=True)
    triggered_at = Column(DateTime(timezone=True), nullable=True)
    triggered_price = Column(Numeric(20, 8), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    user = relationship("User", back_populates="alerts")
