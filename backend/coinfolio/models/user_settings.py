"""
Per-user display and notification preferences.
"""
from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from coinfolio.core.database import Base

THEMES = ("light", "dark", "auto")
CURRENCIES = ("USD", "EUR", "GBP", "JPY", "CAD", "AUD", "CHF")


class UserSettings(Base):
    __tablename__ = "user_settings"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)
    theme = Column(String(10), nullable=False, default="light")
    currency = Column(String(3), nullable=False, default="USD")  # Display preference; prices stay in USD
    notifications_enabled = Column(Boolean, nullable=False, default=True)
    two_factor_enabled = Column(Boolean, nullable=False, default=False)
    email_notifications = Column(Boolean, nullable=False, default=True)
    price_alerts = Column(Boolean, nullable=False, default=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    user = relationship("User", back_populates="settings")

    def to_dict(self) -> dict:
        return {
            "theme": self.theme,
            "currency": self.currency,
            "notifications_enabled": self.notifications_enabled,
            "two_factor_enabled": self.two_factor_enabled,
            "email_notifications": self.email_notifications,
            "price_alerts": self.price_alerts,
        }
