"""
Portfolio holding model.
"""
from sqlalchemy import Column, Integer, String, Numeric, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from coinfolio.core.database import Base


class PortfolioHolding(Base):
    """A user's position in one coin. Amounts and prices are USD Decimals."""
    __tablename__ = "portfolio_holdings"
    __table_args__ = (
        UniqueConstraint("user_id", "coin_id", name="uq_holding_user_coin"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    coin_id = Column(String(100), nullable=False, index=True)  # Provider id, e.g. "btc-bitcoin"
    coin_symbol = Column(String(20), nullable=False)
    coin_name = Column(String(100), nullable=False)
    amount = Column(Numeric(20, 8), nullable=False)
    purchase_price = Column(Numeric(20, 8), nullable=False)
    purchase_date = Column(DateTime(timezone=True), nullable=True)
    current_price = Column(Numeric(20, 8), nullable=True)
    current_value = Column(Numeric(28, 8), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    user = relationship("User", back_populates="holdings")
