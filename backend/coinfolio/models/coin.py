"""
Local coin metadata, filled in as users look coins up.
"""
from sqlalchemy import Column, Integer, String, Numeric, DateTime
from sqlalchemy.sql import func
from coinfolio.core.database import Base


class Coin(Base):
    __tablename__ = "coins"

    id = Column(String(100), primary_key=True)  # Provider id
    symbol = Column(String(20), nullable=False, index=True)
    name = Column(String(100), nullable=False, index=True)
    logo_url = Column(String(500), nullable=True)
    rank = Column(Integer, nullable=True)
    last_price = Column(Numeric(20, 8), nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
