#database/models/sale_history.py
from sqlalchemy import Column, Integer, String, ForeignKey, DateTime
from sqlalchemy.sql import func
from database.base import Base


class SaleHistory(Base):
    """Pull sold back for coins"""

    __tablename__ = "sale_history"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    card_id = Column(Integer, ForeignKey("cards.id", ondelete="SET NULL"), nullable=True)
    card_name = Column(String)
    coins_received = Column(Integer, nullable=False)

    sold_at = Column(DateTime, server_default=func.now())

    def __repr__(self):
        return f"<SaleHistory #{self.id} {self.card_name} +{self.coins_received}>"
