#database/models/pull.py
from datetime import datetime

from sqlalchemy import Column, Integer, ForeignKey, DateTime
from sqlalchemy.orm import relationship
from database.base import Base


class Pull(Base):
    """One drawn card owned by a user"""

    __tablename__ = "pulls"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    box_id = Column(Integer, ForeignKey("boxes.id"), nullable=False)
    card_id = Column(Integer, ForeignKey("cards.id"), nullable=False)

    # Card value at draw time
    card_value = Column(Integer, nullable=False)

    created_at = Column(DateTime, nullable=False, default=datetime.now)

    user = relationship("User", backref="pulls")
    card = relationship("Card")
    cart_item = relationship("CartItem", back_populates="pull", uselist=False)
    battle_pull = relationship("BattlePull", back_populates="pull", uselist=False)

    def __repr__(self):
        return f"<Pull #{self.id} card={self.card_id} value={self.card_value}>"
