#database/models/cart_item.py
from sqlalchemy import Column, Integer, ForeignKey, DateTime
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from database.base import Base


class CartItem(Base):
    """Pull reserved in a user's cart"""

    __tablename__ = "cart_items"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    pull_id = Column(Integer, ForeignKey("pulls.id", ondelete="CASCADE"), nullable=False, unique=True)

    created_at = Column(DateTime, server_default=func.now())

    pull = relationship("Pull", back_populates="cart_item")

    def __repr__(self):
        return f"<CartItem #{self.id} pull={self.pull_id}>"
