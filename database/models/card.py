#database/models/card.py
from sqlalchemy import Column, Integer, String, Text, Float, DateTime, ForeignKey, CheckConstraint
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from database.base import Base


class Card(Base):
    """Card in a box pool; pull_rate is a relative weight"""

    __tablename__ = "cards"
    __table_args__ = (
        CheckConstraint("pull_rate >= 0", name="ck_cards_pull_rate"),
        CheckConstraint("coin_value >= 0", name="ck_cards_coin_value"),
    )

    id = Column(Integer, primary_key=True)
    box_id = Column(Integer, ForeignKey("boxes.id", ondelete="CASCADE"), nullable=False, index=True)

    name = Column(String, nullable=False)
    rarity = Column(String, nullable=True)  # common, uncommon, rare, mythic ...
    image_url = Column(Text, nullable=True)

    pull_rate = Column(Float, nullable=False, default=1.0)
    coin_value = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, server_default=func.now())

    box = relationship("Box", back_populates="cards")

    def __repr__(self):
        return f"<Card {self.name} ({self.rarity})>"
