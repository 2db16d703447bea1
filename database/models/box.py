#database/models/box.py
from sqlalchemy import Column, Integer, String, Text, DateTime, Boolean, CheckConstraint
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from database.base import Base


class Box(Base):
    """Box with a weighted card pool, opened pack by pack"""

    __tablename__ = "boxes"
    __table_args__ = (
        CheckConstraint("cards_per_pack >= 1", name="ck_boxes_cards_per_pack"),
        CheckConstraint("price >= 0", name="ck_boxes_price"),
    )

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    image_url = Column(Text, nullable=True)

    price = Column(Integer, nullable=False, default=0)  # coins per pack
    cards_per_pack = Column(Integer, nullable=False, default=1)

    is_active = Column(Boolean, nullable=False, default=True)
    popularity = Column(Integer, nullable=False, default=0)  # packs opened

    created_at = Column(DateTime, server_default=func.now())

    # Stable order keeps seeded draws reproducible
    cards = relationship(
        "Card",
        back_populates="box",
        order_by="Card.id",
        cascade="all, delete-orphan",
    )

    def __repr__(self):
        return f"<Box #{self.id} {self.name}>"
