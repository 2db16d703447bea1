#database/models/battle_pull.py
from datetime import datetime

from sqlalchemy import Column, Integer, String, ForeignKey, DateTime
from sqlalchemy.orm import relationship
from database.base import Base


class BattlePull(Base):
    """Card drawn by a participant in one battle round"""

    __tablename__ = "battle_pulls"

    id = Column(Integer, primary_key=True)
    battle_id = Column(Integer, ForeignKey("battles.id", ondelete="CASCADE"), nullable=False, index=True)
    participant_id = Column(
        Integer, ForeignKey("battle_participants.id", ondelete="CASCADE"), nullable=False
    )
    # Nulled when the pull is sold; the snapshot below keeps the history
    pull_id = Column(Integer, ForeignKey("pulls.id", ondelete="SET NULL"), nullable=True, unique=True)

    round_number = Column(Integer, nullable=False)

    # Snapshot at draw time
    coin_value = Column(Integer, nullable=False)
    item_name = Column(String)
    item_rarity = Column(String, nullable=True)

    pulled_at = Column(DateTime, nullable=False, default=datetime.now)

    battle = relationship("Battle", back_populates="pulls")
    participant = relationship("BattleParticipant")
    pull = relationship("Pull", back_populates="battle_pull")

    def __repr__(self):
        return f"<BattlePull #{self.id} battle={self.battle_id} round={self.round_number}>"
