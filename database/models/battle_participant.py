#database/models/battle_participant.py
from datetime import datetime

from sqlalchemy import Column, Integer, ForeignKey, DateTime, Boolean, UniqueConstraint
from sqlalchemy.orm import relationship
from database.base import Base


class BattleParticipant(Base):
    """User seat in a battle"""

    __tablename__ = "battle_participants"
    __table_args__ = (
        UniqueConstraint("battle_id", "user_id", name="uq_participant_user"),
        UniqueConstraint("battle_id", "slot", name="uq_participant_slot"),
    )

    id = Column(Integer, primary_key=True)
    battle_id = Column(Integer, ForeignKey("battles.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)

    slot = Column(Integer, nullable=False)  # 1-based join order
    is_ready = Column(Boolean, nullable=False, default=False)

    total_value = Column(Integer, nullable=False, default=0)
    rounds_pulled = Column(Integer, nullable=False, default=0)
    payout = Column(Integer, nullable=False, default=0)

    joined_at = Column(DateTime, nullable=False, default=datetime.now)

    battle = relationship("Battle", back_populates="participants")
    user = relationship("User")

    def __repr__(self):
        return f"<BattleParticipant #{self.id} battle={self.battle_id} user={self.user_id}>"
