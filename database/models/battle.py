#database/models/battle.py
from datetime import datetime

from sqlalchemy import (
    Column,
    Integer,
    ForeignKey,
    DateTime,
    Enum,
    CheckConstraint,
)
from sqlalchemy.orm import relationship
from database.base import Base
import enum


class BattleStatus(enum.Enum):
    WAITING = "WAITING"
    IN_PROGRESS = "IN_PROGRESS"
    FINISHED = "FINISHED"
    CANCELLED = "CANCELLED"


class BattleMode(enum.Enum):
    NORMAL = "NORMAL"  # highest total wins
    UPSIDE_DOWN = "UPSIDE_DOWN"  # lowest total wins
    JACKPOT = "JACKPOT"  # pot split by value
    SHARE = "SHARE"  # pot split by value


TERMINAL_STATUSES = (BattleStatus.FINISHED, BattleStatus.CANCELLED)


class Battle(Base):
    """Multiplayer pack-opening battle"""

    __tablename__ = "battles"
    __table_args__ = (
        CheckConstraint("participant_count <= max_participants", name="ck_battles_capacity"),
        CheckConstraint("max_participants >= 2", name="ck_battles_min_participants"),
        CheckConstraint("rounds >= 1", name="ck_battles_rounds"),
        CheckConstraint("entry_fee >= 0", name="ck_battles_entry_fee"),
    )

    id = Column(Integer, primary_key=True)
    creator_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    box_id = Column(Integer, ForeignKey("boxes.id"), nullable=False)

    status = Column(Enum(BattleStatus), nullable=False, default=BattleStatus.WAITING, index=True)
    mode = Column(Enum(BattleMode), nullable=False, default=BattleMode.NORMAL)

    # Lobby
    max_participants = Column(Integer, nullable=False, default=2)
    participant_count = Column(Integer, nullable=False, default=0)

    # Coins
    entry_fee = Column(Integer, nullable=False, default=0)
    total_prize = Column(Integer, nullable=False, default=0)  # sum of entry fees

    # Progress
    rounds = Column(Integer, nullable=False, default=1)
    rounds_completed = Column(Integer, nullable=False, default=0)

    winner_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    # Time (Python clock, compared against the auto-start and expiry cutoffs)
    created_at = Column(DateTime, nullable=False, default=datetime.now)
    full_at = Column(DateTime, nullable=True)
    started_at = Column(DateTime, nullable=True)
    finished_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)

    # Relationships
    creator = relationship("User", foreign_keys=[creator_id])
    winner = relationship("User", foreign_keys=[winner_id])
    box = relationship("Box")
    participants = relationship(
        "BattleParticipant",
        back_populates="battle",
        order_by="BattleParticipant.slot",
        cascade="all, delete-orphan",
    )
    pulls = relationship(
        "BattlePull",
        back_populates="battle",
        order_by="[BattlePull.round_number, BattlePull.id]",
        cascade="all, delete-orphan",
    )

    @property
    def is_full(self) -> bool:
        return self.participant_count >= self.max_participants

    def __repr__(self):
        return f"<Battle #{self.id} {self.mode.value} ({self.status.value})>"
