# api/schemas.py
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from database.models.battle import Battle, BattleMode, BattleStatus
from database.models.card import Card
from database.models.pull import Pull
from game.pack_system import BATTLE_SETTINGS, PACK_SETTINGS


# ===== BOXES =====

class CardOut(BaseModel):
    id: int
    name: str
    rarity: Optional[str] = None
    image_url: Optional[str] = None
    pull_rate: float
    coin_value: int

    class Config:
        from_attributes = True


class BoxOut(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    image_url: Optional[str] = None
    price: int
    cards_per_pack: int
    popularity: int
    cards: List[CardOut] = []

    class Config:
        from_attributes = True


class OpenBoxRequest(BaseModel):
    quantity: int = Field(
        default=1,
        ge=PACK_SETTINGS["min_quantity"],
        le=PACK_SETTINGS["max_quantity"],
    )


class PulledCard(BaseModel):
    pull_id: int
    card: CardOut
    card_value: int

    @classmethod
    def from_pull(cls, pull: Pull) -> "PulledCard":
        return cls(pull_id=pull.id, card=CardOut.model_validate(pull.card), card_value=pull.card_value)


class OpenBoxResponse(BaseModel):
    pulls: List[PulledCard]
    total_cost: int
    remaining_coins: int


# ===== COLLECTION =====

class UserOut(BaseModel):
    id: int
    username: Optional[str] = None
    email: str
    role: str
    coins: int

    class Config:
        from_attributes = True


class PullOut(BaseModel):
    id: int
    box_id: int
    card: CardOut
    card_value: int
    in_cart: bool
    created_at: datetime

    @classmethod
    def from_pull(cls, pull: Pull) -> "PullOut":
        return cls(
            id=pull.id,
            box_id=pull.box_id,
            card=CardOut.model_validate(pull.card),
            card_value=pull.card_value,
            in_cart=pull.cart_item is not None,
            created_at=pull.created_at,
        )


class SellResponse(BaseModel):
    coins_received: int
    new_balance: int


class SellAllResponse(SellResponse):
    sold: int


class CartResponse(BaseModel):
    pull_id: int
    cart_total: int


# ===== BATTLES =====

class CreateBattleRequest(BaseModel):
    box_id: int
    entry_fee: int = Field(default=0, ge=0)
    rounds: int = Field(
        default=1,
        ge=BATTLE_SETTINGS["min_rounds"],
        le=BATTLE_SETTINGS["max_rounds"],
    )
    max_participants: int = Field(
        default=2,
        ge=BATTLE_SETTINGS["min_participants"],
        le=BATTLE_SETTINGS["max_participants"],
    )
    mode: BattleMode = BattleMode.NORMAL


class ParticipantOut(BaseModel):
    id: int
    user_id: int
    username: Optional[str] = None
    is_bot: bool = False
    slot: int
    is_ready: bool
    total_value: int
    rounds_pulled: int
    payout: int
    joined_at: datetime


class BattlePullOut(BaseModel):
    id: int
    participant_id: int
    pull_id: Optional[int] = None
    round_number: int
    coin_value: int
    item_name: Optional[str] = None
    item_rarity: Optional[str] = None
    pulled_at: datetime

    class Config:
        from_attributes = True


class BattleOut(BaseModel):
    id: int
    creator_id: int
    box_id: int
    box_name: Optional[str] = None
    status: BattleStatus
    mode: BattleMode
    max_participants: int
    participant_count: int
    entry_fee: int
    total_prize: int
    rounds: int
    rounds_completed: int
    winner_id: Optional[int] = None
    created_at: datetime
    full_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    participants: List[ParticipantOut] = []
    pulls: Optional[List[BattlePullOut]] = None

    @classmethod
    def from_battle(cls, battle: Battle, with_pulls: bool = False) -> "BattleOut":
        return cls(
            id=battle.id,
            creator_id=battle.creator_id,
            box_id=battle.box_id,
            box_name=battle.box.name if battle.box else None,
            status=battle.status,
            mode=battle.mode,
            max_participants=battle.max_participants,
            participant_count=battle.participant_count,
            entry_fee=battle.entry_fee,
            total_prize=battle.total_prize,
            rounds=battle.rounds,
            rounds_completed=battle.rounds_completed,
            winner_id=battle.winner_id,
            created_at=battle.created_at,
            full_at=battle.full_at,
            started_at=battle.started_at,
            finished_at=battle.finished_at,
            participants=[
                ParticipantOut(
                    id=p.id,
                    user_id=p.user_id,
                    username=p.user.username if p.user else None,
                    is_bot=bool(p.user and p.user.is_bot),
                    slot=p.slot,
                    is_ready=p.is_ready,
                    total_value=p.total_value,
                    rounds_pulled=p.rounds_pulled,
                    payout=p.payout,
                    joined_at=p.joined_at,
                )
                for p in battle.participants
            ],
            pulls=[BattlePullOut.model_validate(bp) for bp in battle.pulls] if with_pulls else None,
        )


class AddBotsRequest(BaseModel):
    count: int = Field(default=1, ge=1, le=BATTLE_SETTINGS["max_participants"])


class AddBotsResponse(BaseModel):
    battle_id: int
    added: int
    participant_count: int


class ReadyResponse(BaseModel):
    battle_id: int
    is_ready: bool
    all_ready: bool


class SettlementOut(BaseModel):
    battle_id: int
    mode: BattleMode
    total_prize: int
    winner_user_id: Optional[int] = None
    payouts: Dict[int, int]


class CancelResponse(BaseModel):
    battle_id: int
    refunded: int


class AutoStartResponse(BaseModel):
    processed: int
    results: List[dict]


# ===== LEADERBOARD =====

class LeaderboardEntry(BaseModel):
    rank: int
    user_id: int
    username: Optional[str] = None
    points: int
    battles_won: int
    battles_played: int
    coins_won: int
    prize: int
    title: Optional[str] = None


class LeaderboardPrize(BaseModel):
    rank: int
    prize: int
    title: str


class LeaderboardResponse(BaseModel):
    year: int
    month: int
    month_name: str
    period: str
    resets_at: datetime
    leaderboard: List[LeaderboardEntry]  # top 10
    full_leaderboard: List[LeaderboardEntry]
    prizes: List[LeaderboardPrize]
