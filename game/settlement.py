# game/settlement.py
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from database.models.battle import BattleMode
from database.models.battle_participant import BattleParticipant
from game.exceptions import StateError

WINNER_TAKES_ALL = (BattleMode.NORMAL, BattleMode.UPSIDE_DOWN)


def _join_order(participant: BattleParticipant) -> tuple:
    return (participant.joined_at or datetime.max, participant.slot)


def pick_winner(
    participants: Sequence[BattleParticipant],
    mode: BattleMode,
) -> Optional[BattleParticipant]:
    """
    Winner for winner-takes-all modes.

    NORMAL: highest total_value, UPSIDE_DOWN: lowest. Ties go to the earliest
    joiner (joined_at, then slot). Pot-splitting modes have no winner.
    """
    if mode not in WINNER_TAKES_ALL:
        return None
    if not participants:
        raise StateError("Battle has no participants")

    if mode == BattleMode.NORMAL:
        return min(participants, key=lambda p: (-p.total_value, *_join_order(p)))
    return min(participants, key=lambda p: (p.total_value, *_join_order(p)))


def split_pot(total: int, values: Sequence[int]) -> List[int]:
    """
    Split ``total`` coins proportionally to ``values`` (largest remainder).

    Each share is floor(total * v / sum); the coins left over go one each to
    the largest fractional remainders, ties to the earlier position. When
    every value is zero the pot is split equally the same way. The result
    always sums to ``total``.
    """
    if total < 0:
        raise ValueError(f"Pot must not be negative: {total}")
    if not values:
        if total:
            raise ValueError("Cannot split a non-empty pot between nobody")
        return []
    if any(v < 0 for v in values):
        raise ValueError("Values must not be negative")

    weights = list(values) if sum(values) > 0 else [1] * len(values)
    weight_sum = sum(weights)

    shares = []
    remainders = []
    for index, weight in enumerate(weights):
        share, remainder = divmod(total * weight, weight_sum)
        shares.append(share)
        remainders.append((-remainder, index))

    leftover = total - sum(shares)
    for _, index in sorted(remainders)[:leftover]:
        shares[index] += 1

    return shares


def compute_payouts(
    participants: Sequence[BattleParticipant],
    mode: BattleMode,
    total_prize: int,
) -> Dict[int, int]:
    """Payout per participant id; every participant has an entry"""
    ordered = sorted(participants, key=_join_order)
    payouts = {p.id: 0 for p in ordered}

    if mode in WINNER_TAKES_ALL:
        winner = pick_winner(ordered, mode)
        payouts[winner.id] = total_prize
        return payouts

    shares = split_pot(total_prize, [p.total_value for p in ordered])
    for participant, share in zip(ordered, shares):
        payouts[participant.id] = share
    return payouts
