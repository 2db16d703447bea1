from datetime import datetime, timedelta

import pytest

from database.models.battle import BattleMode
from database.models.battle_participant import BattleParticipant
from game.exceptions import StateError
from game.settlement import compute_payouts, pick_winner, split_pot

T0 = datetime(2026, 1, 1, 12, 0, 0)


def participant(pid, total, slot=None, joined_offset=0):
    return BattleParticipant(
        id=pid,
        user_id=pid * 10,
        slot=slot or pid,
        total_value=total,
        joined_at=T0 + timedelta(seconds=joined_offset),
    )


# ===== split_pot =====

@pytest.mark.parametrize(
    "total, values, expected",
    [
        (300, [50, 100], [100, 200]),
        (100, [1, 1, 1], [34, 33, 33]),
        (10, [0, 0], [5, 5]),
        (7, [0, 0, 0], [3, 2, 2]),
        (0, [5, 10], [0, 0]),
        (1000, [0, 10], [0, 1000]),
        (10, [1, 2, 2], [2, 4, 4]),
        (11, [1, 2, 2], [2, 5, 4]),
    ],
)
def test_split_pot(total, values, expected):
    assert split_pot(total, values) == expected


@pytest.mark.parametrize(
    "total, values",
    [
        (999, [333, 333, 334]),
        (1, [7, 11, 13, 17]),
        (12345, [1, 2, 3, 4, 5, 6, 7, 8]),
        (100, [999999, 1]),
    ],
)
def test_split_pot_always_sums_to_total(total, values):
    shares = split_pot(total, values)
    assert sum(shares) == total
    assert all(share >= 0 for share in shares)


def test_split_pot_leftover_goes_to_largest_remainder():
    # 10 * 1/6 = 1.67, 10 * 2/6 = 3.33, 10 * 3/6 = 5.0
    assert split_pot(10, [1, 2, 3]) == [2, 3, 5]


def test_split_pot_rejects_negative_input():
    with pytest.raises(ValueError):
        split_pot(-1, [1])
    with pytest.raises(ValueError):
        split_pot(10, [1, -1])
    with pytest.raises(ValueError):
        split_pot(10, [])
    assert split_pot(0, []) == []


# ===== pick_winner =====

def test_normal_mode_highest_total_wins():
    players = [participant(1, 50), participant(2, 200), participant(3, 120)]
    assert pick_winner(players, BattleMode.NORMAL).id == 2


def test_upside_down_mode_lowest_total_wins():
    players = [participant(1, 50), participant(2, 200), participant(3, 20)]
    assert pick_winner(players, BattleMode.UPSIDE_DOWN).id == 3


def test_tie_goes_to_earliest_joiner():
    players = [
        participant(1, 100, slot=1, joined_offset=5),
        participant(2, 100, slot=2, joined_offset=1),
    ]
    assert pick_winner(players, BattleMode.NORMAL).id == 2
    assert pick_winner(players, BattleMode.UPSIDE_DOWN).id == 2


def test_tie_with_same_join_time_goes_to_lowest_slot():
    players = [participant(2, 80, slot=2), participant(1, 80, slot=1)]
    for p in players:
        p.joined_at = T0
    assert pick_winner(players, BattleMode.NORMAL).id == 1


def test_pot_modes_have_no_winner():
    players = [participant(1, 50), participant(2, 200)]
    assert pick_winner(players, BattleMode.SHARE) is None
    assert pick_winner(players, BattleMode.JACKPOT) is None


def test_no_participants_is_a_state_error():
    with pytest.raises(StateError):
        pick_winner([], BattleMode.NORMAL)


# ===== compute_payouts =====

def test_winner_takes_the_whole_prize():
    players = [participant(1, 50), participant(2, 200)]
    assert compute_payouts(players, BattleMode.NORMAL, 200) == {1: 0, 2: 200}


def test_share_mode_splits_proportionally():
    players = [participant(1, 50), participant(2, 100)]
    assert compute_payouts(players, BattleMode.SHARE, 300) == {1: 100, 2: 200}


def test_jackpot_payouts_sum_to_prize():
    players = [participant(1, 7), participant(2, 11), participant(3, 13)]
    payouts = compute_payouts(players, BattleMode.JACKPOT, 1000)
    assert sum(payouts.values()) == 1000
    assert set(payouts) == {1, 2, 3}
