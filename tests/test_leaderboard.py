from datetime import datetime

import pytest

from database import crud
from database.models.battle import BattleMode
from game.exceptions import InvalidAmountError
from game.leaderboard import month_name, month_window, rank_entries, resolve_period


# ===== PERIODS =====

@pytest.mark.parametrize(
    "now, period, month, year, expected",
    [
        (datetime(2026, 5, 17), "current", None, None, (2026, 5)),
        (datetime(2026, 5, 17), "previous", None, None, (2026, 4)),
        (datetime(2026, 1, 3), "previous", None, None, (2025, 12)),
        (datetime(2026, 5, 17), "previous", 2, 2024, (2024, 2)),
        (datetime(2026, 5, 17), "current", 9, None, (2026, 9)),
    ],
)
def test_resolve_period(now, period, month, year, expected):
    assert resolve_period(now, period, month, year) == expected


def test_resolve_period_rejects_bad_input():
    with pytest.raises(InvalidAmountError):
        resolve_period(datetime(2026, 5, 17), month=13)
    with pytest.raises(InvalidAmountError):
        resolve_period(datetime(2026, 5, 17), period="all-time")


def test_month_window_wraps_december():
    assert month_window(2025, 12) == (datetime(2025, 12, 1), datetime(2026, 1, 1))
    assert month_window(2026, 2) == (datetime(2026, 2, 1), datetime(2026, 3, 1))
    assert month_name(2) == "February"


def test_rank_entries_points_and_prizes():
    rows = [
        {"user_id": n, "username": f"p{n}", "battles_played": 3, "battles_won": 1, "coins_won": 500 - n}
        for n in range(1, 13)
    ]

    entries = rank_entries(rows)

    assert [e["rank"] for e in entries] == list(range(1, 13))
    assert entries[0]["points"] == 499 + 1000
    assert (entries[0]["prize"], entries[0]["title"]) == (5000, "Champion")
    assert (entries[9]["prize"], entries[9]["title"]) == (250, "Top 10")
    assert (entries[10]["prize"], entries[10]["title"]) == (0, None)


# ===== MONTHLY TOTALS =====

async def play(manager, engine, creator, opponent_ids, box_id, values, mode=BattleMode.NORMAL, admin=None):
    battle = await manager.create_battle(
        creator, box_id, entry_fee=100, rounds=1, max_participants=1 + len(opponent_ids or [None]), mode=mode
    )
    if opponent_ids:
        for user_id in opponent_ids:
            await manager.join(battle.id, user_id)
    else:
        await manager.add_bots(battle.id, admin, 1)
    for participant in (await manager.get_battle(battle.id)).participants:
        if not participant.user.is_bot:
            await manager.mark_ready(battle.id, participant.user_id)
    engine.values = list(values)
    return await manager.start(battle.id)


async def test_leaderboard_rows_for_a_month(manager, engine, make_user, make_box, session_factory, clock):
    box_id = await make_box(values=(50, 200))
    x = await make_user()
    y = await make_user()
    admin = await make_user(role="ADMIN")
    await make_user(is_bot=True)

    await play(manager, engine, x, [y], box_id, [50, 200])  # y takes 200
    await play(manager, engine, x, [y], box_id, [200, 50], mode=BattleMode.SHARE)  # 160 / 40
    await play(manager, engine, x, None, box_id, [200, 50], admin=admin)  # x beats the bot

    clock.advance(days=40)
    await play(manager, engine, x, [y], box_id, [50, 200])  # February

    async with session_factory() as session:
        january = await crud.leaderboard_rows(session, *month_window(2026, 1))
        february = await crud.leaderboard_rows(session, *month_window(2026, 2))

    assert january == [
        {"user_id": x, "username": "player1", "battles_played": 3, "battles_won": 1, "coins_won": 360},
        {"user_id": y, "username": "player2", "battles_played": 2, "battles_won": 1, "coins_won": 240},
    ]
    assert [(r["user_id"], r["battles_won"], r["coins_won"]) for r in february] == [(y, 1, 200), (x, 0, 0)]


async def test_leaderboard_ignores_unfinished_battles(manager, make_user, make_box, session_factory):
    creator = await make_user()
    await manager.create_battle(creator, await make_box(), entry_fee=100, rounds=1, max_participants=2)

    async with session_factory() as session:
        assert await crud.leaderboard_rows(session, *month_window(2026, 1)) == []
