# game/leaderboard.py
import calendar
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

from game.exceptions import InvalidAmountError

POINTS_PER_WIN = 1000

# Monthly prizes for the top 10
LEADERBOARD_PRIZES = [
    {"rank": 1, "prize": 5000, "title": "Champion"},
    {"rank": 2, "prize": 2500, "title": "Runner Up"},
    {"rank": 3, "prize": 1000, "title": "Third Place"},
    {"rank": 4, "prize": 500, "title": "Top 5"},
    {"rank": 5, "prize": 500, "title": "Top 5"},
    {"rank": 6, "prize": 250, "title": "Top 10"},
    {"rank": 7, "prize": 250, "title": "Top 10"},
    {"rank": 8, "prize": 250, "title": "Top 10"},
    {"rank": 9, "prize": 250, "title": "Top 10"},
    {"rank": 10, "prize": 250, "title": "Top 10"},
]

_PRIZES_BY_RANK = {p["rank"]: p for p in LEADERBOARD_PRIZES}


def resolve_period(
    now: datetime,
    period: str = "current",
    month: Optional[int] = None,
    year: Optional[int] = None,
) -> Tuple[int, int]:
    """(year, month) to rank: an explicit month wins over current/previous"""
    if month is not None:
        if not 1 <= month <= 12:
            raise InvalidAmountError(f"Month must be between 1 and 12, got {month}")
        return (year or now.year), month
    if period == "previous":
        if now.month == 1:
            return now.year - 1, 12
        return now.year, now.month - 1
    if period != "current":
        raise InvalidAmountError(f"Unknown leaderboard period: {period}")
    return now.year, now.month


def month_window(year: int, month: int) -> Tuple[datetime, datetime]:
    """[start, end) of a calendar month"""
    start = datetime(year, month, 1)
    end = datetime(year + 1, 1, 1) if month == 12 else datetime(year, month + 1, 1)
    return start, end


def month_name(month: int) -> str:
    return calendar.month_name[month]


def rank_entries(rows: Sequence[Dict]) -> List[Dict]:
    """
    Attach rank, points and prize to rows already ordered by coins won,
    then battles won.
    """
    entries = []
    for rank, row in enumerate(rows, start=1):
        prize = _PRIZES_BY_RANK.get(rank)
        entries.append({
            **row,
            "rank": rank,
            "points": row["coins_won"] + row["battles_won"] * POINTS_PER_WIN,
            "prize": prize["prize"] if prize else 0,
            "title": prize["title"] if prize else None,
        })
    return entries
