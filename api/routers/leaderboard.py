# api/routers/leaderboard.py
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_cache, get_session
from api.schemas import LeaderboardResponse
from database import crud
from game.leaderboard import (
    LEADERBOARD_PRIZES,
    month_name,
    month_window,
    rank_entries,
    resolve_period,
)

router = APIRouter(prefix="/leaderboard", tags=["leaderboard"])

LEADERBOARD_CACHE_SECONDS = 60
TOP_ENTRIES = 10


@router.get("", response_model=LeaderboardResponse)
async def get_leaderboard(
    period: str = Query(default="current", pattern="^(current|previous)$"),
    month: Optional[int] = Query(default=None, ge=1, le=12),
    year: Optional[int] = Query(default=None, ge=2000, le=9999),
    session: AsyncSession = Depends(get_session),
    cache=Depends(get_cache),
):
    """Monthly ranking by coins won, then battles won; bots never rank"""
    target_year, target_month = resolve_period(datetime.now(), period, month, year)
    key = f"leaderboard:{target_year}-{target_month:02d}"

    cached = await cache.get(key)
    if cached is not None:
        return {**cached, "period": period}

    start, end = month_window(target_year, target_month)
    entries = rank_entries(await crud.leaderboard_rows(session, start, end))
    board = LeaderboardResponse(
        year=target_year,
        month=target_month,
        month_name=month_name(target_month),
        period=period,
        resets_at=end,
        leaderboard=entries[:TOP_ENTRIES],
        full_leaderboard=entries,
        prizes=LEADERBOARD_PRIZES,
    ).model_dump(mode="json")
    await cache.set(key, board, ttl=LEADERBOARD_CACHE_SECONDS)
    return board
