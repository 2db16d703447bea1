# api/deps.py
"""FastAPI dependencies. Shared collaborators live on ``app.state``."""
from typing import AsyncIterator

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from config import Settings
from database import crud
from database.models.user import User
from game.battle_system import BattleManager
from game.pull_engine import PullEngine


async def get_session(request: Request) -> AsyncIterator[AsyncSession]:
    async with request.app.state.session_factory() as session:
        yield session


async def get_current_user(
    x_user_id: int = Header(...),
    session: AsyncSession = Depends(get_session),
) -> User:
    """Caller identity comes from an upstream auth layer via X-User-Id"""
    return await crud.get_user(session, x_user_id)


def get_settings_dep(request: Request) -> Settings:
    return request.app.state.settings


def get_battle_manager(request: Request) -> BattleManager:
    return request.app.state.battle_manager


def get_pull_engine(request: Request) -> PullEngine:
    return request.app.state.pull_engine


def get_cache(request: Request):
    return request.app.state.cache


def get_event_bus(request: Request):
    return request.app.state.events
