import itertools
import random
from datetime import datetime, timedelta

import pytest
from sqlalchemy import select, update

from database import crud
from database.base import create_all, create_engine_for, create_session_factory
from database.models.battle import Battle, BattleStatus
from game.battle_system import BattleManager
from game.pull_engine import PullEngine
from services.events import InMemoryEventBus


class FakeClock:
    def __init__(self, start=datetime(2026, 1, 1, 12, 0, 0)):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)
        return self.now


class ScriptedEngine(PullEngine):
    """Returns cards by coin value in a fixed order, then falls back to random"""

    def __init__(self, values=()):
        super().__init__(random.Random(7))
        self.values = list(values)
        self.failures = 0  # next N picks raise, like a dropped connection mid-round

    def _pick(self, cards, cumulative):
        if self.failures:
            self.failures -= 1
            raise RuntimeError("connection lost while drawing")
        if not self.values:
            return super()._pick(cards, cumulative)
        value = self.values.pop(0)
        return next(card for card in cards if card.coin_value == value)


class RecordingNotifier:
    def __init__(self):
        self.created = []
        self.finished = []

    async def battle_created(self, info):
        self.created.append(info)
        return True

    async def battle_finished(self, info):
        self.finished.append(info)
        return True

    async def close(self):
        pass


@pytest.fixture
async def db_engine(tmp_path):
    engine = create_engine_for(f"sqlite+aiosqlite:///{tmp_path / 'pack_attack_test.db'}")
    await create_all(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return create_session_factory(db_engine)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def engine():
    return ScriptedEngine()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def events():
    return InMemoryEventBus()


@pytest.fixture
def manager(session_factory, engine, notifier, events, clock):
    return BattleManager(
        session_factory,
        engine=engine,
        notifier=notifier,
        events=events,
        grace_period=timedelta(minutes=30),
        lobby_expiry=timedelta(hours=24),
        clock=clock,
    )


@pytest.fixture
def make_user(session_factory):
    counter = itertools.count(1)

    async def _make(coins=1000, role="USER", is_bot=False):
        n = next(counter)
        async with session_factory() as session:
            user = await crud.create_user(
                session, f"player{n}@example.com", f"player{n}", coins, role, is_bot=is_bot
            )
            return user.id

    return _make


@pytest.fixture
def make_box(session_factory):
    async def _make(values=(50, 100, 200), price=100, cards_per_pack=1, rates=None, is_active=True):
        async with session_factory() as session:
            box = await crud.create_box(
                session, "Starter box", price, cards_per_pack=cards_per_pack, is_active=is_active
            )
            for i, value in enumerate(values):
                rate = rates[i] if rates else 1.0
                await crud.add_card(session, box.id, f"Card {value}", value, pull_rate=rate)
            return box.id

    return _make


@pytest.fixture
def balance(session_factory):
    async def _balance(user_id):
        async with session_factory() as session:
            return await crud.get_balance(session, user_id)

    return _balance


@pytest.fixture
def load_battle(session_factory):
    async def _load(battle_id):
        async with session_factory() as session:
            return await session.scalar(select(Battle).where(Battle.id == battle_id))

    return _load


@pytest.fixture
def force_in_progress(session_factory, clock):
    """Move a full lobby straight to IN_PROGRESS without running rounds"""

    async def _force(battle_id):
        async with session_factory() as session:
            await session.execute(
                update(Battle)
                .where(Battle.id == battle_id)
                .values(status=BattleStatus.IN_PROGRESS, started_at=clock())
            )
            await session.commit()

    return _force
