import asyncio
import random

import pytest
from sqlalchemy import func, select

from database import crud
from database.models.box import Box
from database.models.pull import Pull
from database.models.sale_history import SaleHistory
from game.exceptions import (
    ConfigurationError,
    InsufficientFundsError,
    InvalidAmountError,
    NotFoundError,
    StateError,
)
from game.pull_engine import PullEngine


@pytest.fixture
def pull_engine():
    return PullEngine(random.Random(2024))


async def count_pulls(session_factory, user_id):
    async with session_factory() as session:
        return await session.scalar(select(func.count(Pull.id)).where(Pull.user_id == user_id))


async def open_one(session_factory, user_id, box_id, engine, quantity=1):
    async with session_factory() as session:
        return await crud.open_box(session, user_id, box_id, quantity, engine)


# ===== COIN LEDGER =====

async def test_debit_and_credit(session_factory, make_user, balance):
    user_id = await make_user(coins=100)
    async with session_factory() as session:
        await crud.debit_coins(session, user_id, 30)
        await crud.credit_coins(session, user_id, 5)
        await session.commit()
    assert await balance(user_id) == 75


async def test_debit_never_goes_negative(session_factory, make_user, balance):
    user_id = await make_user(coins=10)
    async with session_factory() as session:
        with pytest.raises(InsufficientFundsError) as exc_info:
            await crud.debit_coins(session, user_id, 11)
    assert exc_info.value.required == 11
    assert exc_info.value.available == 10
    assert await balance(user_id) == 10


async def test_concurrent_debits_do_not_overdraw(session_factory, make_user, balance):
    user_id = await make_user(coins=100)

    async def spend():
        async with session_factory() as session:
            await crud.debit_coins(session, user_id, 30)
            await session.commit()

    results = await asyncio.gather(*[spend() for _ in range(5)], return_exceptions=True)

    failures = [r for r in results if isinstance(r, InsufficientFundsError)]
    assert len(failures) == 2
    assert await balance(user_id) == 10


async def test_negative_amounts_rejected(session_factory, make_user):
    user_id = await make_user()
    async with session_factory() as session:
        with pytest.raises(InvalidAmountError):
            await crud.debit_coins(session, user_id, -1)
        with pytest.raises(InvalidAmountError):
            await crud.credit_coins(session, user_id, -1)


# ===== OPENING PACKS =====

async def test_open_box_debits_and_records_pulls(session_factory, make_user, make_box, balance, pull_engine):
    user_id = await make_user(coins=1000)
    box_id = await make_box(price=100, cards_per_pack=3)

    result = await open_one(session_factory, user_id, box_id, pull_engine, quantity=2)

    assert result["total_cost"] == 200
    assert result["remaining_coins"] == 800
    assert len(result["pulls"]) == 6
    assert all(p.card_value == p.card.coin_value for p in result["pulls"])
    assert await balance(user_id) == 800
    assert await count_pulls(session_factory, user_id) == 6

    async with session_factory() as session:
        box = await session.get(Box, box_id)
        assert box.popularity == 2


@pytest.mark.parametrize("quantity", [0, 5])
async def test_open_box_quantity_bounds(session_factory, make_user, make_box, pull_engine, quantity):
    user_id = await make_user()
    box_id = await make_box()
    with pytest.raises(InvalidAmountError):
        await open_one(session_factory, user_id, box_id, pull_engine, quantity=quantity)


async def test_open_box_insufficient_funds_leaves_nothing_behind(
    session_factory, make_user, make_box, balance, pull_engine
):
    user_id = await make_user(coins=150)
    box_id = await make_box(price=100)

    with pytest.raises(InsufficientFundsError):
        await open_one(session_factory, user_id, box_id, pull_engine, quantity=2)

    assert await balance(user_id) == 150
    assert await count_pulls(session_factory, user_id) == 0


async def test_open_missing_or_broken_box(session_factory, make_user, make_box, balance, pull_engine):
    user_id = await make_user(coins=1000)

    with pytest.raises(NotFoundError):
        await open_one(session_factory, user_id, 999, pull_engine)

    inactive = await make_box(is_active=False)
    with pytest.raises(ConfigurationError):
        await open_one(session_factory, user_id, inactive, pull_engine)

    empty = await make_box(values=())
    with pytest.raises(ConfigurationError):
        await open_one(session_factory, user_id, empty, pull_engine)

    zero_weights = await make_box(values=(10, 20), rates=(0, 0))
    with pytest.raises(ConfigurationError):
        await open_one(session_factory, user_id, zero_weights, pull_engine)

    assert await balance(user_id) == 1000


async def test_list_active_boxes_skips_inactive(session_factory, make_box):
    active = await make_box()
    await make_box(is_active=False)
    async with session_factory() as session:
        boxes = await crud.list_active_boxes(session)
    assert [b.id for b in boxes] == [active]


# ===== SELLING =====

async def test_sell_pull_credits_snapshot_value(session_factory, make_user, make_box, balance, pull_engine):
    user_id = await make_user(coins=100)
    box_id = await make_box(values=(40,), price=100)
    result = await open_one(session_factory, user_id, box_id, pull_engine)
    pull_id = result["pulls"][0].id

    async with session_factory() as session:
        sale = await crud.sell_pull(session, user_id, pull_id)

    assert sale == {"coins_received": 40, "new_balance": 40}
    assert await balance(user_id) == 40
    assert await count_pulls(session_factory, user_id) == 0
    async with session_factory() as session:
        history = (await session.execute(select(SaleHistory))).scalars().all()
    assert [(h.user_id, h.coins_received, h.card_name) for h in history] == [(user_id, 40, "Card 40")]


async def test_cannot_sell_someone_elses_pull(session_factory, make_user, make_box, pull_engine):
    owner = await make_user()
    other = await make_user()
    box_id = await make_box()
    result = await open_one(session_factory, owner, box_id, pull_engine)

    async with session_factory() as session:
        with pytest.raises(NotFoundError):
            await crud.sell_pull(session, other, result["pulls"][0].id)


async def test_cannot_sell_twice(session_factory, make_user, make_box, balance, pull_engine):
    user_id = await make_user(coins=100)
    box_id = await make_box(values=(40,))
    result = await open_one(session_factory, user_id, box_id, pull_engine)
    pull_id = result["pulls"][0].id

    async with session_factory() as session:
        await crud.sell_pull(session, user_id, pull_id)
    async with session_factory() as session:
        with pytest.raises(NotFoundError):
            await crud.sell_pull(session, user_id, pull_id)
    assert await balance(user_id) == 40


async def test_sell_all_skips_cart(session_factory, make_user, make_box, balance, pull_engine):
    user_id = await make_user(coins=400)
    box_id = await make_box(values=(25,), price=100)
    result = await open_one(session_factory, user_id, box_id, pull_engine, quantity=4)
    kept = result["pulls"][0].id

    async with session_factory() as session:
        await crud.add_to_cart(session, user_id, kept)
    async with session_factory() as session:
        outcome = await crud.sell_all(session, user_id)

    assert outcome == {"sold": 3, "coins_received": 75, "new_balance": 75}
    async with session_factory() as session:
        remaining = await crud.list_pulls(session, user_id)
    assert [p.id for p in remaining] == [kept]
    assert remaining[0].cart_item is not None


# ===== CART =====

async def test_cart_rules(session_factory, make_user, make_box, pull_engine):
    user_id = await make_user(coins=200)
    box_id = await make_box(values=(30,))
    result = await open_one(session_factory, user_id, box_id, pull_engine, quantity=2)
    first, second = (p.id for p in result["pulls"])

    async with session_factory() as session:
        await crud.add_to_cart(session, user_id, first)
    async with session_factory() as session:
        with pytest.raises(StateError):
            await crud.add_to_cart(session, user_id, first)
    async with session_factory() as session:
        with pytest.raises(StateError):
            await crud.sell_pull(session, user_id, first)

    async with session_factory() as session:
        await crud.add_to_cart(session, user_id, second)
        assert await crud.get_cart_total(session, user_id) == 60

    async with session_factory() as session:
        await crud.remove_from_cart(session, user_id, first)
        assert await crud.get_cart_total(session, user_id) == 30

    async with session_factory() as session:
        with pytest.raises(NotFoundError):
            await crud.remove_from_cart(session, user_id, first)
