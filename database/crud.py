# database/crud.py
from datetime import datetime
from typing import List, Optional, Sequence

from sqlalchemy import select, update, delete, and_, case, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from database.models.user import User
from database.models.box import Box
from database.models.card import Card
from database.models.pull import Pull
from database.models.cart_item import CartItem
from database.models.sale_history import SaleHistory
from database.models.battle import Battle, BattleStatus
from database.models.battle_participant import BattleParticipant
from database.models.battle_pull import BattlePull
from game.exceptions import (
    InsufficientFundsError,
    InvalidAmountError,
    ConfigurationError,
    NotFoundError,
    StateError,
)
from game.pack_system import PACK_SETTINGS, default_pull_rate
from game.pull_engine import PullEngine
import logging

logger = logging.getLogger(__name__)

# ===== USERS =====

async def create_user(
    session: AsyncSession,
    email: str,
    username: str = None,
    coins: int = 0,
    role: str = "USER",
    is_bot: bool = False,
) -> User:
    user = User(email=email, username=username, coins=coins, role=role, is_bot=is_bot)
    session.add(user)
    await session.commit()
    await session.refresh(user)

    logger.info(f"Created new {'bot' if is_bot else 'user'}: id={user.id} email={email}")
    return user


async def get_user(session: AsyncSession, user_id: int) -> User:
    user = await session.get(User, user_id)
    if not user:
        raise NotFoundError("User", user_id)
    return user


async def get_balance(session: AsyncSession, user_id: int) -> int:
    coins = await session.scalar(select(User.coins).where(User.id == user_id))
    if coins is None:
        raise NotFoundError("User", user_id)
    return coins


# ===== COIN LEDGER =====
# Balances only move through single conditional UPDATE statements, never
# read-modify-write in Python.

async def debit_coins(session: AsyncSession, user_id: int, amount: int) -> None:
    """Atomically take coins; InsufficientFundsError if the balance is short"""
    if amount < 0:
        raise InvalidAmountError(f"Debit amount must not be negative: {amount}")
    if amount == 0:
        await get_balance(session, user_id)
        return

    result = await session.execute(
        update(User)
        .where(and_(User.id == user_id, User.coins >= amount))
        .values(coins=User.coins - amount)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        available = await get_balance(session, user_id)
        raise InsufficientFundsError(user_id, amount, available)


async def credit_coins(session: AsyncSession, user_id: int, amount: int) -> None:
    """Atomically add coins"""
    if amount < 0:
        raise InvalidAmountError(f"Credit amount must not be negative: {amount}")
    if amount == 0:
        return

    result = await session.execute(
        update(User)
        .where(User.id == user_id)
        .values(coins=User.coins + amount)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise NotFoundError("User", user_id)


# ===== BOXES =====

async def create_box(
    session: AsyncSession,
    name: str,
    price: int,
    cards_per_pack: int = 1,
    description: str = None,
    is_active: bool = True,
) -> Box:
    if price < 0:
        raise InvalidAmountError(f"Box price must not be negative: {price}")
    if cards_per_pack < 1:
        raise ConfigurationError("cards_per_pack must be at least 1")

    box = Box(
        name=name,
        price=price,
        cards_per_pack=cards_per_pack,
        description=description,
        is_active=is_active,
    )
    session.add(box)
    await session.commit()
    await session.refresh(box)
    return box


async def add_card(
    session: AsyncSession,
    box_id: int,
    name: str,
    coin_value: int,
    rarity: str = "common",
    pull_rate: Optional[float] = None,
    image_url: str = None,
) -> Card:
    """Add a card to a box pool; pull_rate defaults to the rarity's weight"""
    if coin_value < 0:
        raise InvalidAmountError(f"Card value must not be negative: {coin_value}")
    if pull_rate is None:
        pull_rate = default_pull_rate(rarity)
    if pull_rate < 0:
        raise ConfigurationError("pull_rate must not be negative")

    if not await session.get(Box, box_id):
        raise NotFoundError("Box", box_id)

    card = Card(
        box_id=box_id,
        name=name,
        rarity=rarity,
        pull_rate=pull_rate,
        coin_value=coin_value,
        image_url=image_url,
    )
    session.add(card)
    await session.commit()
    await session.refresh(card)
    return card


async def get_box_with_cards(session: AsyncSession, box_id: int) -> Box:
    result = await session.execute(
        select(Box)
        .options(selectinload(Box.cards))
        .where(Box.id == box_id)
    )
    box = result.scalar_one_or_none()
    if not box:
        raise NotFoundError("Box", box_id)
    return box


async def list_active_boxes(session: AsyncSession) -> List[Box]:
    result = await session.execute(
        select(Box)
        .options(selectinload(Box.cards))
        .where(Box.is_active == True)  # noqa: E712
        .order_by(Box.popularity.desc(), Box.id)
    )
    return list(result.scalars().all())


def ensure_openable(box: Box, engine: PullEngine) -> None:
    if not box.is_active:
        raise ConfigurationError(f"Box {box.id} is not active")
    engine.validate_pool(box.cards)


# ===== OPENING PACKS =====

async def open_box(
    session: AsyncSession,
    user_id: int,
    box_id: int,
    quantity: int,
    engine: PullEngine,
) -> dict:
    """
    Open ``quantity`` packs: debit, draw and persist in one transaction.

    Cards are only returned after the commit, so a drawn card always has its
    Pull record.
    """
    if not PACK_SETTINGS["min_quantity"] <= quantity <= PACK_SETTINGS["max_quantity"]:
        raise InvalidAmountError(
            f"Quantity must be between {PACK_SETTINGS['min_quantity']} "
            f"and {PACK_SETTINGS['max_quantity']}, got {quantity}"
        )

    box = await get_box_with_cards(session, box_id)
    ensure_openable(box, engine)

    total_cost = box.price * quantity
    await debit_coins(session, user_id, total_cost)

    pulls = []
    for _ in range(quantity):
        for card in engine.draw_pack(box.cards, box.cards_per_pack):
            pull = Pull(
                user_id=user_id,
                box_id=box.id,
                card_id=card.id,
                card=card,
                card_value=card.coin_value,
            )
            session.add(pull)
            pulls.append(pull)

    await session.execute(
        update(Box)
        .where(Box.id == box.id)
        .values(popularity=Box.popularity + quantity)
        .execution_options(synchronize_session=False)
    )
    await session.commit()

    remaining = await get_balance(session, user_id)
    logger.info(
        f"📦 User {user_id} opened {quantity} pack(s) of box {box.id}: "
        f"{len(pulls)} cards, cost {total_cost}"
    )
    return {
        "pulls": pulls,
        "total_cost": total_cost,
        "remaining_coins": remaining,
    }


# ===== COLLECTION =====

def _locked_in_battle():
    """Pull is still part of a battle that has not finished"""
    return Pull.battle_pull.has(
        BattlePull.battle.has(Battle.status != BattleStatus.FINISHED)
    )


async def list_pulls(session: AsyncSession, user_id: int) -> List[Pull]:
    result = await session.execute(
        select(Pull)
        .options(selectinload(Pull.card), selectinload(Pull.cart_item))
        .where(Pull.user_id == user_id)
        .order_by(Pull.created_at.desc(), Pull.id.desc())
    )
    return list(result.scalars().all())


async def _get_owned_pull(session: AsyncSession, user_id: int, pull_id: int) -> Pull:
    result = await session.execute(
        select(Pull)
        .options(
            selectinload(Pull.card),
            selectinload(Pull.cart_item),
            selectinload(Pull.battle_pull).selectinload(BattlePull.battle),
        )
        .where(and_(Pull.id == pull_id, Pull.user_id == user_id))
    )
    pull = result.scalar_one_or_none()
    if not pull:
        raise NotFoundError("Pull", pull_id)
    return pull


def _ensure_free(pull: Pull) -> None:
    if pull.battle_pull and pull.battle_pull.battle.status != BattleStatus.FINISHED:
        raise StateError(f"Pull {pull.id} is locked in battle {pull.battle_pull.battle_id}")


def _sale_record(pull: Pull) -> SaleHistory:
    return SaleHistory(
        user_id=pull.user_id,
        card_id=pull.card_id,
        card_name=pull.card.name if pull.card else None,
        coins_received=pull.card_value,
    )


async def _delete_pull(session: AsyncSession, pull: Pull) -> bool:
    """Conditional delete; False when the pull was sold or carted meanwhile"""
    result = await session.execute(
        delete(Pull)
        .where(
            Pull.id == pull.id,
            Pull.user_id == pull.user_id,
            ~Pull.cart_item.has(),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        return False

    # Keep the battle history row, drop its link to the sold pull
    await session.execute(
        update(BattlePull)
        .where(BattlePull.pull_id == pull.id)
        .values(pull_id=None)
        .execution_options(synchronize_session=False)
    )
    return True


async def sell_pull(session: AsyncSession, user_id: int, pull_id: int) -> dict:
    """Sell one pull for its snapshot value"""
    pull = await _get_owned_pull(session, user_id, pull_id)
    if pull.cart_item:
        raise StateError("Cannot sell card that is in cart")
    _ensure_free(pull)

    if not await _delete_pull(session, pull):
        raise StateError(f"Pull {pull_id} was already sold or added to the cart")

    coins = pull.card_value
    session.add(_sale_record(pull))
    await credit_coins(session, user_id, coins)
    await session.commit()
    session.expunge(pull)

    return {
        "coins_received": coins,
        "new_balance": await get_balance(session, user_id),
    }


async def sell_all(session: AsyncSession, user_id: int) -> dict:
    """Sell every pull that is neither in the cart nor locked in a battle"""
    result = await session.execute(
        select(Pull)
        .options(selectinload(Pull.card))
        .where(
            Pull.user_id == user_id,
            ~Pull.cart_item.has(),
            ~_locked_in_battle(),
        )
    )
    pulls: Sequence[Pull] = result.scalars().all()

    sold = 0
    total = 0
    for pull in pulls:
        if not await _delete_pull(session, pull):
            continue
        sold += 1
        total += pull.card_value
        session.add(_sale_record(pull))

    await credit_coins(session, user_id, total)
    await session.commit()
    for pull in pulls:
        session.expunge(pull)

    logger.info(f"💰 User {user_id} sold {sold} cards for {total} coins")
    return {
        "sold": sold,
        "coins_received": total,
        "new_balance": await get_balance(session, user_id),
    }


# ===== CART =====

async def add_to_cart(session: AsyncSession, user_id: int, pull_id: int) -> CartItem:
    pull = await _get_owned_pull(session, user_id, pull_id)
    if pull.cart_item:
        raise StateError(f"Pull {pull_id} is already in the cart")
    _ensure_free(pull)

    item = CartItem(user_id=user_id, pull_id=pull_id)
    session.add(item)
    try:
        await session.commit()
    except IntegrityError:
        # Lost a race against another add for the same pull
        await session.rollback()
        raise StateError(f"Pull {pull_id} is already in the cart")
    return item


async def remove_from_cart(session: AsyncSession, user_id: int, pull_id: int) -> None:
    result = await session.execute(
        select(CartItem).where(
            and_(CartItem.pull_id == pull_id, CartItem.user_id == user_id)
        )
    )
    item = result.scalar_one_or_none()
    if not item:
        raise NotFoundError("CartItem", pull_id)

    await session.delete(item)
    await session.commit()


async def get_cart_total(session: AsyncSession, user_id: int) -> int:
    total = await session.scalar(
        select(func.coalesce(func.sum(Pull.card_value), 0))
        .join(CartItem, CartItem.pull_id == Pull.id)
        .where(CartItem.user_id == user_id)
    )
    return int(total or 0)


# ===== LEADERBOARD =====

async def leaderboard_rows(
    session: AsyncSession,
    start: datetime,
    end: datetime,
    limit: int = 100,
) -> List[dict]:
    """
    Per-player totals over battles finished in [start, end), bots excluded.

    Ordered by coins won, then battles won, then user id.
    """
    battles_played = func.count(BattleParticipant.id)
    battles_won = func.coalesce(func.sum(case((Battle.winner_id == User.id, 1), else_=0)), 0)
    coins_won = func.coalesce(func.sum(BattleParticipant.payout), 0)

    result = await session.execute(
        select(
            User.id,
            User.username,
            battles_played.label("battles_played"),
            battles_won.label("battles_won"),
            coins_won.label("coins_won"),
        )
        .join(BattleParticipant, BattleParticipant.user_id == User.id)
        .join(Battle, Battle.id == BattleParticipant.battle_id)
        .where(
            User.is_bot == False,  # noqa: E712
            Battle.status == BattleStatus.FINISHED,
            Battle.finished_at >= start,
            Battle.finished_at < end,
        )
        .group_by(User.id, User.username)
        .order_by(coins_won.desc(), battles_won.desc(), User.id)
        .limit(limit)
    )
    return [
        {
            "user_id": row.id,
            "username": row.username,
            "battles_played": int(row.battles_played),
            "battles_won": int(row.battles_won),
            "coins_won": int(row.coins_won),
        }
        for row in result
    ]
