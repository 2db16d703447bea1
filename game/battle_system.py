# game/battle_system.py
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from sqlalchemy import select, update, and_, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from database import crud
from database.models.battle import Battle, BattleMode, BattleStatus, TERMINAL_STATUSES
from database.models.battle_participant import BattleParticipant
from database.models.battle_pull import BattlePull
from database.models.box import Box
from database.models.pull import Pull
from database.models.user import User
from game.exceptions import (
    CapacityError,
    InvalidAmountError,
    NotFoundError,
    PackAttackError,
    PermissionDeniedError,
    StateError,
)
from game.pack_system import BATTLE_SETTINGS
from game.pull_engine import PullEngine
from game.settlement import compute_payouts, pick_winner
from services.events import InMemoryEventBus, battle_channel
from services.notifier import NullNotifier

logger = logging.getLogger(__name__)


@dataclass
class Settlement:
    """Outcome of a resolved battle"""
    battle_id: int
    mode: BattleMode
    total_prize: int
    winner_user_id: Optional[int]
    payouts: Dict[int, int] = field(default_factory=dict)  # user_id -> coins


class BattleManager:
    """
    Battle lifecycle: lobby, rounds and settlement.

    Every state change is one database transaction guarded by a conditional
    UPDATE on the battle row, so capacity, start and payout hold under
    concurrent requests without application locks.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        engine: Optional[PullEngine] = None,
        notifier=None,
        events=None,
        grace_period: timedelta = timedelta(minutes=30),
        lobby_expiry: timedelta = timedelta(hours=24),
        stall_timeout: timedelta = timedelta(minutes=5),
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.session_factory = session_factory
        self.engine = engine or PullEngine()
        self.notifier = notifier or NullNotifier()
        self.events = events or InMemoryEventBus()
        self.grace_period = grace_period
        self.lobby_expiry = lobby_expiry
        self.stall_timeout = stall_timeout
        self.clock = clock
        self._background: set = set()

    # ===== HELPERS =====

    async def _load_battle(
        self,
        session: AsyncSession,
        battle_id: int,
        with_pulls: bool = False,
        with_cards: bool = False,
    ) -> Battle:
        options = [selectinload(Battle.participants).selectinload(BattleParticipant.user)]
        if with_pulls:
            options.append(selectinload(Battle.pulls))
        if with_cards:
            options.append(selectinload(Battle.box).selectinload(Box.cards))
        else:
            options.append(selectinload(Battle.box))

        result = await session.execute(
            select(Battle)
            .options(*options)
            .where(Battle.id == battle_id)
            .execution_options(populate_existing=True)
        )
        battle = result.scalar_one_or_none()
        if not battle:
            raise NotFoundError("Battle", battle_id)
        return battle

    async def _transition(
        self,
        session: AsyncSession,
        battle_id: int,
        from_status: BattleStatus,
        **values,
    ) -> bool:
        """Conditional status change; False when another request got there first"""
        result = await session.execute(
            update(Battle)
            .where(and_(Battle.id == battle_id, Battle.status == from_status))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def _require_creator_or_admin(self, session: AsyncSession, battle: Battle, user_id: int):
        user = await crud.get_user(session, user_id)
        if battle.creator_id != user_id and not user.is_admin:
            raise PermissionDeniedError("Only the battle creator or an admin can do this")

    def _spawn(self, coro):
        """Run a post-commit side effect without blocking the caller"""
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def drain(self):
        """Wait for pending notifications (shutdown and tests)"""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def _publish(self, battle_id: int, event_type: str, **payload):
        await self.events.publish(
            battle_channel(battle_id),
            {"type": event_type, "battle_id": battle_id, **payload},
        )

    # ===== LOBBY =====

    async def _take_seat(self, session: AsyncSession, battle_id: int, user_id: int) -> BattleParticipant:
        existing = await session.scalar(
            select(BattleParticipant.id).where(
                and_(BattleParticipant.battle_id == battle_id, BattleParticipant.user_id == user_id)
            )
        )
        if existing:
            raise StateError("You are already in this battle")

        # Claim the seat first: the capacity check and the increment are one
        # statement, so concurrent joins cannot overfill the lobby.
        result = await session.execute(
            update(Battle)
            .where(
                and_(
                    Battle.id == battle_id,
                    Battle.status == BattleStatus.WAITING,
                    Battle.participant_count < Battle.max_participants,
                )
            )
            .values(
                participant_count=Battle.participant_count + 1,
                total_prize=Battle.total_prize + Battle.entry_fee,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            row = (await session.execute(
                select(Battle.status, Battle.max_participants).where(Battle.id == battle_id)
            )).one_or_none()
            if row is None:
                raise NotFoundError("Battle", battle_id)
            if row.status != BattleStatus.WAITING:
                raise StateError("This battle is no longer accepting participants")
            raise CapacityError(battle_id, row.max_participants)

        row = (await session.execute(
            select(Battle.participant_count, Battle.max_participants, Battle.entry_fee)
            .where(Battle.id == battle_id)
        )).one()

        now = self.clock()
        if row.participant_count == row.max_participants:
            await session.execute(
                update(Battle)
                .where(Battle.id == battle_id)
                .values(full_at=now)
                .execution_options(synchronize_session=False)
            )

        await crud.debit_coins(session, user_id, row.entry_fee)

        participant = BattleParticipant(
            battle_id=battle_id,
            user_id=user_id,
            slot=row.participant_count,
            joined_at=now,
        )
        session.add(participant)
        try:
            await session.flush()
        except IntegrityError:
            raise StateError("You are already in this battle")
        return participant

    async def create_battle(
        self,
        creator_id: int,
        box_id: int,
        entry_fee: int,
        rounds: int,
        max_participants: int,
        mode: BattleMode = BattleMode.NORMAL,
    ) -> Battle:
        """Create a WAITING battle; the creator takes the first seat and pays"""
        if entry_fee < 0:
            raise InvalidAmountError(f"Entry fee must not be negative: {entry_fee}")
        if not BATTLE_SETTINGS["min_rounds"] <= rounds <= BATTLE_SETTINGS["max_rounds"]:
            raise InvalidAmountError(
                f"Rounds must be between {BATTLE_SETTINGS['min_rounds']} and {BATTLE_SETTINGS['max_rounds']}"
            )
        if not BATTLE_SETTINGS["min_participants"] <= max_participants <= BATTLE_SETTINGS["max_participants"]:
            raise InvalidAmountError(
                f"Participants must be between {BATTLE_SETTINGS['min_participants']} "
                f"and {BATTLE_SETTINGS['max_participants']}"
            )

        async with self.session_factory() as session:
            box = await crud.get_box_with_cards(session, box_id)
            crud.ensure_openable(box, self.engine)
            creator = await crud.get_user(session, creator_id)

            battle = Battle(
                creator_id=creator_id,
                box_id=box_id,
                entry_fee=entry_fee,
                rounds=rounds,
                max_participants=max_participants,
                mode=mode,
                status=BattleStatus.WAITING,
                created_at=self.clock(),
            )
            session.add(battle)
            await session.flush()
            battle_id = battle.id

            await self._take_seat(session, battle_id, creator_id)
            await session.commit()

            info = {
                "battle_id": battle_id,
                "box_name": box.name,
                "players": max_participants,
                "rounds": rounds,
                "mode": mode.value,
                "entry_fee": entry_fee,
                "creator": creator.username or creator.email,
            }

        logger.info(f"⚔️ Battle {battle_id} created by user {creator_id} ({mode.value}, {max_participants} players)")
        self._spawn(self.notifier.battle_created(info))
        return await self.get_battle(battle_id)

    async def join(self, battle_id: int, user_id: int) -> BattleParticipant:
        async with self.session_factory() as session:
            participant = await self._take_seat(session, battle_id, user_id)
            await session.commit()

        logger.info(f"👥 User {user_id} joined battle {battle_id} (slot {participant.slot})")
        await self._publish(battle_id, "battle.joined", user_id=user_id, slot=participant.slot)
        return participant

    async def add_bots(self, battle_id: int, admin_id: int, count: int = 1) -> List[BattleParticipant]:
        """Admin fills free seats with bot accounts; bots pay the entry fee like anyone"""
        if not 1 <= count <= BATTLE_SETTINGS["max_participants"]:
            raise InvalidAmountError(
                f"Bot count must be between 1 and {BATTLE_SETTINGS['max_participants']}, got {count}"
            )

        async with self.session_factory() as session:
            admin = await crud.get_user(session, admin_id)
            if not admin.is_admin:
                raise PermissionDeniedError("Admin access required")

            battle = await self._load_battle(session, battle_id)
            if battle.status != BattleStatus.WAITING:
                raise StateError("Bots can only join waiting battles")
            spots_left = battle.max_participants - battle.participant_count
            if spots_left <= 0:
                raise CapacityError(battle_id, battle.max_participants)
            if count > spots_left:
                raise InvalidAmountError(f"Only {spots_left} seat(s) left for bots")

            seated = [p.user_id for p in battle.participants]
            bots = (await session.execute(
                select(User)
                .where(
                    User.is_bot.is_(True),
                    User.coins >= battle.entry_fee,
                    User.id.not_in(seated),
                )
                .order_by(User.created_at, User.id)
                .limit(count)
            )).scalars().all()
            if len(bots) < count:
                raise StateError(f"Only {len(bots)} bot(s) available")

            participants = [await self._take_seat(session, battle_id, bot.id) for bot in bots]
            await session.commit()

        logger.info(f"🤖 Admin {admin_id} added {len(participants)} bot(s) to battle {battle_id}")
        for participant in participants:
            await self._publish(
                battle_id, "battle.joined", user_id=participant.user_id, slot=participant.slot, bot=True
            )
        return participants

    @staticmethod
    def _all_ready(participants) -> bool:
        return all(p.is_ready or p.user.is_bot for p in participants)

    async def set_ready(self, battle_id: int, user_id: int, ready: bool = True) -> bool:
        """Mark or unmark ready; returns whether everyone is now ready"""
        async with self.session_factory() as session:
            battle = await self._load_battle(session, battle_id)
            if battle.status != BattleStatus.WAITING:
                raise StateError("Battle is not in waiting state")
            if ready and not battle.is_full:
                raise StateError("Battle is not full yet")

            participant = next((p for p in battle.participants if p.user_id == user_id), None)
            if not participant:
                raise StateError("You are not in this battle")

            participant.is_ready = ready
            await session.commit()
            all_ready = self._all_ready(battle.participants)

        await self._publish(battle_id, "battle.ready", user_id=user_id, is_ready=ready, all_ready=all_ready)
        return all_ready

    async def mark_ready(self, battle_id: int, user_id: int) -> bool:
        return await self.set_ready(battle_id, user_id, True)

    async def unmark_ready(self, battle_id: int, user_id: int) -> bool:
        return await self.set_ready(battle_id, user_id, False)

    async def cancel(self, battle_id: int, user_id: Optional[int] = None, reason: str = "cancelled") -> int:
        """WAITING -> CANCELLED, refunding every entry fee; returns refunded seats"""
        async with self.session_factory() as session:
            battle = await self._load_battle(session, battle_id)
            if user_id is not None:
                await self._require_creator_or_admin(session, battle, user_id)
            if battle.status != BattleStatus.WAITING:
                raise StateError("Only waiting battles can be cancelled")

            if not await self._transition(
                session, battle_id, BattleStatus.WAITING,
                status=BattleStatus.CANCELLED, cancelled_at=self.clock(),
            ):
                raise StateError("Battle has already started or finished")

            # Seats are frozen once the status moved, re-read them under the lock
            participants = (await session.execute(
                select(BattleParticipant).where(BattleParticipant.battle_id == battle_id)
            )).scalars().all()
            for participant in participants:
                await crud.credit_coins(session, participant.user_id, battle.entry_fee)
            await session.commit()

        logger.info(f"🚫 Battle {battle_id} {reason}: refunded {len(participants)} x {battle.entry_fee} coins")
        await self._publish(battle_id, "battle.cancelled", reason=reason)
        return len(participants)

    async def delete_battle(self, battle_id: int, user_id: int) -> None:
        """Admin removal of a finished or cancelled battle"""
        async with self.session_factory() as session:
            user = await crud.get_user(session, user_id)
            if not user.is_admin:
                raise PermissionDeniedError("Admin access required")

            battle = await self._load_battle(session, battle_id, with_pulls=True)
            if battle.status not in TERMINAL_STATUSES:
                raise StateError("Can only delete completed or cancelled battles")

            await session.delete(battle)
            await session.commit()

        logger.info(f"🗑️ Battle {battle_id} deleted by admin {user_id}")

    # ===== START AND ROUNDS =====

    def _ready_to_start(self, battle: Battle, now: datetime) -> bool:
        if self._all_ready(battle.participants):
            return True
        full_since = battle.full_at or battle.created_at
        return full_since is not None and full_since + self.grace_period <= now

    async def start(self, battle_id: int, user_id: Optional[int] = None, now: Optional[datetime] = None) -> Settlement:
        """
        WAITING -> IN_PROGRESS, play every round, then settle.

        Needs a full lobby where everyone is ready, or one that has been full
        for the whole grace period.
        """
        now = now or self.clock()
        async with self.session_factory() as session:
            battle = await self._load_battle(session, battle_id, with_cards=True)
            if user_id is not None:
                await self._require_creator_or_admin(session, battle, user_id)
            if battle.status != BattleStatus.WAITING:
                raise StateError("Battle has already started or finished")
            if not battle.is_full:
                missing = battle.max_participants - battle.participant_count
                raise StateError(f"Battle needs {missing} more participant(s)")
            if not self._ready_to_start(battle, now):
                not_ready = sum(1 for p in battle.participants if not (p.is_ready or p.user.is_bot))
                raise StateError(f"Waiting for {not_ready} participant(s) to be ready")
            crud.ensure_openable(battle.box, self.engine)

            if not await self._transition(
                session, battle_id, BattleStatus.WAITING,
                status=BattleStatus.IN_PROGRESS, started_at=now,
            ):
                raise StateError("Battle has already started or finished")

            await session.execute(
                update(BattleParticipant)
                .where(BattleParticipant.battle_id == battle_id)
                .values(is_ready=True)
                .execution_options(synchronize_session=False)
            )
            await session.commit()

        logger.info(f"🚀 Battle {battle_id} started")
        await self._publish(battle_id, "battle.started")

        await self._play_rounds(battle_id)
        return await self.resolve(battle_id)

    async def resume(self, battle_id: int) -> Settlement:
        """Finish an IN_PROGRESS battle from its first unrecorded round"""
        await self._play_rounds(battle_id)
        return await self.resolve(battle_id)

    async def _play_rounds(self, battle_id: int):
        async with self.session_factory() as session:
            battle = await self._load_battle(session, battle_id, with_cards=True)
        if battle.status != BattleStatus.IN_PROGRESS:
            raise StateError(f"Battle {battle_id} is not in progress")

        for round_number in range(battle.rounds_completed + 1, battle.rounds + 1):
            await self._record_round(battle, round_number)

    async def record_round_pulls(self, battle_id: int, round_number: int):
        """Record one round; it must be the next unrecorded round"""
        async with self.session_factory() as session:
            battle = await self._load_battle(session, battle_id, with_cards=True)
        if battle.status != BattleStatus.IN_PROGRESS:
            raise StateError(f"Battle {battle_id} is not in progress")
        if not 1 <= round_number <= battle.rounds:
            raise InvalidAmountError(f"Round must be between 1 and {battle.rounds}, got {round_number}")
        await self._record_round(battle, round_number)

    async def _record_round(self, battle: Battle, round_number: int):
        """Draw one pack per participant and commit the whole round at once"""
        box = battle.box
        participant_id = None
        try:
            async with self.session_factory() as session:
                # Claiming the round first keeps two workers from recording it twice
                result = await session.execute(
                    update(Battle)
                    .where(
                        and_(
                            Battle.id == battle.id,
                            Battle.status == BattleStatus.IN_PROGRESS,
                            Battle.rounds_completed == round_number - 1,
                        )
                    )
                    .values(rounds_completed=round_number)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    raise StateError(f"Round {round_number} of battle {battle.id} was already recorded")

                now = self.clock()
                round_values = {}
                for participant in battle.participants:
                    participant_id = participant.id
                    value = 0
                    for card in self.engine.draw_pack(box.cards, box.cards_per_pack):
                        pull = Pull(
                            user_id=participant.user_id,
                            box_id=box.id,
                            card_id=card.id,
                            card_value=card.coin_value,
                        )
                        session.add(pull)
                        session.add(BattlePull(
                            battle_id=battle.id,
                            participant_id=participant.id,
                            pull=pull,
                            round_number=round_number,
                            coin_value=card.coin_value,
                            item_name=card.name,
                            item_rarity=card.rarity,
                            pulled_at=now,
                        ))
                        value += card.coin_value

                    await session.execute(
                        update(BattleParticipant)
                        .where(BattleParticipant.id == participant.id)
                        .values(
                            total_value=BattleParticipant.total_value + value,
                            rounds_pulled=round_number,
                        )
                        .execution_options(synchronize_session=False)
                    )
                    round_values[participant.user_id] = value

                await session.commit()
        except PackAttackError:
            raise
        except Exception:
            logger.exception(
                f"❌ Battle {battle.id} round {round_number} failed (participant {participant_id})"
            )
            raise

        logger.info(f"🎴 Battle {battle.id} round {round_number}/{battle.rounds} recorded")
        await self._publish(battle.id, "battle.round", round=round_number, values=round_values)

    # ===== SETTLEMENT =====

    async def resolve(self, battle_id: int) -> Settlement:
        """
        IN_PROGRESS -> FINISHED with payouts, in one transaction.

        The status change is the first write, so a concurrent second call
        matches no row and raises StateError without paying anything.
        """
        now = self.clock()
        async with self.session_factory() as session:
            battle = await self._load_battle(session, battle_id)
            if battle.status != BattleStatus.IN_PROGRESS:
                raise StateError(f"Battle {battle_id} is not in progress")
            if battle.rounds_completed < battle.rounds:
                raise StateError(
                    f"Battle {battle_id} has {battle.rounds - battle.rounds_completed} unrecorded round(s)"
                )

            if not await self._transition(
                session, battle_id, BattleStatus.IN_PROGRESS,
                status=BattleStatus.FINISHED, finished_at=now,
            ):
                raise StateError(f"Battle {battle_id} was already settled")

            battle = await self._load_battle(session, battle_id)
            participants = battle.participants
            payouts = compute_payouts(participants, battle.mode, battle.total_prize)
            winner = pick_winner(participants, battle.mode)

            for participant in participants:
                amount = payouts[participant.id]
                participant.payout = amount
                await crud.credit_coins(session, participant.user_id, amount)

            if winner:
                battle.winner_id = winner.user_id
                # Winner takes every card pulled in the battle
                await session.execute(
                    update(Pull)
                    .where(Pull.id.in_(
                        select(BattlePull.pull_id).where(BattlePull.battle_id == battle_id)
                    ))
                    .values(user_id=winner.user_id)
                    .execution_options(synchronize_session=False)
                )

            settlement = Settlement(
                battle_id=battle_id,
                mode=battle.mode,
                total_prize=battle.total_prize,
                winner_user_id=winner.user_id if winner else None,
                payouts={p.user_id: payouts[p.id] for p in participants},
            )
            winner_name = (winner.user.username or winner.user.email) if winner else None
            await session.commit()

        logger.info(
            f"🏁 Battle {battle_id} finished ({settlement.mode.value}): "
            f"winner={settlement.winner_user_id} payouts={settlement.payouts}"
        )
        await self._publish(
            battle_id,
            "battle.finished",
            winner_user_id=settlement.winner_user_id,
            payouts=settlement.payouts,
        )
        self._spawn(self.notifier.battle_finished({
            "battle_id": battle_id,
            "winner": winner_name,
            "total_prize": settlement.total_prize,
        }))
        return settlement

    # ===== AUTO-START =====

    async def auto_start(self, now: Optional[datetime] = None) -> List[dict]:
        """
        Start lobbies that have been full for the grace period, resume
        battles stuck IN_PROGRESS past the stall timeout and cancel
        under-filled lobbies past their expiry.

        One battle failing never stops the scan; every outcome is reported.
        """
        now = now or self.clock()
        start_cutoff = now - self.grace_period
        stall_cutoff = now - self.stall_timeout
        expiry_cutoff = now - self.lobby_expiry

        async with self.session_factory() as session:
            to_start = (await session.execute(
                select(Battle.id)
                .where(
                    Battle.status == BattleStatus.WAITING,
                    Battle.participant_count >= Battle.max_participants,
                    or_(
                        Battle.full_at <= start_cutoff,
                        and_(Battle.full_at.is_(None), Battle.created_at <= start_cutoff),
                    ),
                )
                .order_by(Battle.id)
            )).scalars().all()

            # Started but never settled: a round or the payout failed earlier
            to_resume = (await session.execute(
                select(Battle.id)
                .where(
                    Battle.status == BattleStatus.IN_PROGRESS,
                    Battle.finished_at.is_(None),
                    Battle.started_at <= stall_cutoff,
                )
                .order_by(Battle.id)
            )).scalars().all()

            to_expire = (await session.execute(
                select(Battle.id)
                .where(
                    Battle.status == BattleStatus.WAITING,
                    Battle.participant_count < Battle.max_participants,
                    Battle.created_at <= expiry_cutoff,
                )
                .order_by(Battle.id)
            )).scalars().all()

        if to_start or to_resume or to_expire:
            logger.info(
                f"[AUTO-START] {len(to_start)} battle(s) to start, {len(to_resume)} to resume, "
                f"{len(to_expire)} to expire"
            )

        results = []
        for battle_id in to_resume:
            try:
                settlement = await self.resume(battle_id)
                results.append({
                    "battle_id": battle_id,
                    "status": "resumed",
                    "winner_user_id": settlement.winner_user_id,
                })
            except Exception as e:
                logger.exception(f"[AUTO-START] Failed to resume battle {battle_id}")
                results.append({"battle_id": battle_id, "status": "error", "error": str(e)})

        for battle_id in to_start:
            try:
                settlement = await self.start(battle_id, now=now)
                results.append({
                    "battle_id": battle_id,
                    "status": "started",
                    "winner_user_id": settlement.winner_user_id,
                })
            except Exception as e:
                logger.exception(f"[AUTO-START] Failed to start battle {battle_id}")
                results.append({"battle_id": battle_id, "status": "error", "error": str(e)})

        for battle_id in to_expire:
            try:
                refunded = await self.cancel(battle_id, reason="expired")
                results.append({"battle_id": battle_id, "status": "cancelled", "refunded": refunded})
            except Exception as e:
                logger.exception(f"[AUTO-START] Failed to expire battle {battle_id}")
                results.append({"battle_id": battle_id, "status": "error", "error": str(e)})

        return results

    # ===== QUERIES =====

    async def get_battle(self, battle_id: int) -> Battle:
        async with self.session_factory() as session:
            return await self._load_battle(session, battle_id, with_pulls=True)

    async def list_battles(self, status: Optional[BattleStatus] = None, limit: int = 50) -> List[Battle]:
        async with self.session_factory() as session:
            query = (
                select(Battle)
                .options(
                    selectinload(Battle.participants).selectinload(BattleParticipant.user),
                    selectinload(Battle.box),
                )
                .order_by(Battle.created_at.desc(), Battle.id.desc())
                .limit(limit)
            )
            if status:
                query = query.where(Battle.status == status)
            result = await session.execute(query)
            return list(result.scalars().all())
