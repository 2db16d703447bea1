# api/routers/battles.py
import json
import logging
import secrets
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status
from fastapi.responses import StreamingResponse

from api.deps import get_battle_manager, get_current_user, get_event_bus, get_settings_dep
from api.schemas import (
    AddBotsRequest,
    AddBotsResponse,
    AutoStartResponse,
    BattleOut,
    CancelResponse,
    CreateBattleRequest,
    ReadyResponse,
    SettlementOut,
)
from config import Settings
from database.models.battle import BattleStatus, TERMINAL_STATUSES
from database.models.user import User
from game.battle_system import BattleManager
from services.events import battle_channel

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/battles", tags=["battles"])

SSE_KEEPALIVE_SECONDS = 15
FINAL_EVENTS = ("battle.finished", "battle.cancelled")


# ===== CRON =====

@router.post("/auto-start", response_model=AutoStartResponse)
async def auto_start(
    authorization: Optional[str] = Header(default=None),
    settings: Settings = Depends(get_settings_dep),
    manager: BattleManager = Depends(get_battle_manager),
):
    """External cron entry point; same scan as the in-process scheduler"""
    expected = f"Bearer {settings.CRON_SECRET}"
    if not authorization or not secrets.compare_digest(authorization, expected):
        logger.warning("[AUTO-START] Unauthorized cron call")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

    results = await manager.auto_start()
    return AutoStartResponse(processed=len(results), results=results)


# ===== LOBBY =====

@router.get("", response_model=List[BattleOut])
async def list_battles(
    status_filter: Optional[BattleStatus] = Query(default=None, alias="status"),
    limit: int = 50,
    manager: BattleManager = Depends(get_battle_manager),
):
    battles = await manager.list_battles(status=status_filter, limit=min(max(limit, 1), 100))
    return [BattleOut.from_battle(battle) for battle in battles]


@router.post("", response_model=BattleOut, status_code=status.HTTP_201_CREATED)
async def create_battle(
    payload: CreateBattleRequest,
    user: User = Depends(get_current_user),
    manager: BattleManager = Depends(get_battle_manager),
):
    battle = await manager.create_battle(
        creator_id=user.id,
        box_id=payload.box_id,
        entry_fee=payload.entry_fee,
        rounds=payload.rounds,
        max_participants=payload.max_participants,
        mode=payload.mode,
    )
    return BattleOut.from_battle(battle, with_pulls=True)


@router.get("/{battle_id}", response_model=BattleOut)
async def get_battle(battle_id: int, manager: BattleManager = Depends(get_battle_manager)):
    battle = await manager.get_battle(battle_id)
    return BattleOut.from_battle(battle, with_pulls=True)


@router.post("/{battle_id}/join", response_model=BattleOut)
async def join_battle(
    battle_id: int,
    user: User = Depends(get_current_user),
    manager: BattleManager = Depends(get_battle_manager),
):
    await manager.join(battle_id, user.id)
    return BattleOut.from_battle(await manager.get_battle(battle_id), with_pulls=True)


@router.post("/{battle_id}/bots", response_model=AddBotsResponse)
async def add_bots(
    battle_id: int,
    payload: AddBotsRequest,
    user: User = Depends(get_current_user),
    manager: BattleManager = Depends(get_battle_manager),
):
    """Admin only: seat bot accounts in a waiting lobby"""
    added = await manager.add_bots(battle_id, user.id, payload.count)
    battle = await manager.get_battle(battle_id)
    return AddBotsResponse(battle_id=battle_id, added=len(added), participant_count=battle.participant_count)


@router.post("/{battle_id}/ready", response_model=ReadyResponse)
async def mark_ready(
    battle_id: int,
    user: User = Depends(get_current_user),
    manager: BattleManager = Depends(get_battle_manager),
):
    all_ready = await manager.mark_ready(battle_id, user.id)
    return ReadyResponse(battle_id=battle_id, is_ready=True, all_ready=all_ready)


@router.delete("/{battle_id}/ready", response_model=ReadyResponse)
async def unmark_ready(
    battle_id: int,
    user: User = Depends(get_current_user),
    manager: BattleManager = Depends(get_battle_manager),
):
    all_ready = await manager.unmark_ready(battle_id, user.id)
    return ReadyResponse(battle_id=battle_id, is_ready=False, all_ready=all_ready)


@router.post("/{battle_id}/start", response_model=SettlementOut)
async def start_battle(
    battle_id: int,
    user: User = Depends(get_current_user),
    manager: BattleManager = Depends(get_battle_manager),
):
    settlement = await manager.start(battle_id, user_id=user.id)
    return SettlementOut(
        battle_id=settlement.battle_id,
        mode=settlement.mode,
        total_prize=settlement.total_prize,
        winner_user_id=settlement.winner_user_id,
        payouts=settlement.payouts,
    )


@router.post("/{battle_id}/cancel", response_model=CancelResponse)
async def cancel_battle(
    battle_id: int,
    user: User = Depends(get_current_user),
    manager: BattleManager = Depends(get_battle_manager),
):
    refunded = await manager.cancel(battle_id, user_id=user.id)
    return CancelResponse(battle_id=battle_id, refunded=refunded)


@router.delete("/{battle_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_battle(
    battle_id: int,
    user: User = Depends(get_current_user),
    manager: BattleManager = Depends(get_battle_manager),
):
    await manager.delete_battle(battle_id, user.id)


# ===== LIVE EVENTS =====

@router.get("/{battle_id}/events")
async def battle_events(
    battle_id: int,
    request: Request,
    manager: BattleManager = Depends(get_battle_manager),
    events=Depends(get_event_bus),
):
    """Server-sent events for one battle until it finishes or is cancelled"""
    await manager.get_battle(battle_id)  # 404 before the stream opens

    async def stream():
        async with events.subscribe(battle_channel(battle_id)) as subscription:
            # Snapshot only after subscribing, so a final event cannot slip between the two
            battle = await manager.get_battle(battle_id)
            snapshot = {"type": "battle.snapshot", "battle_id": battle_id, "status": battle.status.value}
            yield f"event: {snapshot['type']}\ndata: {json.dumps(snapshot)}\n\n"
            if battle.status in TERMINAL_STATUSES:
                return
            while not await request.is_disconnected():
                event = await subscription.get(timeout=SSE_KEEPALIVE_SECONDS)
                if event is None:
                    yield ": keep-alive\n\n"
                    continue
                yield f"event: {event['type']}\ndata: {json.dumps(event, default=str)}\n\n"
                if event["type"] in FINAL_EVENTS:
                    return

    return StreamingResponse(
        stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
