# api/routers/boxes.py
import logging
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_cache, get_current_user, get_pull_engine, get_session
from api.schemas import BoxOut, OpenBoxRequest, OpenBoxResponse, PulledCard
from database import crud
from database.models.user import User
from game.pull_engine import PullEngine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/boxes", tags=["boxes"])

BOX_CATALOGUE_KEY = "boxes:active"


@router.get("", response_model=List[BoxOut])
async def list_boxes(
    session: AsyncSession = Depends(get_session),
    cache=Depends(get_cache),
):
    """Active boxes with their card pools, most opened first"""
    cached = await cache.get(BOX_CATALOGUE_KEY)
    if cached is not None:
        return cached

    boxes = await crud.list_active_boxes(session)
    catalogue = [BoxOut.model_validate(box).model_dump(mode="json") for box in boxes]
    await cache.set(BOX_CATALOGUE_KEY, catalogue)
    return catalogue


@router.post("/{box_id}/open", response_model=OpenBoxResponse)
async def open_box(
    box_id: int,
    payload: OpenBoxRequest,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    engine: PullEngine = Depends(get_pull_engine),
):
    result = await crud.open_box(session, user.id, box_id, payload.quantity, engine)
    return OpenBoxResponse(
        pulls=[PulledCard.from_pull(pull) for pull in result["pulls"]],
        total_cost=result["total_cost"],
        remaining_coins=result["remaining_coins"],
    )
