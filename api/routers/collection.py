# api/routers/collection.py
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_current_user, get_session
from api.schemas import CartResponse, PullOut, SellAllResponse, SellResponse, UserOut
from database import crud
from database.models.user import User

router = APIRouter(tags=["collection"])


@router.get("/me", response_model=UserOut)
async def me(user: User = Depends(get_current_user)):
    return user


# ===== PULLS =====

@router.get("/pulls", response_model=List[PullOut])
async def list_pulls(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    pulls = await crud.list_pulls(session, user.id)
    return [PullOut.from_pull(pull) for pull in pulls]


@router.post("/pulls/sell-all", response_model=SellAllResponse)
async def sell_all(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    return await crud.sell_all(session, user.id)


@router.post("/pulls/{pull_id}/sell", response_model=SellResponse)
async def sell_pull(
    pull_id: int,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    return await crud.sell_pull(session, user.id, pull_id)


# ===== CART =====

@router.post("/cart/{pull_id}", response_model=CartResponse)
async def add_to_cart(
    pull_id: int,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    await crud.add_to_cart(session, user.id, pull_id)
    return CartResponse(pull_id=pull_id, cart_total=await crud.get_cart_total(session, user.id))


@router.delete("/cart/{pull_id}", response_model=CartResponse)
async def remove_from_cart(
    pull_id: int,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    await crud.remove_from_cart(session, user.id, pull_id)
    return CartResponse(pull_id=pull_id, cart_total=await crud.get_cart_total(session, user.id))
