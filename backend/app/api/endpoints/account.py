from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.api.errors import to_http_exception
from app.core.database import get_db
from app.core.errors import CreditsEngineError
from app.core.security import CurrentUser, get_current_user
from app.schemas.credits import (
    CreditsResponse,
    PurchaseHistoryItem,
    PurchaseListResponse,
    TransactionHistoryItem,
    TransactionListResponse,
)
from app.services import credits_engine, profiles, purchases


router = APIRouter(dependencies=[Depends(get_current_user)])


def clamp_limit(limit: int | None) -> int:
    return max(1, min(int(limit or 20), 100))


class MeResponse(BaseModel):
    id: str
    email: str
    full_name: str | None = None
    avatar_url: str | None = None
    role: str
    credits_balance: int
    lifetime_credits: int


class ProfileUpdateRequest(BaseModel):
    full_name: str | None = None
    avatar_url: str | None = None


def _me_response(db: Session, current_user: CurrentUser) -> MeResponse:
    try:
        profile = profiles.get_profile(db, current_user.id)
        balance = credits_engine.get_balance(db, current_user.id)
    except CreditsEngineError as e:
        raise to_http_exception(e)
    return MeResponse(
        id=profile.id,
        email=profile.email or current_user.email,
        full_name=profile.full_name or None,
        avatar_url=profile.avatar_url or None,
        role=current_user.role,
        credits_balance=balance.balance,
        lifetime_credits=balance.lifetime_credits,
    )


@router.get("/me", response_model=MeResponse)
async def me(db: Session = Depends(get_db), current_user: CurrentUser = Depends(get_current_user)):
    return _me_response(db, current_user)


@router.patch("/me", response_model=MeResponse)
async def update_me(
    body: ProfileUpdateRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    profiles.update_profile(db, current_user, full_name=body.full_name, avatar_url=body.avatar_url)
    return _me_response(db, current_user)


@router.get("/credits", response_model=CreditsResponse)
async def get_credits(db: Session = Depends(get_db), current_user: CurrentUser = Depends(get_current_user)):
    try:
        balance = credits_engine.get_balance(db, current_user.id)
    except CreditsEngineError as e:
        raise to_http_exception(e)
    return CreditsResponse(balance=balance.balance, lifetime_credits=balance.lifetime_credits)


@router.get("/credits/transactions", response_model=TransactionListResponse)
async def list_credit_transactions(
    limit: int = 20,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    limit = clamp_limit(limit)
    rows = credits_engine.list_transactions(db, current_user.id, limit=limit)
    return TransactionListResponse(items=[TransactionHistoryItem.model_validate(r) for r in rows], limit=limit)


@router.get("/purchases", response_model=PurchaseListResponse)
async def list_purchase_history(
    limit: int = 20,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    limit = clamp_limit(limit)
    rows = purchases.list_purchases(db, current_user.id, limit=limit)
    return PurchaseListResponse(items=[PurchaseHistoryItem.model_validate(r) for r in rows], limit=limit)
