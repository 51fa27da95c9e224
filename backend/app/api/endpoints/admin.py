from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.api.endpoints.account import clamp_limit
from app.api.errors import to_http_exception
from app.core.database import get_db
from app.core.errors import CreditsEngineError
from app.core.security import CurrentUser, require_admin
from app.schemas.credits import TransactionHistoryItem
from app.services import credits_engine

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(require_admin)])


class CreditAdjustRequest(BaseModel):
    user_id: str
    delta: int
    reason: str | None = None


@router.post("/admin/credits/adjust")
async def admin_adjust_credits(
    body: CreditAdjustRequest,
    db: Session = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
) -> dict:
    user_id = (body.user_id or "").strip()
    if not user_id:
        raise HTTPException(status_code=400, detail="Invalid user_id")

    reason = (body.reason or "").strip()
    try:
        balance = credits_engine.adjust(db, user_id, int(body.delta), description=reason or None)
    except CreditsEngineError as e:
        raise to_http_exception(e)

    logger.info("admin.credits.adjust user_id=%s delta=%s by=%s", user_id, body.delta, admin.email)
    return {"ok": True, "user_id": user_id, "delta": int(body.delta), "balance": balance}


@router.get("/admin/users/{user_id}/credits")
async def admin_get_user_credits(user_id: str, limit: int = 20, db: Session = Depends(get_db)) -> dict:
    try:
        balance = credits_engine.get_balance(db, user_id)
    except CreditsEngineError as e:
        raise to_http_exception(e)
    limit = clamp_limit(limit)
    rows = credits_engine.list_transactions(db, user_id, limit=limit)
    return {
        "user_id": user_id,
        "balance": balance.balance,
        "lifetime_credits": balance.lifetime_credits,
        "replayed_balance": credits_engine.replay_balance(db, user_id),
        "transactions": [TransactionHistoryItem.model_validate(r).model_dump(mode="json") for r in rows],
    }
