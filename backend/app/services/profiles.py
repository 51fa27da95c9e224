from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.errors import NotFoundError, Unauthenticated
from app.core.settings import settings
from app.models.profile import Profile
from app.services.credits_engine import get_or_create_credit_account

logger = logging.getLogger(__name__)


def _require_identity(user: Any) -> str:
    user_id = str(getattr(user, "id", "") or "").strip()
    if not user_id:
        raise Unauthenticated("Not authenticated")
    return user_id


def ensure_profile(db: Session, user: Any, signup_bonus: int | None = None) -> tuple[Profile, bool]:
    """Make sure ``user`` has a profile and a funded credit account.

    Safe to call on every request and concurrently: both the profile and the
    account rely on their primary keys, so a lost insert race re-reads the
    winner's row and the signup bonus is only ever granted once.
    """
    user_id = _require_identity(user)
    bonus = settings.signup_bonus_credits if signup_bonus is None else int(signup_bonus)

    profile = db.query(Profile).filter(Profile.id == user_id).first()
    created = False
    if profile is None:
        try:
            profile = Profile(
                id=user_id,
                email=str(getattr(user, "email", "") or ""),
                full_name=str(getattr(user, "full_name", "") or ""),
                avatar_url=str(getattr(user, "avatar_url", "") or ""),
            )
            db.add(profile)
            db.commit()
            created = True
        except IntegrityError:
            db.rollback()
            logger.info("profiles.ensure.race user_id=%s", user_id)
            profile = db.query(Profile).filter(Profile.id == user_id).first()
            if profile is None:
                raise
        except Exception:
            db.rollback()
            raise

    # Accounts created before the ledger existed still get their bonus here.
    get_or_create_credit_account(db, user_id, bonus)
    if created:
        db.refresh(profile)
        logger.info("profiles.ensure.created user_id=%s", user_id)
    return profile, created


def get_profile(db: Session, user_id: str) -> Profile:
    profile = db.query(Profile).filter(Profile.id == user_id).first()
    if profile is None:
        raise NotFoundError("Profile not found")
    return profile


def update_profile(
    db: Session,
    user: Any,
    *,
    full_name: str | None = None,
    avatar_url: str | None = None,
) -> Profile:
    profile, _created = ensure_profile(db, user)
    changed = False
    if full_name is not None and (profile.full_name or "") != full_name:
        profile.full_name = full_name
        changed = True
    if avatar_url is not None and (profile.avatar_url or "") != avatar_url:
        profile.avatar_url = avatar_url
        changed = True
    if changed:
        try:
            db.commit()
        except Exception:
            db.rollback()
            raise
        db.refresh(profile)
    return profile
