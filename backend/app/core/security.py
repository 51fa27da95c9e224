from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from typing import Any

import jwt
from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.settings import settings
from app.services.profiles import ensure_profile


@dataclass(frozen=True)
class CurrentUser:
    id: str
    email: str
    role: str = "user"
    full_name: str = ""
    avatar_url: str = ""
    country: str = ""


def _normalize_email(value: str) -> str:
    return str(value or "").strip().lower()


def _is_admin_email(email: str) -> bool:
    normalized = _normalize_email(email)
    if not normalized:
        return False
    return normalized in (settings.admin_emails or set())


def _decide_role(*, email_is_admin: bool, claim_is_admin: bool) -> tuple[str, str]:
    if email_is_admin:
        return ("admin", "admin_emails")
    if claim_is_admin:
        return ("admin", "jwt_claim")
    return ("user", "default")


def _require_supabase_config() -> str:
    if not settings.supabase_url:
        raise HTTPException(status_code=500, detail="SUPABASE_URL is not configured")
    return settings.supabase_url


@lru_cache(maxsize=4)
def _jwks_client(jwks_url: str) -> jwt.PyJWKClient:
    return jwt.PyJWKClient(jwks_url, cache_keys=True)


def _decode_supabase_jwt(token: str) -> dict[str, Any]:
    supabase_url = _require_supabase_config().rstrip("/")
    jwks_url = f"{supabase_url}/auth/v1/.well-known/jwks.json"
    issuer = settings.supabase_jwt_issuer or f"{supabase_url}/auth/v1"
    audience = settings.supabase_jwt_audience or "authenticated"

    try:
        signing_key = _jwks_client(jwks_url).get_signing_key_from_jwt(token).key
        payload = jwt.decode(
            token,
            signing_key,
            algorithms=["ES256", "RS256"],
            audience=audience,
            issuer=issuer,
            options={"require": ["exp", "sub"]},
        )
        return dict(payload)
    except jwt.PyJWTError:
        raise HTTPException(status_code=401, detail="Invalid bearer token")
    except Exception:
        raise HTTPException(status_code=401, detail="Invalid bearer token")


def _get_bearer_token(request: Request) -> str:
    auth = request.headers.get("authorization") or ""
    if not auth.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Missing bearer token")
    token = auth.split(" ", 1)[1].strip()
    if not token:
        raise HTTPException(status_code=401, detail="Missing bearer token")
    return token


def user_from_claims(claims: dict[str, Any]) -> CurrentUser:
    user_id = str(claims.get("sub") or "").strip()
    email = str(claims.get("email") or "").strip()
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token")

    app_meta = claims.get("app_metadata") or {}
    if not isinstance(app_meta, dict):
        app_meta = {}
    claim_is_admin = str(app_meta.get("role") or "").strip().lower() == "admin"

    user_meta = claims.get("user_metadata") or {}
    if not isinstance(user_meta, dict):
        user_meta = {}

    role, _reason = _decide_role(email_is_admin=_is_admin_email(email), claim_is_admin=claim_is_admin)
    return CurrentUser(
        id=user_id,
        email=email,
        role=role,
        full_name=str(user_meta.get("full_name") or user_meta.get("name") or "").strip(),
        avatar_url=str(user_meta.get("avatar_url") or "").strip(),
        country=str(user_meta.get("country") or "").strip(),
    )


def get_current_user(request: Request, db: Session = Depends(get_db)) -> CurrentUser:
    token = _get_bearer_token(request)
    user = user_from_claims(_decode_supabase_jwt(token))
    # Users provisioned before the ledger existed are bootstrapped on first touch.
    ensure_profile(db, user)
    return user


def require_admin(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if (user.role or "").lower() != "admin":
        raise HTTPException(status_code=403, detail="Admin access required")
    return user
