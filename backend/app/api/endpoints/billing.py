from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.api.errors import to_http_exception
from app.core.database import get_db
from app.core.errors import CreditsEngineError
from app.core.security import CurrentUser, get_current_user
from app.core.settings import settings
from app.schemas.credits import CreditPackageResponse
from app.services import checkout, purchases
from app.services.payments.dodo import WebhookSignatureError, parse_payment_event, verify_webhook_signature

logger = logging.getLogger(__name__)

router = APIRouter()


class CheckoutRequest(BaseModel):
    packageId: str


class CheckoutResponse(BaseModel):
    url: str
    session_id: str | None = None


def provided_payments_client():
    """Injection point for the payment provider client; None means the configured client."""
    return None


@router.get("/credits/packages", response_model=list[CreditPackageResponse])
async def list_credit_packages(db: Session = Depends(get_db)):
    return [CreditPackageResponse.model_validate(p) for p in checkout.list_packages(db)]


@router.post("/payments/checkout", response_model=CheckoutResponse)
def create_checkout_session(
    body: CheckoutRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    client=Depends(provided_payments_client),
):
    package_id = (body.packageId or "").strip()
    if not package_id:
        raise HTTPException(status_code=400, detail="packageId is required")
    try:
        session = checkout.create_checkout(db, current_user, package_id, client=client)
    except CreditsEngineError as e:
        raise to_http_exception(e)
    return CheckoutResponse(url=session.url, session_id=session.session_id)


@router.post("/webhooks/dodo")
async def dodo_webhook(request: Request, db: Session = Depends(get_db)) -> dict:
    # Provider-to-server endpoint: no user auth. Only transport problems
    # (bad signature, unreadable body) are reported as HTTP errors; every
    # verified event is acknowledged so the provider does not redeliver it.
    raw_body = await request.body()
    try:
        verify_webhook_signature(
            raw_body,
            request.headers,
            settings.dodo_webhook_secret,
            tolerance_s=settings.dodo_webhook_tolerance_s,
        )
    except WebhookSignatureError as e:
        logger.warning("billing.webhook.rejected reason=%s", e)
        raise HTTPException(status_code=401, detail="Invalid signature")
    except CreditsEngineError as e:
        logger.error("billing.webhook.unconfigured reason=%s", e)
        raise HTTPException(status_code=500, detail="Webhook secret is not configured")

    try:
        payload = json.loads(raw_body or b"{}")
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Invalid JSON")

    try:
        result = purchases.process_payment_event(db, parse_payment_event(payload))
    except Exception:
        logger.exception("billing.webhook.unhandled_error webhook_id=%s", request.headers.get("webhook-id"))
        return {"received": True}

    logger.info(
        "billing.webhook.processed webhook_id=%s status=%s purchase_id=%s",
        request.headers.get("webhook-id"),
        result.status,
        result.purchase_id,
    )
    return {"received": True}


@router.get("/webhooks/dodo")
async def dodo_webhook_health() -> dict:
    return {"ok": True}
