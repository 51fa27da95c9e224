from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Mapping
from uuid import uuid4

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.purchase import Purchase
from app.services.credits_engine import credit, utcnow
from app.services.payments.dodo import PAYMENT_SUCCEEDED, PaymentEvent, parse_payment_event

logger = logging.getLogger(__name__)
# Operator channel: anything logged here needs manual reconciliation.
reconciliation_logger = logging.getLogger("app.reconciliation")

PAYMENT_PROVIDER = "dodo"


@dataclass(frozen=True)
class ReconcileResult:
    status: str
    purchase_id: str | None = None
    balance: int | None = None

    @property
    def credited(self) -> bool:
        return self.status == "credited"


def _amount_major(amount_minor: int) -> Decimal:
    return (Decimal(int(amount_minor or 0)) / Decimal(100)).quantize(Decimal("0.01"))


def _new_purchase(event: PaymentEvent, credits: int, extra_metadata: dict[str, Any] | None = None) -> Purchase:
    metadata: dict[str, Any] = {
        "package_id": event.package_id,
        "dodo_payload_snapshot": event.snapshot(),
    }
    if extra_metadata:
        metadata.update(extra_metadata)
    return Purchase(
        id=str(uuid4()),
        user_id=event.user_id,
        credits_purchased=credits,
        amount_paid=_amount_major(event.amount_minor),
        currency=event.currency or "USD",
        payment_provider=PAYMENT_PROVIDER,
        payment_status="completed",
        transaction_id=event.payment_id,
        purchase_metadata=metadata,
        completed_at=utcnow(),
    )


def _credit_purchase(db: Session, user_id: str, credits: int, purchase_id: str) -> int:
    return credit(
        db,
        user_id,
        credits,
        "purchase",
        reference_id=purchase_id,
        reference_type="purchase",
        description=f"Purchased {credits} credits",
        commit=False,
    )


def _record_uncredited(db: Session, event: PaymentEvent, credits: int, error: Exception) -> ReconcileResult:
    """Persist the completed payment on its own after the credit step failed."""
    purchase = _new_purchase(event, credits, {"credit_error": str(error)[:500]})
    try:
        db.add(purchase)
        db.commit()
    except IntegrityError:
        db.rollback()
        return ReconcileResult(status="duplicate")
    except Exception:
        db.rollback()
        reconciliation_logger.critical(
            "purchases.reconcile.unrecorded payment_id=%s user_id=%s credits=%s error=%s",
            event.payment_id,
            event.user_id,
            credits,
            error,
        )
        raise
    reconciliation_logger.critical(
        "purchases.reconcile.credit_failed purchase_id=%s payment_id=%s user_id=%s credits=%s error=%s",
        purchase.id,
        event.payment_id,
        event.user_id,
        credits,
        error,
    )
    return ReconcileResult(status="credit_failed", purchase_id=purchase.id)


def _settle_existing(db: Session, existing: Purchase, event: PaymentEvent, credits: int) -> ReconcileResult:
    # A pending row for this payment (e.g. recorded manually before the webhook).
    purchase_id = existing.id
    try:
        result = db.execute(
            update(Purchase)
            .where(Purchase.id == purchase_id, Purchase.payment_status == "pending")
            .values(payment_status="completed", completed_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.rollback()
            return ReconcileResult(status="duplicate", purchase_id=purchase_id)
        balance = _credit_purchase(db, event.user_id, credits, purchase_id)
        db.commit()
    except Exception as e:
        db.rollback()
        reconciliation_logger.critical(
            "purchases.reconcile.settle_failed purchase_id=%s payment_id=%s user_id=%s credits=%s error=%s",
            purchase_id,
            event.payment_id,
            event.user_id,
            credits,
            e,
        )
        return ReconcileResult(status="credit_failed", purchase_id=purchase_id)
    logger.info("purchases.reconcile.settled purchase_id=%s payment_id=%s", purchase_id, event.payment_id)
    return ReconcileResult(status="credited", purchase_id=purchase_id, balance=balance)


def process_payment_event(db: Session, event: PaymentEvent | Mapping[str, Any]) -> ReconcileResult:
    """Record a verified payment event and credit the buyer exactly once.

    The provider transaction id is the idempotency key: duplicate or
    concurrent deliveries of the same payment resolve to ``duplicate`` and
    leave the ledger untouched. Malformed events are logged and dropped.
    """
    if not isinstance(event, PaymentEvent):
        event = parse_payment_event(event)

    if event.event_type != PAYMENT_SUCCEEDED:
        logger.info("purchases.reconcile.ignored type=%s", event.event_type)
        return ReconcileResult(status="ignored")

    if not event.payment_id:
        logger.error("purchases.reconcile.invalid reason=missing_payment_id")
        return ReconcileResult(status="invalid")
    if not event.user_id:
        logger.error("purchases.reconcile.invalid reason=missing_user_id payment_id=%s", event.payment_id)
        return ReconcileResult(status="invalid")
    credits = event.credits
    if credits is None or credits <= 0:
        logger.error(
            "purchases.reconcile.invalid reason=invalid_credits payment_id=%s credits=%r",
            event.payment_id,
            event.metadata.get("credits"),
        )
        return ReconcileResult(status="invalid")

    existing = db.query(Purchase).filter(Purchase.transaction_id == event.payment_id).first()
    if existing is not None:
        if existing.payment_status == "pending":
            return _settle_existing(db, existing, event, credits)
        # completed, refunded and failed rows are final for this payment id
        logger.info(
            "purchases.reconcile.duplicate payment_id=%s purchase_id=%s status=%s",
            event.payment_id,
            existing.id,
            existing.payment_status,
        )
        return ReconcileResult(status="duplicate", purchase_id=existing.id)

    purchase = _new_purchase(event, credits)
    try:
        db.add(purchase)
        db.flush()
    except IntegrityError:
        db.rollback()
        logger.info("purchases.reconcile.duplicate_race payment_id=%s", event.payment_id)
        return ReconcileResult(status="duplicate")
    except Exception:
        db.rollback()
        raise

    purchase_id = purchase.id
    try:
        balance = _credit_purchase(db, event.user_id, credits, purchase_id)
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info("purchases.reconcile.duplicate_race payment_id=%s", event.payment_id)
        return ReconcileResult(status="duplicate")
    except Exception as e:
        db.rollback()
        return _record_uncredited(db, event, credits, e)

    logger.info(
        "purchases.reconcile.credited purchase_id=%s payment_id=%s user_id=%s credits=%s balance=%s",
        purchase_id,
        event.payment_id,
        event.user_id,
        credits,
        balance,
    )
    return ReconcileResult(status="credited", purchase_id=purchase_id, balance=balance)


def list_purchases(db: Session, user_id: str, limit: int = 20) -> list[Purchase]:
    return (
        db.query(Purchase)
        .filter(Purchase.user_id == user_id)
        .order_by(Purchase.created_at.desc(), Purchase.id.desc())
        .limit(limit)
        .all()
    )
