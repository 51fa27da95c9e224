from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.errors import InsufficientCreditsError, NotFoundError, ValidationError
from app.models.credit_account import CreditAccount
from app.models.credit_transaction import TRANSACTION_TYPES, CreditTransaction

logger = logging.getLogger(__name__)

# Credit types that count as newly granted credits.
LIFETIME_TYPES = {"purchase", "bonus", "adjustment"}


@dataclass(frozen=True)
class CreditBalance:
    balance: int
    lifetime_credits: int


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _current_balance(db: Session, user_id: str) -> int | None:
    value = db.execute(select(CreditAccount.balance).where(CreditAccount.user_id == user_id)).scalar_one_or_none()
    return None if value is None else int(value)


def account_exists(db: Session, user_id: str) -> bool:
    return _current_balance(db, user_id) is not None


def get_balance(db: Session, user_id: str) -> CreditBalance:
    row = db.execute(
        select(CreditAccount.balance, CreditAccount.lifetime_credits).where(CreditAccount.user_id == user_id)
    ).first()
    if row is None:
        raise NotFoundError("Credit account not found")
    return CreditBalance(balance=int(row.balance or 0), lifetime_credits=int(row.lifetime_credits or 0))


def get_or_create_credit_account(
    db: Session,
    user_id: str,
    signup_bonus: int,
    description: str | None = None,
) -> tuple[CreditAccount, bool]:
    """Return the user's account, opening it with the signup bonus if missing.

    The account row and its ``bonus`` transaction are committed together. When
    a concurrent request opens the same account first, the primary key rejects
    our insert and we fall back to the row the other request wrote.
    """
    acct = db.query(CreditAccount).filter(CreditAccount.user_id == user_id).first()
    if acct is not None:
        return acct, False

    bonus = max(0, int(signup_bonus))
    try:
        acct = CreditAccount(user_id=user_id, balance=bonus, lifetime_credits=bonus)
        db.add(acct)
        db.flush()
        if bonus > 0:
            db.add(
                CreditTransaction(
                    user_id=user_id,
                    amount=bonus,
                    type="bonus",
                    balance_after=bonus,
                    description=description or f"Welcome bonus - {bonus} free credits",
                )
            )
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info("credits.account.open_race user_id=%s", user_id)
        acct = db.query(CreditAccount).filter(CreditAccount.user_id == user_id).first()
        if acct is None:
            raise
        return acct, False
    except Exception:
        db.rollback()
        raise

    db.refresh(acct)
    logger.info("credits.account.opened user_id=%s bonus=%s", user_id, bonus)
    return acct, True


def _decrement(
    db: Session,
    *,
    user_id: str,
    amount: int,
    tx_type: str,
    reference_id: str | None,
    reference_type: str | None,
    description: str | None,
    commit: bool,
) -> int:
    # The WHERE clause is the only overdraft gate: the database serializes
    # concurrent check-and-decrement statements on the account row.
    try:
        result = db.execute(
            update(CreditAccount)
            .where(CreditAccount.user_id == user_id, CreditAccount.balance >= amount)
            .values(balance=CreditAccount.balance - amount, updated_at=func.now())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.rollback()
            if account_exists(db, user_id):
                raise InsufficientCreditsError()
            raise NotFoundError("Credit account not found")

        balance_after = _current_balance(db, user_id)
        db.add(
            CreditTransaction(
                user_id=user_id,
                amount=-amount,
                type=tx_type,
                balance_after=int(balance_after or 0),
                reference_id=reference_id,
                reference_type=reference_type,
                description=description,
            )
        )
        db.flush()
        if commit:
            db.commit()
    except Exception:
        db.rollback()
        raise
    return int(balance_after or 0)


def debit(
    db: Session,
    user_id: str,
    amount: int,
    generation_id: str | None = None,
    *,
    description: str | None = None,
    commit: bool = True,
) -> int:
    """Atomically spend ``amount`` credits and log a ``usage`` transaction.

    Returns the post-debit balance. Raises ``InsufficientCreditsError`` or
    ``NotFoundError`` with nothing written. With ``commit=False`` the caller
    owns the transaction and must commit or roll back.
    """
    amount = int(amount)
    if amount < 0:
        raise ValidationError("Debit amount must not be negative")
    if amount == 0:
        return get_balance(db, user_id).balance

    balance_after = _decrement(
        db,
        user_id=user_id,
        amount=amount,
        tx_type="usage",
        reference_id=generation_id,
        reference_type=("generation" if generation_id else None),
        description=description or "Infographic generation",
        commit=commit,
    )
    logger.info(
        "credits.debit.ok user_id=%s amount=%s generation_id=%s balance=%s",
        user_id,
        amount,
        generation_id,
        balance_after,
    )
    return balance_after


def credit(
    db: Session,
    user_id: str,
    amount: int,
    tx_type: str,
    reference_id: str | None = None,
    reference_type: str | None = None,
    description: str | None = None,
    *,
    commit: bool = True,
) -> int:
    """Atomically add credits and log a matching transaction; returns the new balance."""
    amount = int(amount)
    if amount < 0:
        raise ValidationError("Credit amount must not be negative")
    if tx_type not in TRANSACTION_TYPES or tx_type == "usage":
        raise ValidationError(f"Unsupported credit type: {tx_type}")
    if amount == 0:
        return get_balance(db, user_id).balance

    lifetime_delta = amount if tx_type in LIFETIME_TYPES else 0
    try:
        result = db.execute(
            update(CreditAccount)
            .where(CreditAccount.user_id == user_id)
            .values(
                balance=CreditAccount.balance + amount,
                lifetime_credits=CreditAccount.lifetime_credits + lifetime_delta,
                updated_at=func.now(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise NotFoundError("Credit account not found")

        balance_after = int(_current_balance(db, user_id) or 0)
        db.add(
            CreditTransaction(
                user_id=user_id,
                amount=amount,
                type=tx_type,
                balance_after=balance_after,
                reference_id=reference_id,
                reference_type=reference_type,
                description=description,
            )
        )
        db.flush()
        if commit:
            db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        "credits.credit.ok user_id=%s amount=%s type=%s reference_id=%s balance=%s",
        user_id,
        amount,
        tx_type,
        reference_id,
        balance_after,
    )
    return balance_after


def adjust(db: Session, user_id: str, delta: int, description: str | None = None) -> int:
    """Manual signed correction; negative deltas may not overdraw the account."""
    delta = int(delta)
    if delta == 0:
        raise ValidationError("Adjustment must be non-zero")
    description = description or "Manual adjustment"
    if delta > 0:
        return credit(db, user_id, delta, "adjustment", description=description)
    balance_after = _decrement(
        db,
        user_id=user_id,
        amount=-delta,
        tx_type="adjustment",
        reference_id=None,
        reference_type=None,
        description=description,
        commit=True,
    )
    logger.info("credits.adjust.ok user_id=%s delta=%s balance=%s", user_id, delta, balance_after)
    return balance_after


def refund_generation(db: Session, generation, *, commit: bool = True) -> int:
    return credit(
        db,
        generation.user_id,
        int(generation.credits_used or 0),
        "refund",
        reference_id=generation.id,
        reference_type="generation",
        description="Refund for failed generation",
        commit=commit,
    )


def replay_balance(db: Session, user_id: str) -> int:
    total = (
        db.query(func.coalesce(func.sum(CreditTransaction.amount), 0))
        .filter(CreditTransaction.user_id == user_id)
        .scalar()
    )
    return int(total or 0)


def list_transactions(db: Session, user_id: str, limit: int = 20) -> list[CreditTransaction]:
    return (
        db.query(CreditTransaction)
        .filter(CreditTransaction.user_id == user_id)
        .order_by(CreditTransaction.id.desc())
        .limit(limit)
        .all()
    )
