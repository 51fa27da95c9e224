from __future__ import annotations

import logging
from typing import Any
from uuid import uuid4

from sqlalchemy import update
from sqlalchemy.orm import Session

from app.core.errors import ConflictError, InsufficientCreditsError, NotFoundError, ValidationError
from app.models.generation import Generation, GenerationStatus
from app.services.credits_engine import debit, get_balance, refund_generation, utcnow

logger = logging.getLogger(__name__)

ASPECT_RATIOS = ("9:16", "3:4", "1:1", "16:9")
IMAGE_SIZES = ("1K", "2K")
OPEN_STATUSES = (GenerationStatus.PENDING.value, GenerationStatus.PROCESSING.value)


def _load_owned(db: Session, user_id: str, generation_id: str) -> Generation:
    gen = db.query(Generation).filter(Generation.id == generation_id, Generation.user_id == user_id).first()
    if gen is None:
        raise NotFoundError("Generation not found")
    return gen


def create_generation(
    db: Session,
    user_id: str,
    prompt: str,
    aspect_ratio: str = "9:16",
    image_size: str = "2K",
    credits_required: int = 1,
) -> Generation:
    """Open a ``pending`` generation and pay for it in one transaction.

    The debit and the insert commit together, so a lost overdraft race leaves
    neither a generation row nor a transaction behind.
    """
    prompt = (prompt or "").strip()
    if not prompt:
        raise ValidationError("Please provide a description for your infographic.")
    if aspect_ratio not in ASPECT_RATIOS:
        raise ValidationError(f"Unsupported aspect ratio: {aspect_ratio}")
    if image_size not in IMAGE_SIZES:
        raise ValidationError(f"Unsupported image size: {image_size}")
    credits_required = int(credits_required)
    if credits_required < 0:
        raise ValidationError("credits_required must not be negative")

    if get_balance(db, user_id).balance < credits_required:
        raise InsufficientCreditsError()

    generation_id = str(uuid4())
    debit(db, user_id, credits_required, generation_id, commit=False)
    gen = Generation(
        id=generation_id,
        user_id=user_id,
        prompt=prompt,
        aspect_ratio=aspect_ratio,
        image_size=image_size,
        status=GenerationStatus.PENDING.value,
        credits_used=credits_required,
    )
    try:
        db.add(gen)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(gen)
    logger.info(
        "generations.create.ok user_id=%s generation_id=%s credits=%s",
        user_id,
        generation_id,
        credits_required,
    )
    return gen


def _transition(db: Session, user_id: str, generation_id: str, from_statuses: tuple[str, ...], values: dict[str, Any]) -> bool:
    result = db.execute(
        update(Generation)
        .where(
            Generation.id == generation_id,
            Generation.user_id == user_id,
            Generation.status.in_(from_statuses),
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def mark_processing(db: Session, user_id: str, generation_id: str) -> bool:
    try:
        moved = _transition(
            db,
            user_id,
            generation_id,
            (GenerationStatus.PENDING.value,),
            {"status": GenerationStatus.PROCESSING.value},
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    return moved


def complete_generation(
    db: Session,
    user_id: str,
    generation_id: str,
    artifact: str,
    text_response: str | None = None,
    is_storage_url: bool = False,
    storage_path: str | None = None,
) -> Generation:
    metadata: dict[str, Any] = {}
    if text_response:
        metadata["text_response"] = text_response
    if storage_path:
        metadata["storage_path"] = storage_path

    values: dict[str, Any] = {
        "status": GenerationStatus.COMPLETED.value,
        "generation_metadata": metadata,
        "completed_at": utcnow(),
    }
    if is_storage_url:
        values["image_url"] = artifact
        values["image_data"] = None
    else:
        values["image_data"] = artifact

    try:
        moved = _transition(db, user_id, generation_id, OPEN_STATUSES, values)
        if not moved:
            db.rollback()
            _load_owned(db, user_id, generation_id)
            raise ConflictError("Generation is already finalized")
        db.commit()
    except Exception:
        db.rollback()
        raise

    gen = _load_owned(db, user_id, generation_id)
    db.refresh(gen)
    logger.info(
        "generations.complete.ok user_id=%s generation_id=%s storage_url=%s",
        user_id,
        generation_id,
        bool(is_storage_url),
    )
    return gen


def fail_generation(db: Session, user_id: str, generation_id: str, error_message: str) -> bool:
    """Mark a generation failed and refund it.

    Returns True when this call performed the transition (and the refund);
    False when the generation was already terminal, in which case nothing is
    written. The status flip and the refund share one transaction.
    """
    try:
        moved = _transition(
            db,
            user_id,
            generation_id,
            OPEN_STATUSES,
            {
                "status": GenerationStatus.FAILED.value,
                "error_message": error_message,
                "completed_at": utcnow(),
            },
        )
        if not moved:
            db.rollback()
            _load_owned(db, user_id, generation_id)
            logger.info("generations.fail.already_terminal user_id=%s generation_id=%s", user_id, generation_id)
            return False

        gen = _load_owned(db, user_id, generation_id)
        refund_generation(db, gen, commit=False)
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        "generations.fail.refunded user_id=%s generation_id=%s credits=%s reason=%s",
        user_id,
        generation_id,
        gen.credits_used,
        error_message,
    )
    return True


def get_generation(db: Session, user_id: str, generation_id: str) -> Generation:
    return _load_owned(db, user_id, generation_id)


def list_generations(db: Session, user_id: str, limit: int = 20) -> list[Generation]:
    return (
        db.query(Generation)
        .filter(Generation.user_id == user_id)
        .order_by(Generation.created_at.desc(), Generation.id.desc())
        .limit(limit)
        .all()
    )


def delete_generation(db: Session, user_id: str, generation_id: str, storage: Any | None = None) -> None:
    gen = _load_owned(db, user_id, generation_id)
    if not gen.is_terminal:
        raise ConflictError("Generation is still in progress")

    storage_path = (gen.generation_metadata or {}).get("storage_path")
    try:
        db.delete(gen)
        db.commit()
    except Exception:
        db.rollback()
        raise

    if storage_path and storage is not None:
        try:
            storage.delete(storage_path)
        except Exception:
            logger.exception("generations.delete.storage_error user_id=%s path=%s", user_id, storage_path)
    logger.info("generations.delete.ok user_id=%s generation_id=%s", user_id, generation_id)
