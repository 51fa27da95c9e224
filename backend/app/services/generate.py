from __future__ import annotations

import asyncio
import base64
import logging
from dataclasses import dataclass
from typing import Any, Callable

from sqlalchemy.orm import Session

from app.core.database import SessionLocal
from app.core.errors import ExternalServiceError, Unauthenticated, ValidationError
from app.core.settings import settings
from app.services.credits_engine import get_balance
from app.services.generations import complete_generation, create_generation, fail_generation, mark_processing
from app.services.llm.gemini import GENERATOR_MESSAGES, NO_IMAGE_MESSAGE, GeneratorResult, get_generator
from app.services.storage.supabase_storage import artifact_path, get_storage

logger = logging.getLogger(__name__)
reconciliation_logger = logging.getLogger("app.reconciliation")

# Strong references to in-flight units of work so a dropped request cannot
# get them garbage collected half way.
_INFLIGHT: set[asyncio.Task] = set()


@dataclass(frozen=True)
class GenerationOutcome:
    generation_id: str
    balance: int
    image_url: str | None = None
    image_data: str | None = None
    mime_type: str | None = None
    text_response: str | None = None


def _fail_and_refund(db: Session, user_id: str, generation_id: str, reason: str) -> None:
    try:
        fail_generation(db, user_id, generation_id, reason)
    except Exception:
        reconciliation_logger.critical(
            "generate.refund_failed user_id=%s generation_id=%s reason=%s",
            user_id,
            generation_id,
            reason,
            exc_info=True,
        )


def _store_artifact(storage: Any, user_id: str, generation_id: str, result: GeneratorResult):
    if storage is None:
        storage = get_storage()
    raw = base64.b64decode(result.image_base64 or "", validate=False)
    mime_type = result.mime_type or "image/png"
    return storage.put(raw, mime_type, artifact_path(user_id, generation_id, mime_type))


async def generate_infographic(
    db: Session,
    user: Any,
    prompt: str,
    aspect_ratio: str = "9:16",
    image_size: str = "2K",
    *,
    generator: Any | None = None,
    storage: Any | None = None,
    credits_required: int | None = None,
) -> GenerationOutcome:
    """Charge for, run and finalize one infographic generation.

    Every failure after the debit ends in ``fail_generation`` (which refunds
    exactly once) before the error reaches the caller. A failed artifact
    upload is not a failure: the image is kept inline on the generation.
    """
    user_id = str(getattr(user, "id", "") or "").strip()
    if not user_id:
        raise Unauthenticated("Not authenticated")
    prompt = (prompt or "").strip()
    if not prompt:
        raise ValidationError("Please provide a description for your infographic.")

    owns_generator = generator is None
    if generator is None:
        generator = get_generator()
    credits = settings.credits_per_generation if credits_required is None else int(credits_required)

    try:
        gen = create_generation(db, user_id, prompt, aspect_ratio, image_size, credits)
        generation_id = gen.id

        try:
            mark_processing(db, user_id, generation_id)
            result = await generator.generate(prompt, aspect_ratio, image_size)
        except ExternalServiceError as e:
            logger.warning(
                "generate.generator_error user_id=%s generation_id=%s kind=%s error=%s",
                user_id,
                generation_id,
                e.kind,
                e,
            )
            _fail_and_refund(db, user_id, generation_id, str(e))
            raise ExternalServiceError(GENERATOR_MESSAGES.get(e.kind, str(e)), service=e.service, kind=e.kind)
        except Exception as e:
            logger.exception("generate.unexpected_error user_id=%s generation_id=%s", user_id, generation_id)
            _fail_and_refund(db, user_id, generation_id, f"Unexpected error: {e}")
            raise ExternalServiceError(GENERATOR_MESSAGES["unknown"], service="gemini", kind="unknown")

        if not result.has_image:
            _fail_and_refund(db, user_id, generation_id, NO_IMAGE_MESSAGE)
            raise ExternalServiceError(NO_IMAGE_MESSAGE, service="gemini", kind="unknown")

        if gen.user_id != user_id:
            _fail_and_refund(db, user_id, generation_id, "Generation owner mismatch")
            raise Unauthenticated("Not authenticated")

        try:
            stored = None
            try:
                stored = await asyncio.to_thread(_store_artifact, storage, user_id, generation_id, result)
            except Exception as e:
                logger.warning(
                    "generate.storage_fallback user_id=%s generation_id=%s error=%s",
                    user_id,
                    generation_id,
                    e,
                )

            if stored is not None:
                completed = complete_generation(
                    db,
                    user_id,
                    generation_id,
                    stored.url,
                    result.text_response,
                    is_storage_url=True,
                    storage_path=stored.path,
                )
            else:
                completed = complete_generation(
                    db,
                    user_id,
                    generation_id,
                    result.image_base64 or "",
                    result.text_response,
                    is_storage_url=False,
                )
        except Exception as e:
            logger.exception("generate.finalize_error user_id=%s generation_id=%s", user_id, generation_id)
            _fail_and_refund(db, user_id, generation_id, f"Failed to save result: {e}")
            raise ExternalServiceError(GENERATOR_MESSAGES["unknown"], service="storage", kind="unknown")

        balance = get_balance(db, user_id).balance
    finally:
        if owns_generator:
            await generator.aclose()

    return GenerationOutcome(
        generation_id=completed.id,
        balance=balance,
        image_url=completed.image_url,
        image_data=(None if completed.image_url else completed.image_data),
        mime_type=result.mime_type,
        text_response=result.text_response,
    )


async def run_generation_unit(
    user: Any,
    prompt: str,
    aspect_ratio: str = "9:16",
    image_size: str = "2K",
    *,
    session_factory: Callable[[], Session] = SessionLocal,
    generator: Any | None = None,
    storage: Any | None = None,
) -> GenerationOutcome:
    """Run a generation on its own session, shielded from caller cancellation.

    Once credits are debited the unit must finish (complete or refund) even
    if the HTTP client disconnects, so it never shares the request session.
    """

    async def _unit() -> GenerationOutcome:
        db = session_factory()
        try:
            return await generate_infographic(
                db,
                user,
                prompt,
                aspect_ratio,
                image_size,
                generator=generator,
                storage=storage,
            )
        finally:
            db.close()

    task = asyncio.ensure_future(_unit())
    _INFLIGHT.add(task)
    task.add_done_callback(_INFLIGHT.discard)
    return await asyncio.shield(task)
