from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from app.api.endpoints.account import clamp_limit
from app.api.errors import to_http_exception
from app.core.database import get_db, get_session_factory
from app.core.errors import CreditsEngineError
from app.core.security import CurrentUser, get_current_user
from app.schemas.generation import (
    GenerationCreate,
    GenerationHistoryItem,
    GenerationListResponse,
    GenerationResponse,
    GenerationResult,
)
from app.services import generations
from app.services.generate import run_generation_unit
from app.services.storage.supabase_storage import get_storage

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(get_current_user)])


def provided_generator():
    """Injection point for the image generator; None means the configured client."""
    return None


def provided_storage():
    """Injection point for the artifact store; None means the configured store."""
    return None


@router.post("/generations", response_model=GenerationResult)
async def create_generation(
    body: GenerationCreate,
    current_user: CurrentUser = Depends(get_current_user),
    session_factory=Depends(get_session_factory),
    generator=Depends(provided_generator),
    storage=Depends(provided_storage),
):
    # The unit of work opens its own session: it must outlive this request
    # if the client goes away after credits were debited.
    try:
        outcome = await run_generation_unit(
            current_user,
            body.prompt,
            body.aspect_ratio.value,
            body.image_size.value,
            session_factory=session_factory,
            generator=generator,
            storage=storage,
        )
    except CreditsEngineError as e:
        raise to_http_exception(e)
    return GenerationResult(
        generation_id=outcome.generation_id,
        image_url=outcome.image_url,
        image_data=outcome.image_data,
        mime_type=outcome.mime_type,
        text_response=outcome.text_response,
        balance=outcome.balance,
    )


@router.get("/generations", response_model=GenerationListResponse)
async def list_generations(
    limit: int = 20,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    limit = clamp_limit(limit)
    rows = generations.list_generations(db, current_user.id, limit=limit)
    return GenerationListResponse(items=[GenerationHistoryItem.model_validate(r) for r in rows], limit=limit)


@router.get("/generations/{generation_id}", response_model=GenerationResponse)
async def get_generation(
    generation_id: str,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        gen = generations.get_generation(db, current_user.id, generation_id)
    except CreditsEngineError as e:
        raise to_http_exception(e)
    return GenerationResponse.model_validate(gen)


@router.delete("/generations/{generation_id}", status_code=204)
async def delete_generation(
    generation_id: str,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    storage=Depends(provided_storage),
):
    if storage is None:
        try:
            storage = get_storage()
        except CreditsEngineError:
            logger.warning("generations.delete.storage_unconfigured generation_id=%s", generation_id)
    try:
        generations.delete_generation(db, current_user.id, generation_id, storage=storage)
    except CreditsEngineError as e:
        raise to_http_exception(e)
    return Response(status_code=204)
