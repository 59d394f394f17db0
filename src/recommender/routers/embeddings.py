"""Embeddings router – operator maintenance of stored embeddings.

POST /embeddings/backfill
    Generate missing embeddings for a batch of posts or papers.

DELETE /embeddings?model=...
    Purge every embedding stored under an old model version.
"""

import logging
from typing import Annotated, Literal

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field

from ..security import verify_api_key

router = APIRouter(prefix="/embeddings", tags=["embeddings"], dependencies=[Depends(verify_api_key)])

logger = logging.getLogger(__name__)


class BackfillRequest(BaseModel):
    content_type: Literal["post", "paper"] = Field(
        ..., description="Kind of content to embed"
    )
    batch_size: int = Field(10, ge=1, le=500, description="Items to process in this run")


class BackfillResponse(BaseModel):
    content_type: str
    processed: int
    errors: int


class PurgeResponse(BaseModel):
    model: str
    deleted: int


@router.post("/backfill", response_model=BackfillResponse)
async def backfill(request: Request, payload: BackfillRequest) -> BackfillResponse:
    services = request.app.state.services
    try:
        result = await services.store.batch_backfill(
            payload.content_type, services.embedding_config, batch_size=payload.batch_size
        )
    except Exception as exc:
        logger.exception("Backfill of %s embeddings failed", payload.content_type)
        raise HTTPException(status_code=500, detail="Failed to backfill embeddings") from exc
    logger.info(
        "Backfilled %s embeddings: %d processed, %d errors",
        payload.content_type, result.processed, result.errors,
    )
    return BackfillResponse(
        content_type=payload.content_type, processed=result.processed, errors=result.errors
    )


@router.delete("", response_model=PurgeResponse)
async def purge(
    request: Request,
    model: Annotated[str, Query(min_length=1, description="Model whose embeddings are removed")],
) -> PurgeResponse:
    services = request.app.state.services
    if model == services.embedding_config.model:
        raise HTTPException(status_code=409, detail="Refusing to purge the active embedding model")
    try:
        deleted = await services.store.purge_model(model)
    except Exception as exc:
        logger.exception("Purge of %s embeddings failed", model)
        raise HTTPException(status_code=500, detail="Failed to purge embeddings") from exc
    return PurgeResponse(model=model, deleted=deleted)
